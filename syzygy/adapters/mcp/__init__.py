"""MCP-style stdio interface.

- protocol.py: JSON-RPC wire types and response builders
- decoding.py: object / JSON text / base64 payload decoding
- tools.py: tool catalog and dispatch into UnitService
- server.py: the line-delimited request loop
"""
