"""External adapters for the Syzygy tool server.

This package contains all external dependencies (filesystem, SQLite,
subprocesses, the stdio wire protocol) and provides implementations of
the core port interfaces.

Adapter Organization:

- mcp/: JSON-RPC stdio server, tool catalog and argument decoding
- store/: Adapters for unit persistence (JSON files, SQLite)
- export/: Adapters that crystallize runs into artifacts
- runner/: Adapters that launch replay commands
"""
