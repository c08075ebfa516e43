"""Unit store adapters for persistence.

Implementations support multiple backends:
- JSON files (one document per unit, human-readable)
- SQLite (single-file database)
"""
