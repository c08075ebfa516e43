"""Test suite for the Syzygy tool server.

Organized into three categories:

1. core/: Unit tests for core domain logic
   - Minimal dependencies, fast execution
   - Uses in-memory fakes for ports

2. adapters/: Integration tests for adapter implementations
   - Real files, SQLite databases and subprocesses under tmp_path
   - Wire-level tests of the stdio server over in-memory streams

3. fakes/: Port implementations for testing
   - In-memory implementations of UnitStorePort, ExportPort, CommandRunnerPort
   - Used by core unit tests
"""
