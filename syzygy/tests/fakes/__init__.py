"""Fake implementations of core ports for testing.

These in-memory implementations allow core domain logic to be tested
without external dependencies:

- FakeUnitStorePort: In-memory unit and project config persistence
- FakeExportPort: Captured exports with canned artifact paths
- FakeCommandRunnerPort: Captured commands with canned results
"""

from .export import FakeExportPort
from .runner import FakeCommandRunnerPort
from .store import FakeUnitStorePort

__all__ = [
    "FakeCommandRunnerPort",
    "FakeExportPort",
    "FakeUnitStorePort",
]
