"""Core domain logic for the Syzygy tool server.

This package contains zero external dependencies and represents
the pure business logic of the application. All adapters and
external integrations are handled by the adapters package.
"""

from .errors import SyzygyError
from .models import (
    ActionStep,
    CommandResult,
    DbCheck,
    ImpactedUnit,
    JsonValue,
    ProjectConfig,
    Run,
    SelfCheckItem,
    SelfCheckReport,
    Unit,
)

__all__ = [
    "ActionStep",
    "CommandResult",
    "DbCheck",
    "ImpactedUnit",
    "JsonValue",
    "ProjectConfig",
    "Run",
    "SelfCheckItem",
    "SelfCheckReport",
    "SyzygyError",
    "Unit",
]
