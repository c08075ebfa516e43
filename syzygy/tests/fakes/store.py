"""Fake UnitStorePort implementation for testing."""

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from syzygy.core.models import ProjectConfig, Unit, apply_unit_header, new_unit
from syzygy.core.ports import UnitStorePort
from syzygy.core.serialization import (
    project_config_from_dict,
    project_config_to_dict,
    unit_from_dict,
    unit_to_dict,
)


class FakeUnitStorePort(UnitStorePort):
    """In-memory unit store for testing.

    Units are kept as serialized documents, so every load returns a
    fresh object the way a real store does. Saves are tracked for
    assertions, and save failures can be injected.
    """

    def __init__(self, project_key: str = "default"):
        """Initialize with an empty store."""
        self.project_key = project_key
        self.documents: dict[str, dict[str, Any]] = {}
        self.configs: dict[str, dict[str, Any]] = {}
        self.saved_units: list[str] = []
        self.save_error: Exception | None = None
        self.corrupt_ids: set[str] = set()
        self.closed = False

    @property
    def base_dir(self) -> str:
        return "memory://syzygy"

    async def get_or_create_unit(
        self,
        unit_id: str,
        title: str = "",
        env: Mapping[str, Any] | None = None,
    ) -> Unit:
        unit = await self.get_unit(unit_id)
        if unit is not None:
            return apply_unit_header(unit, title, env)
        return new_unit(unit_id, datetime.now(UTC), title, env)

    async def get_unit(self, unit_id: str) -> Unit | None:
        """Return a fresh copy of the stored unit, if any."""
        if unit_id in self.corrupt_ids:
            raise ValueError(f"Unit document parsing failed for {unit_id}")
        doc = self.documents.get(unit_id)
        if doc is None:
            return None
        return unit_from_dict(doc)

    async def save_unit(self, unit: Unit) -> None:
        """Store the unit document, or raise the injected error."""
        if self.save_error is not None:
            raise self.save_error
        self.documents[unit.unit_id] = unit_to_dict(unit)
        self.saved_units.append(unit.unit_id)

    async def list_unit_ids(self) -> list[str]:
        return list(self.documents) + sorted(self.corrupt_ids)

    async def get_project_config(self) -> ProjectConfig | None:
        doc = self.configs.get(self.project_key)
        if doc is None:
            return None
        return project_config_from_dict(doc)

    async def save_project_config(self, config: ProjectConfig) -> str:
        key = config.project_key or self.project_key
        self.configs[key] = project_config_to_dict(config)
        return f"memory://syzygy/projects/{key}/config.json"

    async def close(self) -> None:
        self.closed = True
