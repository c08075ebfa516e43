"""JSON file unit store adapter.

Implements UnitStorePort with one pretty-printed JSON document per unit:

    <base_dir>/projects/<project_key>/units/<unit_id>.json
    <base_dir>/projects/<project_key>/config.json

Writes go to a temporary sibling file that is then renamed over the
target, so a failed write never leaves a truncated document behind.
"""

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from syzygy.core.errors import SyzygyError
from syzygy.core.models import ProjectConfig, Unit, apply_unit_header, new_unit
from syzygy.core.ports import UnitStorePort
from syzygy.core.serialization import (
    project_config_from_dict,
    project_config_to_dict,
    unit_from_dict,
    unit_to_dict,
)

logger = logging.getLogger(__name__)


def safe_project_key(project_key: str) -> str:
    """Make a project key usable as a single path component.

    Blank keys become "default"; ".." is removed and path separators
    are replaced with "-".
    """
    key = project_key.strip()
    if not key:
        return "default"
    key = key.replace("..", "")
    key = key.replace(os.sep, "-").replace("/", "-")
    return key or "default"


def validate_unit_id(unit_id: str) -> str:
    """Reject unit IDs that would escape the units directory.

    Raises:
        SyzygyError: invalid_unit_id for blank IDs or IDs containing
            path separators or "..".
    """
    if not unit_id.strip():
        raise SyzygyError("invalid_unit_id", "unit_id is required")
    if "/" in unit_id or os.sep in unit_id or ".." in unit_id:
        raise SyzygyError(
            "invalid_unit_id",
            f"unit_id must not contain path separators or '..': {unit_id}",
        )
    return unit_id


def _write_json_atomic(path: Path, doc: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    doc = json.loads(text)
    if not isinstance(doc, dict):
        raise ValueError(f"Expected a JSON object in {path}")
    return doc


class FileUnitStore(UnitStorePort):
    """Directory-of-JSON-files unit store scoped to one project."""

    def __init__(self, base_dir: str, project_key: str = "default"):
        """Initialize the file store.

        Args:
            base_dir: Root data directory (created lazily on first write).
            project_key: Project the store is scoped to.
        """
        self._base_dir = Path(base_dir).expanduser()
        self.project_key = project_key
        self.project_dir = self._base_dir / "projects" / safe_project_key(project_key)
        self.units_dir = self.project_dir / "units"
        self.config_path = self.project_dir / "config.json"
        self._lock = asyncio.Lock()

    @property
    def base_dir(self) -> str:
        return str(self._base_dir)

    def unit_path(self, unit_id: str) -> Path:
        return self.units_dir / f"{validate_unit_id(unit_id)}.json"

    async def get_unit(self, unit_id: str) -> Unit | None:
        """Load a unit document, or None if the file does not exist.

        Raises:
            ValueError: If the document is corrupt.
        """
        path = self.unit_path(unit_id)
        doc = await asyncio.to_thread(_read_json, path)
        if doc is None:
            return None
        try:
            return unit_from_dict(doc)
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Unit document parsing failed for {path}: {e}") from e

    async def get_or_create_unit(
        self,
        unit_id: str,
        title: str = "",
        env: Mapping[str, Any] | None = None,
    ) -> Unit:
        """Load and merge an existing unit, or build a new one (unsaved)."""
        unit = await self.get_unit(unit_id)
        if unit is not None:
            return apply_unit_header(unit, title, env)

        logger.debug(f"Creating new unit {unit_id}", extra={"unit_id": unit_id})
        return new_unit(unit_id, datetime.now(UTC), title, env)

    async def save_unit(self, unit: Unit) -> None:
        path = self.unit_path(unit.unit_id)
        doc = unit_to_dict(unit)
        async with self._lock:
            await asyncio.to_thread(_write_json_atomic, path, doc)

    async def list_unit_ids(self) -> list[str]:
        def _scan() -> list[str]:
            if not self.units_dir.is_dir():
                return []
            return [
                entry.stem
                for entry in self.units_dir.iterdir()
                if entry.is_file() and entry.suffix == ".json"
            ]

        return await asyncio.to_thread(_scan)

    async def get_project_config(self) -> ProjectConfig | None:
        doc = await asyncio.to_thread(_read_json, self.config_path)
        if doc is None:
            return None
        return project_config_from_dict(doc)

    def config_path_for(self, project_key: str) -> Path:
        return self._base_dir / "projects" / safe_project_key(project_key) / "config.json"

    async def save_project_config(self, config: ProjectConfig) -> str:
        """Write the config under its own project key and return the path."""
        path = self.config_path_for(config.project_key or self.project_key)
        doc = project_config_to_dict(config)
        async with self._lock:
            await asyncio.to_thread(_write_json_atomic, path, doc)
        return str(path)

    async def close(self) -> None:
        """Nothing to release; files are opened per operation."""
