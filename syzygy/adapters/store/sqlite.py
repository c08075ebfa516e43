"""SQLite unit store adapter.

Implements UnitStorePort using SQLite with aiosqlite for async access.
Each unit is kept as a single JSON document row, so a save replaces
the whole unit in one statement. Rows are keyed by (project_key,
unit_id), letting several projects share one database file.
"""

import asyncio
import json
import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from syzygy.core.models import ProjectConfig, Unit, apply_unit_header, new_unit
from syzygy.core.ports import UnitStorePort
from syzygy.core.serialization import (
    format_timestamp,
    project_config_from_dict,
    project_config_to_dict,
    unit_from_dict,
    unit_to_dict,
)

logger = logging.getLogger(__name__)


class SQLiteUnitStore(UnitStorePort):
    """SQLite-backed unit store with connection pooling and async access."""

    def __init__(self, db_path: str, project_key: str = "default", pool_size: int = 2):
        """Initialize SQLite store with connection pooling.

        Args:
            db_path: Path to SQLite database file.
            project_key: Project the store is scoped to.
            pool_size: Number of connections to maintain in the pool.
        """
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.project_key = project_key
        self._pool: list[aiosqlite.Connection] = []
        self._pool_lock = asyncio.Lock()
        self._schema_lock = asyncio.Lock()
        self._pool_size = pool_size
        self._schema_initialized = False

    @property
    def base_dir(self) -> str:
        return str(self.db_path.parent)

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get a connection from the pool or create a new one."""
        async with self._pool_lock:
            if self._pool:
                return self._pool.pop()
        return await aiosqlite.connect(str(self.db_path))

    async def _return_connection(self, conn: aiosqlite.Connection) -> None:
        """Return a connection to the pool."""
        async with self._pool_lock:
            if len(self._pool) < self._pool_size:
                self._pool.append(conn)
                return
        await conn.close()

    async def close(self) -> None:
        """Close all pooled connections."""
        async with self._pool_lock:
            for conn in self._pool:
                await conn.close()
            self._pool.clear()

    async def _init_schema(self) -> None:
        """Initialize database schema on first use.

        Only runs once per instance. Subsequent calls are no-ops.
        """
        async with self._schema_lock:
            if self._schema_initialized:
                return

            conn = await self._get_connection()
            try:
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS units (
                        project_key TEXT NOT NULL,
                        unit_id TEXT NOT NULL,
                        document TEXT NOT NULL,
                        updated_at TIMESTAMP NOT NULL,
                        PRIMARY KEY (project_key, unit_id)
                    )
                    """
                )
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS project_configs (
                        project_key TEXT PRIMARY KEY,
                        document TEXT NOT NULL
                    )
                    """
                )
                await conn.commit()
                self._schema_initialized = True
            finally:
                await self._return_connection(conn)

    async def get_unit(self, unit_id: str) -> Unit | None:
        """Look up a unit by its ID."""
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                "SELECT document FROM units WHERE project_key = ? AND unit_id = ?",
                (self.project_key, unit_id),
            )
            row = await cursor.fetchone()
        finally:
            await self._return_connection(conn)

        if row is None:
            return None
        return self._document_to_unit(unit_id, row[0])

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
        """Create or replace a unit document."""
        await self._init_schema()

        document = json.dumps(unit_to_dict(unit), ensure_ascii=False)
        conn = await self._get_connection()
        try:
            await conn.execute(
                """
                INSERT OR REPLACE INTO units (project_key, unit_id, document, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    self.project_key,
                    unit.unit_id,
                    document,
                    format_timestamp(unit.updated_at),
                ),
            )
            await conn.commit()
        finally:
            await self._return_connection(conn)

    async def list_unit_ids(self) -> list[str]:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                "SELECT unit_id FROM units WHERE project_key = ? ORDER BY unit_id",
                (self.project_key,),
            )
            rows = await cursor.fetchall()
            return [row[0] for row in rows]
        finally:
            await self._return_connection(conn)

    async def get_project_config(self) -> ProjectConfig | None:
        await self._init_schema()

        conn = await self._get_connection()
        try:
            cursor = await conn.execute(
                "SELECT document FROM project_configs WHERE project_key = ?",
                (self.project_key,),
            )
            row = await cursor.fetchone()
        finally:
            await self._return_connection(conn)

        if row is None:
            return None
        return project_config_from_dict(json.loads(row[0]))

    async def save_project_config(self, config: ProjectConfig) -> str:
        await self._init_schema()
        key = config.project_key or self.project_key

        conn = await self._get_connection()
        try:
            await conn.execute(
                "INSERT OR REPLACE INTO project_configs (project_key, document) VALUES (?, ?)",
                (key, json.dumps(project_config_to_dict(config))),
            )
            await conn.commit()
        finally:
            await self._return_connection(conn)
        return f"{self.db_path}#project_configs/{key}"

    @staticmethod
    def _document_to_unit(unit_id: str, document: str) -> Unit:
        """Convert a stored JSON document to a Unit.

        Raises:
            ValueError: If the document is malformed or contains invalid data.
        """
        try:
            return unit_from_dict(json.loads(document))
        except Exception as e:
            logger.error(f"Failed to parse unit document for {unit_id}: {e}")
            raise ValueError(f"Unit document parsing failed: {e}") from e
