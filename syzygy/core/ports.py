"""Port interfaces for the Syzygy tool server.

These abstract base classes define the boundaries between core
domain logic and external adapters. Implementations live in the
adapters/ package.

Port Interface Categories:

1. **Driven Ports** (core calls out to adapters)
   - UnitStorePort: Persist units and project configuration
   - ExportPort: Crystallize a run into reusable artifacts
   - CommandRunnerPort: Launch external replay commands

2. **Driving side** (external systems call into core)
   - The MCP tool registry calls UnitService directly; there is a
     single driving adapter, so no separate port is declared for it.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from .models import CommandResult, ProjectConfig, Run, Unit


# ============================================================================
# DRIVEN PORTS (Core calls out to adapters)
# ============================================================================


class UnitStorePort(ABC):
    """Port for persisting units and the project configuration.

    A store is scoped to one project. The core reads a whole unit
    document, mutates it in memory and writes it back with save_unit;
    implementations must make each save_unit atomic at the unit level.
    Cross-process locking is not required.
    """

    @property
    @abstractmethod
    def base_dir(self) -> str:
        """Root location of the store's data (directory path)."""

    @abstractmethod
    async def get_or_create_unit(
        self,
        unit_id: str,
        title: str = "",
        env: Mapping[str, Any] | None = None,
    ) -> Unit:
        """Load a unit, or build a new one if it has never been saved.

        An existing unit has the get-or-create merge policy applied
        (see models.apply_unit_header). Nothing is persisted here; the
        caller saves once its mutation is complete.

        Args:
            unit_id: Caller-supplied stable unit key.
            title: Title to apply when non-empty.
            env: Environment mapping to apply when non-empty.

        Returns:
            The loaded or newly built Unit.

        Raises:
            Exception: If the backing storage is unreadable.
        """

    @abstractmethod
    async def get_unit(self, unit_id: str) -> Unit | None:
        """Retrieve a unit by ID.

        Returns:
            Unit if found, None otherwise.

        Raises:
            Exception: If the backing storage is unreadable or corrupt.
        """

    @abstractmethod
    async def save_unit(self, unit: Unit) -> None:
        """Persist the full unit document, replacing any previous version.

        Raises:
            Exception: If the write fails. The previous version must
                remain readable in that case.
        """

    @abstractmethod
    async def list_unit_ids(self) -> list[str]:
        """Return the IDs of all stored units (unordered).

        Returns:
            List of unit IDs; empty if nothing has been stored yet.
        """

    @abstractmethod
    async def get_project_config(self) -> ProjectConfig | None:
        """Return the project configuration, or None if not initialised."""

    @abstractmethod
    async def save_project_config(self, config: ProjectConfig) -> str:
        """Persist the project configuration under config.project_key.

        get_project_config only reads the store's own project, so a
        config saved for another key is stored but not used here.

        Returns:
            A human-readable location of the saved configuration
            (file path, or database path plus key).
        """

    @abstractmethod
    async def close(self) -> None:
        """Release any held resources (connections, handles)."""


class ExportPort(ABC):
    """Port for crystallizing a run into reusable artifacts."""

    @abstractmethod
    async def export(
        self, unit: Unit, run: Run, template: str, output_dir: str
    ) -> dict[str, str]:
        """Write artifacts for a run.

        Args:
            unit: Owning unit (its env is part of the exported spec).
            run: Run whose steps, anchors and checks are exported.
            template: Export template name.
            output_dir: Directory to write into (created if missing).

        Returns:
            Mapping of artifact kind (e.g. "spec") to written path.

        Raises:
            SyzygyError: invalid_template for an unknown template.
            OSError: If the artifacts cannot be written.
        """


class CommandRunnerPort(ABC):
    """Port for executing external commands during replay."""

    @abstractmethod
    def is_available(self, command: str) -> bool:
        """Return True if the command can be located for execution."""

    @abstractmethod
    async def run(
        self,
        command: str,
        args: Sequence[str],
        cwd: str | None,
        env: Mapping[str, str],
    ) -> CommandResult:
        """Run a command to completion and capture combined output.

        Args:
            command: Executable name or path.
            args: Arguments passed to the executable.
            cwd: Working directory, or None for the current directory.
            env: Variables overlaid on the server's own environment.

        Returns:
            CommandResult with ok=False on launch failure or non-zero exit.
        """
