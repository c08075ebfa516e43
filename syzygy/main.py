"""Composition root for the Syzygy tool server.

This module is the ONLY location that imports both core domain logic
and concrete adapter implementations. All wiring of dependencies
happens here, creating a clear entry point for the application.

Module Structure:
- Configuration loading via config module
- Adapter instantiation
- Core service initialization
- Dependency injection
- Serving JSON-RPC over stdin/stdout until end of input
"""

import asyncio
import logging
import sys

from syzygy.adapters.export.spec_json import SpecJsonExporter
from syzygy.adapters.mcp.server import MCPServer
from syzygy.adapters.mcp.tools import ToolRegistry
from syzygy.adapters.runner.process import SubprocessCommandRunner
from syzygy.adapters.store.file import FileUnitStore
from syzygy.adapters.store.sqlite import SQLiteUnitStore
from syzygy.config import Settings, load_settings
from syzygy.core.impact import ImpactPlanner
from syzygy.core.ports import UnitStorePort
from syzygy.core.selfcheck import SelfCheckEngine
from syzygy.core.unit_service import UnitService


def configure_logging(log_level: str, log_format: str) -> None:
    """Configure application logging.

    Logs go to stderr; stdout is reserved for protocol responses.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json, text).
    """
    level = getattr(logging, log_level, logging.INFO)

    if log_format == "json":
        format_str = (
            '{"time": "%(asctime)s", "level": "%(levelname)s", '
            '"logger": "%(name)s", "message": "%(message)s"}'
        )
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stderr),
        ],
    )


def build_store(settings: Settings) -> UnitStorePort:
    """Instantiate the unit store selected by settings.

    Raises:
        ValueError: For an unknown store backend.
    """
    if settings.store_backend == "file":
        return FileUnitStore(base_dir=settings.data_dir, project_key=settings.project_key)
    if settings.store_backend == "sqlite":
        return SQLiteUnitStore(
            db_path=settings.resolved_sqlite_path(), project_key=settings.project_key
        )
    raise ValueError(f"Unknown store backend: {settings.store_backend}")


def build_server(settings: Settings, store: UnitStorePort) -> MCPServer:
    """Wire the service, tool registry and stdio server around a store."""
    service = UnitService(
        store=store,
        exporter=SpecJsonExporter(),
        runner=SubprocessCommandRunner(),
        selfcheck=SelfCheckEngine(),
        planner=ImpactPlanner(),
        project_key=settings.project_key,
        artifacts_dir=settings.artifacts_dir,
        replay_default_command=settings.replay_default_command,
        require_project_init=settings.require_project_init,
    )
    registry = ToolRegistry(service)
    return MCPServer(
        registry,
        name=settings.server_name,
        version=settings.server_version,
        protocol_version=settings.protocol_version,
        input_stream=sys.stdin,
        output_stream=sys.stdout,
    )


async def bootstrap() -> None:
    """Load configuration, wire adapters, and serve until end of input.

    This is the composition root: the single place where all components
    are instantiated and wired together.

    Steps:
    1. Load configuration from environment
    2. Configure logging
    3. Instantiate the unit store
    4. Initialize core services and the stdio server
    5. Serve requests; close the store on exit
    """
    settings = load_settings()

    configure_logging(settings.log_level, settings.log_format)
    logger = logging.getLogger(__name__)
    logger.info("Loading Syzygy tool server...")

    # Protocol lines are UTF-8 regardless of the locale
    for stream in (sys.stdin, sys.stdout):
        reconfigure = getattr(stream, "reconfigure", None)
        if reconfigure is not None:
            reconfigure(encoding="utf-8", errors="replace")

    store = build_store(settings)
    logger.info(
        f"Unit store initialized: {settings.store_backend} ({store.base_dir})",
        extra={"project_key": settings.project_key},
    )

    try:
        server = build_server(settings, store)
        await server.run()
    finally:
        await store.close()


def main() -> None:
    """Application entry point.

    Exit codes:
        0: Input closed normally
        1: Fatal bootstrap or runtime error
        130: Interrupted by user (SIGINT/KeyboardInterrupt)
    """
    logger = logging.getLogger(__name__)
    try:
        asyncio.run(bootstrap())
    except KeyboardInterrupt:
        logger.warning("Shutdown requested by user (SIGINT)")
        sys.exit(130)
    except asyncio.CancelledError:
        logger.info("Graceful shutdown completed")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
