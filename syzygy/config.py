"""Configuration loading for the Syzygy tool server.

This module provides centralized configuration management:
- Load settings from SYZYGY_-prefixed environment variables and .env files
- Validate configuration using pydantic
- Provide typed access to all settings
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment.

    Uses pydantic-settings for environment variable handling with
    .env file support via python-dotenv.
    """

    model_config = SettingsConfigDict(
        env_prefix="SYZYGY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    data_dir: str = Field(
        default="~/.syzygy-data",
        description="Root directory for unit documents and project configs",
    )
    store_backend: Literal["file", "sqlite"] = Field(
        default="file",
        description="Unit store implementation",
    )
    sqlite_path: str = Field(
        default="",
        description="SQLite database path (defaults to <data_dir>/syzygy.db)",
    )
    project_key: str = Field(
        default="default",
        description="Project the store is scoped to",
    )

    # Behaviour
    require_project_init: bool = Field(
        default=False,
        description="Refuse syzygy_unit_start until syzygy_project_init has run",
    )
    artifacts_dir: str = Field(
        default="./syzygy-artifacts",
        description="Root directory for crystallize output",
    )
    replay_default_command: str = Field(
        default="node ./runner-node/bin/syzygy-runner.js",
        description="Replay command line used when no project runner is configured",
    )

    # Server identity
    server_name: str = Field(
        default="syzygy-mcp",
        description="Name reported by initialize",
    )
    server_version: str = Field(
        default="0.1.0",
        description="Version reported by initialize",
    )
    protocol_version: str = Field(
        default="2024-11-05",
        description="Protocol version reported by initialize",
    )

    # Logging configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Log level",
    )
    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format",
    )

    @field_validator("data_dir", "artifacts_dir")
    @classmethod
    def validate_directory(cls, v: str) -> str:
        """Ensure directory settings are not blank."""
        if not v.strip():
            raise ValueError("directory settings must not be empty")
        return v

    @field_validator("project_key")
    @classmethod
    def validate_project_key(cls, v: str) -> str:
        """Ensure the project key is usable as a directory name."""
        v = v.strip()
        if not v:
            raise ValueError("project_key must not be empty")
        if "/" in v or "\\" in v or ".." in v:
            raise ValueError("project_key must not contain path separators or '..'")
        return v

    @field_validator("replay_default_command")
    @classmethod
    def validate_replay_command(cls, v: str) -> str:
        """Ensure the default replay command names an executable."""
        if not v.strip():
            raise ValueError("replay_default_command must not be empty")
        return v

    def resolved_sqlite_path(self) -> str:
        """Return sqlite_path, or <data_dir>/syzygy.db when unset."""
        if self.sqlite_path:
            return str(Path(self.sqlite_path).expanduser())
        return str(Path(self.data_dir).expanduser() / "syzygy.db")


def load_settings(env_file: str | None = None) -> Settings:
    """Load application settings from environment.

    Args:
        env_file: Optional path to .env file. If not provided,
                 uses the default .env in the current directory.

    Returns:
        Validated Settings instance.

    Raises:
        ValidationError: If settings validation fails.
    """
    if env_file:
        return Settings(_env_file=env_file)  # type: ignore[call-arg]
    return Settings()


__all__ = ["Settings", "load_settings"]
