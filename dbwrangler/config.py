"""Manager configuration models and TOML loading helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import tomllib

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError

CONFIG_FILE = Path.cwd() / "dbwrangler.toml"


class ConnectionConfig(BaseModel):
    """Tenant connection settings; the database may not exist yet."""

    host: str = "localhost"
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    pool_min: int = Field(default=0, ge=0)
    pool_max: int = Field(default=10, ge=1)
    migrations_directory: Path | None = None
    migrations_table_name: str = "migrations"
    connect_timeout: float = 5.0

    def with_database(self, database: str) -> ConnectionConfig:
        """Return a copy targeting another database on the same server."""

        return self.model_copy(update={"database": database})


class AdminConfig(BaseModel):
    """Privileged credentials and engine toggles for administrative statements."""

    super_user: str | None = None
    super_password: str | None = None
    collation_candidates: list[str] = Field(default_factory=list)
    master_database: str | None = None


class ManagerConfig(BaseModel):
    """Everything a database manager needs: dialect, tenant and admin settings."""

    dialect: str
    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    admin: AdminConfig = Field(default_factory=AdminConfig)

    def with_database(self, database: str) -> ManagerConfig:
        """Return a copy whose tenant connection targets ``database``."""

        return self.model_copy(update={"connection": self.connection.with_database(database)})


def load_config(path: Path | None = None) -> ManagerConfig:
    """Load a manager configuration from a TOML file."""

    target = path or CONFIG_FILE
    try:
        with target.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file '{target}' not found") from exc
    except (tomllib.TOMLDecodeError, OSError) as exc:
        raise ConfigurationError(f"Failed to read configuration file '{target}': {exc}") from exc
    return config_from_mapping(raw, source=str(target))


def config_from_mapping(data: Mapping[str, Any], *, source: str = "<mapping>") -> ManagerConfig:
    """Validate a plain mapping (parsed TOML, fixtures) into a ``ManagerConfig``."""

    try:
        return ManagerConfig.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {source}: {exc}") from exc


__all__ = [
    "AdminConfig",
    "CONFIG_FILE",
    "ConnectionConfig",
    "ManagerConfig",
    "config_from_mapping",
    "load_config",
]
