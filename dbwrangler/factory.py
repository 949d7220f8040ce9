"""Map a configured dialect string to a concrete database manager."""

from __future__ import annotations

from typing import Any, Mapping

from .config import ManagerConfig, config_from_mapping
from .engines import (
    DatabaseManager,
    MySqlDatabaseManager,
    PostgresDatabaseManager,
    SqliteDatabaseManager,
)
from .errors import UnsupportedDialectError

DIALECT_ALIASES: Mapping[str, str] = {
    "pg": "postgres",
    "postgres": "postgres",
    "postgresql": "postgres",
    "mysql": "mysql",
    "mysql2": "mysql",
    "maria": "mysql",
    "mariadb": "mysql",
    "mariasql": "mysql",
    "sqlite": "sqlite",
    "sqlite3": "sqlite",
}

MANAGERS: Mapping[str, type[DatabaseManager]] = {
    "postgres": PostgresDatabaseManager,
    "mysql": MySqlDatabaseManager,
    "sqlite": SqliteDatabaseManager,
}

SUPPORTED_DIALECTS: tuple[str, ...] = tuple(MANAGERS)


def normalize_dialect(dialect: str) -> str:
    """Return the canonical engine name for ``dialect`` or its alias."""

    engine = DIALECT_ALIASES.get(dialect.strip().lower())
    if engine is None:
        raise UnsupportedDialectError(dialect, SUPPORTED_DIALECTS)
    return engine


def database_manager_factory(config: ManagerConfig | Mapping[str, Any]) -> DatabaseManager:
    """Build a fresh manager for the dialect declared in ``config``."""

    if not isinstance(config, ManagerConfig):
        config = config_from_mapping(config)
    manager_cls = MANAGERS[normalize_dialect(config.dialect)]
    return manager_cls(config)


__all__ = [
    "DIALECT_ALIASES",
    "SUPPORTED_DIALECTS",
    "database_manager_factory",
    "normalize_dialect",
]
