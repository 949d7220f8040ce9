"""Engine-independent create/drop/copy/truncate tooling for test and deploy databases."""

from __future__ import annotations

__version__ = "0.1.0"

from .cache import IdSequence, MetadataCache
from .config import AdminConfig, ConnectionConfig, ManagerConfig, load_config
from .engines import (
    DatabaseManager,
    MySqlDatabaseManager,
    PostgresDatabaseManager,
    SeedFunction,
    SqliteDatabaseManager,
)
from .errors import (
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseExistsError,
    DatabaseManagerError,
    MigrationError,
    StatementError,
    UnsupportedDialectError,
    UnsupportedOperationError,
)
from .factory import SUPPORTED_DIALECTS, database_manager_factory, normalize_dialect
from .tenant import TenantPool, TenantSession

__all__ = [
    "AdminConfig",
    "ConfigurationError",
    "ConnectionConfig",
    "DatabaseConnectionError",
    "DatabaseExistsError",
    "DatabaseManager",
    "DatabaseManagerError",
    "IdSequence",
    "ManagerConfig",
    "MetadataCache",
    "MigrationError",
    "MySqlDatabaseManager",
    "PostgresDatabaseManager",
    "SUPPORTED_DIALECTS",
    "SeedFunction",
    "SqliteDatabaseManager",
    "StatementError",
    "TenantPool",
    "TenantSession",
    "UnsupportedDialectError",
    "UnsupportedOperationError",
    "__version__",
    "database_manager_factory",
    "load_config",
    "normalize_dialect",
]
