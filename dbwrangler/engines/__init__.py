"""Engine-specific database managers."""

from __future__ import annotations

from .base import OPERATIONS, DatabaseManager, SeedFunction
from .mysql import MySqlDatabaseManager
from .postgres import PostgresDatabaseManager
from .sqlite import SqliteDatabaseManager

__all__ = [
    "DatabaseManager",
    "MySqlDatabaseManager",
    "OPERATIONS",
    "PostgresDatabaseManager",
    "SeedFunction",
    "SqliteDatabaseManager",
]
