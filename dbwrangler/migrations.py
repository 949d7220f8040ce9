"""Minimal migration runner recording applied files in a bookkeeping table."""

from __future__ import annotations

import importlib.util
import inspect
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from types import ModuleType
from typing import Any, Callable

from .errors import ConfigurationError, MigrationError
from .sql import quote_identifier
from .tenant import TenantPool, TenantSession

LOG = logging.getLogger(__name__)

MIGRATION_FILE = re.compile(r"^(?P<version>\d+)_\w+\.py$")

NO_VERSION = "none"

_BOOKKEEPING_DDL: dict[str, str] = {
    "postgres": (
        "CREATE TABLE IF NOT EXISTS {table} ("
        "id SERIAL PRIMARY KEY, name VARCHAR(255), batch INTEGER, "
        "migration_time TIMESTAMPTZ)"
    ),
    "mysql": (
        "CREATE TABLE IF NOT EXISTS {table} ("
        "id INT UNSIGNED AUTO_INCREMENT PRIMARY KEY, name VARCHAR(255), batch INT, "
        "migration_time DATETIME)"
    ),
    "sqlite": (
        "CREATE TABLE IF NOT EXISTS {table} ("
        "id INTEGER PRIMARY KEY AUTOINCREMENT, name VARCHAR(255), batch INTEGER, "
        "migration_time DATETIME)"
    ),
}


@dataclass(frozen=True, slots=True)
class MigrationFile:
    """Migration module discovered on disk."""

    name: str
    version: str
    path: Path


def discover_migrations(directory: Path) -> list[MigrationFile]:
    """List ``<digits>_<name>.py`` files in ``directory`` ordered by file name."""

    if not directory.is_dir():
        raise MigrationError(f"Migrations directory '{directory}' does not exist")
    found: list[MigrationFile] = []
    for path in sorted(directory.iterdir(), key=lambda item: item.name):
        match = MIGRATION_FILE.match(path.name)
        if not match or not path.is_file():
            continue
        found.append(MigrationFile(name=path.name, version=match.group("version"), path=path))
    return found


def version_of(name: str) -> str:
    match = MIGRATION_FILE.match(name)
    return match.group("version") if match else name.split("_", 1)[0]


class Migrator:
    """Applies pending migration files through a tenant pool."""

    def __init__(self, tenant: TenantPool[Any], directory: Path | None, table_name: str) -> None:
        self._tenant = tenant
        self._directory = directory
        self._table_name = table_name

    @property
    def table(self) -> str:
        return quote_identifier(self._table_name, self._tenant.dialect)

    async def latest(self) -> int:
        """Run every pending migration in one batch; return how many ran."""

        if self._directory is None:
            raise ConfigurationError("connection.migrations_directory is not configured")
        migrations = discover_migrations(self._directory)
        await self._ensure_table()
        completed = {row["name"] for row in await self._tenant.fetch(f"SELECT name FROM {self.table}")}
        pending = [migration for migration in migrations if migration.name not in completed]
        if not pending:
            LOG.debug("Migrations already at latest", extra={"database": self._tenant.database})
            return 0

        batch_rows = await self._tenant.fetch(f"SELECT MAX(batch) AS batch FROM {self.table}")
        batch = int(batch_rows[0]["batch"] or 0) + 1 if batch_rows else 1
        insert = (
            f"INSERT INTO {self.table} (name, batch, migration_time) VALUES ("
            f"{self._tenant.placeholder(1)}, {self._tenant.placeholder(2)}, {self._tenant.placeholder(3)})"
        )
        async with self._tenant.transaction() as session:
            for migration in pending:
                up = _load_up(migration)
                await call_with_session(up, session)
                await session.execute(insert, migration.name, batch, _now(self._tenant.dialect))
                LOG.info(
                    "Applied migration",
                    extra={"migration": migration.name, "batch": batch, "database": self._tenant.database},
                )
        return len(pending)

    async def current_version(self) -> str:
        """Numeric prefix of the newest applied migration, or ``"none"``."""

        await self._ensure_table()
        rows = await self._tenant.fetch(f"SELECT name FROM {self.table}")
        versions = [version_of(str(row["name"])) for row in rows]
        if not versions:
            return NO_VERSION
        return max(versions, key=lambda value: (len(value), value))

    async def _ensure_table(self) -> None:
        ddl = _BOOKKEEPING_DDL.get(self._tenant.dialect)
        if ddl is None:
            raise MigrationError(f"No bookkeeping table layout for dialect '{self._tenant.dialect}'")
        await self._tenant.execute(ddl.format(table=self.table))


def _load_up(migration: MigrationFile) -> Callable[[TenantSession], Any]:
    module = _import_file(migration)
    up = getattr(module, "up", None)
    if not callable(up):
        raise MigrationError(f"Migration '{migration.name}' does not define up()")
    return up


def _import_file(migration: MigrationFile) -> ModuleType:
    module_name = f"dbwrangler_migration_{migration.version}_{migration.path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, migration.path)
    if spec is None or spec.loader is None:
        raise MigrationError(f"Cannot import migration '{migration.name}'")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


async def call_with_session(func: Callable[[TenantSession], Any], session: TenantSession) -> None:
    """Invoke a seed or migration callable, awaiting it when it is async."""

    result = func(session)
    if inspect.isawaitable(result):
        await result


def _now(dialect: str) -> Any:
    now = datetime.now(tz=timezone.utc)
    if dialect == "postgres":
        return now
    if dialect == "sqlite":
        return now.isoformat(sep=" ", timespec="seconds")
    return now.replace(tzinfo=None)


__all__ = [
    "MIGRATION_FILE",
    "MigrationFile",
    "Migrator",
    "NO_VERSION",
    "call_with_session",
    "discover_migrations",
    "version_of",
]
