"""SQLite database manager; databases are files addressed by path."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterable

import aiosqlite

from ..cache import IdSequence
from ..config import ConnectionConfig
from ..errors import DatabaseConnectionError, DatabaseExistsError
from ..sql import quote_identifier
from ..tenant import Row, TenantPool, TenantSession
from .base import DatabaseManager, truncation_targets

LOG = logging.getLogger(__name__)

DIALECT = "sqlite"
SEQUENCE_TABLE = "sqlite_sequence"
COMPANION_SUFFIXES = ("-journal", "-wal", "-shm")

_DRIVER_ERRORS: tuple[type[BaseException], ...] = (sqlite3.Error,)

_TABLE_NAMES_QUERY = """
    SELECT name
    FROM sqlite_master
    WHERE type = 'table' AND name NOT LIKE 'sqlite_%'
    ORDER BY name
"""

# Only AUTOINCREMENT tables keep a counter in sqlite_sequence; plain
# INTEGER PRIMARY KEY tables always continue from MAX(rowid) + 1.
_AUTOINCREMENT_ID_TABLES_QUERY = """
    SELECT m.name AS table_name
    FROM sqlite_master AS m
    JOIN pragma_table_info(m.name) AS p
    WHERE m.type = 'table' AND p.name = 'id' AND UPPER(m.sql) LIKE '%AUTOINCREMENT%'
"""


def _ident(name: str) -> str:
    return quote_identifier(name, DIALECT)


def _read_write_uri(path: Path) -> str:
    # mode=rw refuses to create the file, so a missing database fails to connect.
    return f"{path.resolve().as_uri()}?mode=rw"


class SqliteSession:
    """``TenantSession`` over the shared aiosqlite connection."""

    dialect = DIALECT

    def __init__(self, connection: aiosqlite.Connection) -> None:
        self.connection = connection

    async def execute(self, sql: str, *args: Any) -> None:
        cursor = await self.connection.execute(sql, args)
        await cursor.close()

    async def fetch(self, sql: str, *args: Any) -> list[Row]:
        async with self.connection.execute(sql, args) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    def placeholder(self, position: int) -> str:
        return "?"


class SqliteTenant(TenantPool[aiosqlite.Connection]):
    """Single aiosqlite connection; transactions run one at a time."""

    dialect = DIALECT
    driver_errors = _DRIVER_ERRORS
    concurrent_transactions = False

    def __init__(self, connection: ConnectionConfig) -> None:
        super().__init__(connection)
        self._transaction_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return Path(self.database)

    def placeholder(self, position: int) -> str:
        return "?"

    async def _open_pool(self) -> aiosqlite.Connection:
        connection = await aiosqlite.connect(
            _read_write_uri(self.path),
            uri=True,
            isolation_level=None,
            timeout=self._connection.connect_timeout,
        )
        connection.row_factory = aiosqlite.Row
        await connection.execute("PRAGMA foreign_keys = ON")
        return connection

    async def _close_pool(self, pool: aiosqlite.Connection) -> None:
        await pool.close()

    @asynccontextmanager
    async def _acquire(self, pool: aiosqlite.Connection, *, transactional: bool) -> AsyncIterator[TenantSession]:
        session = SqliteSession(pool)
        if not transactional:
            yield session
            return
        async with self._transaction_lock:
            await pool.execute("BEGIN")
            try:
                yield session
            except BaseException:
                await pool.execute("ROLLBACK")
                raise
            await pool.execute("COMMIT")


class SqliteDatabaseManager(DatabaseManager):
    """Administrative operations for SQLite database files.

    There is no privileged server session: creating, dropping and copying
    work on the files directly. Collation candidates do not apply.
    """

    engine = DIALECT
    operations = DatabaseManager.operations | {
        "create_db",
        "drop_db",
        "copy_db",
        "truncate_db",
        "update_id_sequences",
    }
    driver_errors = _DRIVER_ERRORS

    async def create_db(self, name: str | None = None) -> None:
        database = self._database_name(name)
        path = Path(database)
        if path.exists():
            raise DatabaseExistsError("create_db", self.engine, str(path), "database file already exists")
        try:
            async with aiosqlite.connect(path) as connection:
                await connection.execute("PRAGMA user_version")
        except (OSError, sqlite3.Error) as exc:
            raise DatabaseConnectionError(self.engine, database, str(exc)) from exc
        LOG.info("Created database", extra={"engine": self.engine, "database": database})

    async def drop_db(self, name: str | None = None) -> None:
        database = self._database_name(name)
        await self.close_tenant(database)
        path = Path(database)
        for candidate in (path, *(Path(f"{path}{suffix}") for suffix in COMPANION_SUFFIXES)):
            candidate.unlink(missing_ok=True)
        LOG.info("Dropped database", extra={"engine": self.engine, "database": database})

    async def copy_db(self, from_name: str, to_name: str) -> None:
        source_path, target_path = Path(from_name), Path(to_name)
        if target_path.exists():
            raise DatabaseExistsError("copy_db", self.engine, str(target_path), "database file already exists")
        try:
            source = await aiosqlite.connect(_read_write_uri(source_path), uri=True)
        except sqlite3.Error as exc:
            raise DatabaseConnectionError(self.engine, from_name, str(exc)) from exc
        try:
            # The backup runs on the source's worker thread.
            async with aiosqlite.connect(target_path, check_same_thread=False) as target:
                await source.backup(target)
        except sqlite3.Error as exc:
            raise DatabaseConnectionError(self.engine, to_name, str(exc)) from exc
        finally:
            await source.close()
        LOG.info("Copied database", extra={"engine": self.engine, "source": from_name, "database": to_name})

    async def truncate_db(self, exclude: Iterable[str] = ()) -> None:
        tenant = self.tenant()
        targets = truncation_targets(await self._table_names(tenant), exclude)
        if not targets:
            LOG.debug("Nothing to truncate", extra={"engine": self.engine})
            return
        # The pragma is a no-op inside a transaction, so it wraps the transaction.
        await self._tenant_execute(tenant, "PRAGMA foreign_keys = OFF", operation="truncate_db")
        try:
            has_sequences = await self._has_sequence_table(tenant)
            async with tenant.transaction() as session:
                for table in targets:
                    await self._session_execute(session, f"DELETE FROM {_ident(table)}", operation="truncate_db")
                if has_sequences:
                    markers = ", ".join("?" for _ in targets)
                    await self._session_execute(
                        session,
                        f"DELETE FROM {SEQUENCE_TABLE} WHERE name IN ({markers})",
                        *targets,
                        operation="truncate_db",
                    )
        finally:
            await self._tenant_execute(tenant, "PRAGMA foreign_keys = ON", operation="truncate_db")
        LOG.info("Truncated tables", extra={"engine": self.engine, "tables": len(targets)})

    async def update_id_sequences(self) -> None:
        tenant = self.tenant()
        sequences = await self._id_sequences(tenant)
        if not sequences:
            LOG.debug("No id sequences to update", extra={"engine": self.engine})
            return
        async with tenant.transaction() as session:
            for entry in sequences:
                await self._session_execute(
                    session, f"DELETE FROM {SEQUENCE_TABLE} WHERE name = ?", entry.table, operation="update_id_sequences"
                )
                # seq holds the last id handed out, so the next insert gets seq + 1.
                await self._session_execute(
                    session,
                    f"INSERT INTO {SEQUENCE_TABLE} (name, seq) "
                    f"SELECT ?, MAX(COALESCE(MAX(id), 0), ?) FROM {_ident(entry.table)}",
                    entry.table,
                    entry.min_value - 1,
                    operation="update_id_sequences",
                )
        LOG.info("Updated id sequences", extra={"engine": self.engine, "sequences": len(sequences)})

    def _create_tenant(self, database: str) -> SqliteTenant:
        return SqliteTenant(self.config.connection.with_database(database))

    async def _has_sequence_table(self, tenant: TenantPool[Any]) -> bool:
        rows = await self._tenant_fetch(
            tenant,
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            SEQUENCE_TABLE,
            operation="load_table_names",
        )
        return bool(rows)

    async def _load_table_names(self, tenant: TenantPool[Any]) -> list[str]:
        rows = await self._tenant_fetch(tenant, _TABLE_NAMES_QUERY, operation="load_table_names")
        return [str(row["name"]) for row in rows]

    async def _load_id_sequences(self, tenant: TenantPool[Any], table_names: tuple[str, ...]) -> list[IdSequence]:
        rows = await self._tenant_fetch(tenant, _AUTOINCREMENT_ID_TABLES_QUERY, operation="load_id_sequences")
        with_counter = {str(row["table_name"]) for row in rows}
        return [
            IdSequence(table=name, sequence=SEQUENCE_TABLE, min_value=1)
            for name in table_names
            if name in with_counter
        ]


__all__ = [
    "SqliteDatabaseManager",
    "SqliteSession",
    "SqliteTenant",
]
