"""PostgreSQL database manager built on asyncpg."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Sequence

import asyncpg

from ..cache import IdSequence
from ..errors import ConfigurationError, DatabaseConnectionError
from ..master import MasterConnection
from ..sql import identifier_list, quote_identifier, quote_literal, union_all
from ..tenant import Row, TenantPool, TenantSession, rows_to_dicts
from .base import DatabaseManager, truncation_targets

LOG = logging.getLogger(__name__)

DIALECT = "postgres"
DEFAULT_PORT = 5432
BOOTSTRAP_DATABASE = "template1"

_DRIVER_ERRORS: tuple[type[BaseException], ...] = (asyncpg.PostgresError, asyncpg.InterfaceError)

_TABLE_NAMES_QUERY = """
    SELECT tablename
    FROM pg_catalog.pg_tables
    WHERE schemaname = 'public'
    ORDER BY tablename
"""

_ID_COLUMNS_QUERY = """
    SELECT table_name
    FROM information_schema.columns
    WHERE table_schema = 'public' AND column_name = 'id'
"""


def _ident(name: str) -> str:
    return quote_identifier(name, DIALECT)


def _literal(value: str) -> str:
    return quote_literal(value, DIALECT)


class PostgresSession:
    """``TenantSession`` over a single asyncpg connection."""

    dialect = DIALECT

    def __init__(self, connection: asyncpg.Connection) -> None:
        self.connection = connection

    async def execute(self, sql: str, *args: Any) -> None:
        await self.connection.execute(sql, *args)

    async def fetch(self, sql: str, *args: Any) -> list[Row]:
        return rows_to_dicts(await self.connection.fetch(sql, *args))

    def placeholder(self, position: int) -> str:
        return f"${position}"


class PostgresTenant(TenantPool[asyncpg.Pool]):
    """asyncpg pool bounded by ``pool_min``/``pool_max``."""

    dialect = DIALECT
    driver_errors = _DRIVER_ERRORS

    def placeholder(self, position: int) -> str:
        return f"${position}"

    async def _open_pool(self) -> asyncpg.Pool:
        connection = self._connection
        return await asyncpg.create_pool(
            host=connection.host,
            port=connection.port or DEFAULT_PORT,
            user=connection.user,
            password=connection.password,
            database=connection.database,
            min_size=connection.pool_min,
            max_size=connection.pool_max,
            timeout=connection.connect_timeout,
        )

    async def _close_pool(self, pool: asyncpg.Pool) -> None:
        await pool.close()

    @asynccontextmanager
    async def _acquire(self, pool: asyncpg.Pool, *, transactional: bool) -> AsyncIterator[TenantSession]:
        try:
            connection = await pool.acquire()
        except (OSError, asyncio.TimeoutError, *_DRIVER_ERRORS) as exc:
            raise DatabaseConnectionError(self.dialect, self.database, str(exc)) from exc
        try:
            if transactional:
                async with connection.transaction():
                    yield PostgresSession(connection)
            else:
                yield PostgresSession(connection)
        finally:
            await pool.release(connection)


class PostgresMasterConnection(MasterConnection[asyncpg.Connection]):
    """Superuser session against ``template1`` (or ``admin.master_database``)."""

    engine = DIALECT
    driver_errors = _DRIVER_ERRORS

    @property
    def target(self) -> str:
        return self._config.admin.master_database or BOOTSTRAP_DATABASE

    async def _connect(self) -> asyncpg.Connection:
        connection = self._config.connection
        admin = self._config.admin
        return await asyncpg.connect(
            host=connection.host,
            port=connection.port or DEFAULT_PORT,
            user=admin.super_user,
            password=admin.super_password,
            database=self.target,
            timeout=connection.connect_timeout,
        )

    async def _run(self, client: asyncpg.Connection, statement: str, params: Sequence[Any]) -> list[Row]:
        if params:
            return rows_to_dicts(await client.fetch(statement, *params))
        # CREATE/DROP DATABASE cannot be prepared; use the simple query protocol.
        await client.execute(statement)
        return []

    async def _disconnect(self, client: asyncpg.Connection) -> None:
        await client.close()

    def is_duplicate_database(self, exc: BaseException) -> bool:
        return isinstance(exc, asyncpg.exceptions.DuplicateDatabaseError)


class PostgresDatabaseManager(DatabaseManager):
    """Administrative operations for PostgreSQL."""

    engine = DIALECT
    operations = DatabaseManager.operations | {
        "create_db_owner",
        "create_db",
        "drop_db",
        "copy_db",
        "truncate_db",
        "update_id_sequences",
    }
    driver_errors = _DRIVER_ERRORS

    async def create_db_owner(self) -> None:
        connection = self.config.connection
        if not connection.user:
            raise ConfigurationError("create_db_owner requires connection.user")
        existing = await self._master_query(
            "SELECT 1 FROM pg_catalog.pg_roles WHERE rolname = $1",
            [connection.user],
            operation="create_db_owner",
        )
        if existing:
            return
        statement = f"CREATE ROLE {_ident(connection.user)} LOGIN"
        if connection.password:
            statement += f" PASSWORD {_literal(connection.password)}"
        await self._master_query(statement, operation="create_db_owner")
        LOG.info("Created database owner", extra={"engine": self.engine, "user": connection.user})

    async def create_db(self, name: str | None = None) -> None:
        database = self._database_name(name)

        async def _attempt(collation: str | None) -> None:
            if collation is None:
                statement = f"CREATE DATABASE {_ident(database)}"
            else:
                statement = (
                    f"CREATE DATABASE {_ident(database)} ENCODING = 'UTF-8' "
                    f"LC_COLLATE = {_literal(collation)} TEMPLATE template0"
                )
            await self._master_query(statement, operation="create_db")

        await self._create_with_collations(database, _attempt)

    async def drop_db(self, name: str | None = None) -> None:
        database = self._database_name(name)
        # Idle pooled connections still count as sessions on the database.
        await self.close_tenant(database)
        await self._master_query(f"DROP DATABASE IF EXISTS {_ident(database)}", operation="drop_db")
        LOG.info("Dropped database", extra={"engine": self.engine, "database": database})

    async def copy_db(self, from_name: str, to_name: str) -> None:
        # The template database must have no other sessions.
        await self.close_tenant(from_name)
        await self.close_tenant(to_name)
        await self._master_query(
            f"CREATE DATABASE {_ident(to_name)} TEMPLATE {_ident(from_name)}",
            operation="copy_db",
        )
        LOG.info("Copied database", extra={"engine": self.engine, "source": from_name, "database": to_name})

    async def truncate_db(self, exclude: Iterable[str] = ()) -> None:
        async with self.scoped_tenant() as tenant:
            targets = truncation_targets(await self._table_names(tenant), exclude)
            if not targets:
                LOG.debug("Nothing to truncate", extra={"engine": self.engine})
                return
            # One statement so foreign keys between target tables never block it.
            statement = f"TRUNCATE TABLE {identifier_list(targets, DIALECT)} RESTART IDENTITY"
            await self._tenant_execute(tenant, statement, operation="truncate_db")
        LOG.info("Truncated tables", extra={"engine": self.engine, "tables": len(targets)})

    async def update_id_sequences(self) -> None:
        async with self.scoped_tenant() as tenant:
            sequences = await self._id_sequences(tenant)
            if not sequences:
                LOG.debug("No id sequences to update", extra={"engine": self.engine})
                return
            # An empty table restarts at the sequence minimum, otherwise at MAX(id) + 1.
            statement = union_all(
                f"SELECT setval({_literal(entry.sequence)}, "
                f"GREATEST(COALESCE(MAX(id), 0) + 1, {entry.min_value}), false) "
                f"FROM {_ident(entry.table)}"
                for entry in sequences
            )
            await self._tenant_fetch(tenant, statement, operation="update_id_sequences")
        LOG.info("Updated id sequences", extra={"engine": self.engine, "sequences": len(sequences)})

    def _create_master(self) -> PostgresMasterConnection:
        return PostgresMasterConnection(self.config)

    def _create_tenant(self, database: str) -> PostgresTenant:
        return PostgresTenant(self.config.connection.with_database(database))

    async def _load_table_names(self, tenant: TenantPool[Any]) -> list[str]:
        rows = await self._tenant_fetch(tenant, _TABLE_NAMES_QUERY, operation="load_table_names")
        return [str(row["tablename"]) for row in rows]

    async def _load_id_sequences(self, tenant: TenantPool[Any], table_names: tuple[str, ...]) -> list[IdSequence]:
        rows = await self._tenant_fetch(tenant, _ID_COLUMNS_QUERY, operation="load_id_sequences")
        with_id = {str(row["table_name"]) for row in rows}
        id_tables = [name for name in table_names if name in with_id]
        if not id_tables:
            return []

        serial_query = union_all(
            f"SELECT {_literal(table)} AS table_name, "
            f"pg_get_serial_sequence({_literal(_ident(table))}, 'id') AS sequence_name"
            for table in id_tables
        )
        serial_rows = await self._tenant_fetch(tenant, serial_query, operation="load_id_sequences")
        # Tables whose id has no default sequence (uuid keys and the like) are skipped.
        serials = [
            (str(row["table_name"]), str(row["sequence_name"]))
            for row in serial_rows
            if row["sequence_name"]
        ]
        if not serials:
            return []

        min_query = union_all(
            f"SELECT {_literal(table)} AS table_name, {_literal(sequence)} AS sequence_name, "
            f"seqmin AS min_value FROM pg_catalog.pg_sequence "
            f"WHERE seqrelid = {_literal(sequence)}::regclass"
            for table, sequence in serials
        )
        min_rows = await self._tenant_fetch(tenant, min_query, operation="load_id_sequences")
        order = {table: position for position, table in enumerate(id_tables)}
        descriptors = [
            IdSequence(
                table=str(row["table_name"]),
                sequence=str(row["sequence_name"]),
                min_value=int(row["min_value"]),
            )
            for row in min_rows
        ]
        descriptors.sort(key=lambda entry: order.get(entry.table, len(order)))
        return descriptors


__all__ = [
    "PostgresDatabaseManager",
    "PostgresMasterConnection",
    "PostgresSession",
    "PostgresTenant",
]
