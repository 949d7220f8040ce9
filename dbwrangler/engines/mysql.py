"""MySQL / MariaDB database manager built on aiomysql."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Sequence

import aiomysql

from ..errors import ConfigurationError, DatabaseConnectionError
from ..master import MasterConnection
from ..sql import quote_identifier
from ..tenant import Row, TenantPool, TenantSession
from .base import DatabaseManager, truncation_targets

LOG = logging.getLogger(__name__)

DIALECT = "mysql"
DEFAULT_PORT = 3306
DEFAULT_CHARSET = "utf8"
DEFAULT_COLLATION = "utf8_general_ci"
ER_DB_CREATE_EXISTS = 1007

_DRIVER_ERRORS: tuple[type[BaseException], ...] = (aiomysql.Error,)

_TABLE_NAMES_QUERY = """
    SELECT TABLE_NAME AS table_name
    FROM information_schema.TABLES
    WHERE TABLE_SCHEMA = %s AND TABLE_TYPE = 'BASE TABLE'
    ORDER BY TABLE_NAME
"""


def _ident(name: str) -> str:
    # Statements are %-formatted by the driver whenever parameters are bound.
    return quote_identifier(name, DIALECT).replace("%", "%%")


class MySqlSession:
    """``TenantSession`` over a single aiomysql connection."""

    dialect = DIALECT

    def __init__(self, connection: aiomysql.Connection) -> None:
        self.connection = connection

    async def execute(self, sql: str, *args: Any) -> None:
        async with self.connection.cursor() as cursor:
            await cursor.execute(sql, args or None)

    async def fetch(self, sql: str, *args: Any) -> list[Row]:
        async with self.connection.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute(sql, args or None)
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    def placeholder(self, position: int) -> str:
        return "%s"


class MySqlTenant(TenantPool[aiomysql.Pool]):
    """aiomysql pool in autocommit mode; transactions are explicit."""

    dialect = DIALECT
    driver_errors = _DRIVER_ERRORS

    def placeholder(self, position: int) -> str:
        return "%s"

    async def _open_pool(self) -> aiomysql.Pool:
        connection = self._connection
        return await aiomysql.create_pool(
            host=connection.host,
            port=connection.port or DEFAULT_PORT,
            user=connection.user,
            password=connection.password or "",
            db=connection.database,
            minsize=connection.pool_min,
            maxsize=connection.pool_max,
            autocommit=True,
            connect_timeout=connection.connect_timeout,
        )

    async def _close_pool(self, pool: aiomysql.Pool) -> None:
        pool.close()
        await pool.wait_closed()

    @asynccontextmanager
    async def _acquire(self, pool: aiomysql.Pool, *, transactional: bool) -> AsyncIterator[TenantSession]:
        try:
            connection = await pool.acquire()
        except (OSError, asyncio.TimeoutError, *_DRIVER_ERRORS) as exc:
            raise DatabaseConnectionError(self.dialect, self.database, str(exc)) from exc
        try:
            session = MySqlSession(connection)
            if not transactional:
                yield session
                return
            await connection.begin()
            try:
                yield session
            except BaseException:
                await connection.rollback()
                raise
            await connection.commit()
        finally:
            pool.release(connection)


class MySqlMasterConnection(MasterConnection[aiomysql.Connection]):
    """Superuser session with no default database selected."""

    engine = DIALECT
    driver_errors = _DRIVER_ERRORS

    @property
    def target(self) -> str:
        connection = self._config.connection
        return f"{connection.host}:{connection.port or DEFAULT_PORT}"

    async def _connect(self) -> aiomysql.Connection:
        connection = self._config.connection
        admin = self._config.admin
        return await aiomysql.connect(
            host=connection.host,
            port=connection.port or DEFAULT_PORT,
            user=admin.super_user,
            password=admin.super_password or "",
            db=admin.master_database,
            autocommit=True,
            connect_timeout=connection.connect_timeout,
        )

    async def _run(self, client: aiomysql.Connection, statement: str, params: Sequence[Any]) -> list[Row]:
        async with client.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute(statement, tuple(params) if params else None)
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def _disconnect(self, client: aiomysql.Connection) -> None:
        await client.ensure_closed()

    def is_duplicate_database(self, exc: BaseException) -> bool:
        return bool(exc.args) and exc.args[0] == ER_DB_CREATE_EXISTS


class MySqlDatabaseManager(DatabaseManager):
    """Administrative operations for MySQL and MariaDB.

    Database copies and id sequence resync have no implementation for this
    engine and raise ``UnsupportedOperationError``.
    """

    engine = DIALECT
    operations = DatabaseManager.operations | {
        "create_db_owner",
        "create_db",
        "drop_db",
        "truncate_db",
    }
    driver_errors = _DRIVER_ERRORS

    async def create_db_owner(self) -> None:
        connection = self.config.connection
        if not connection.user:
            raise ConfigurationError("create_db_owner requires connection.user")
        await self._master_query(
            "CREATE USER IF NOT EXISTS %s@'%%' IDENTIFIED BY %s",
            [connection.user, connection.password or ""],
            operation="create_db_owner",
        )

    async def create_db(self, name: str | None = None) -> None:
        database = self._database_name(name)

        async def _attempt(collation: str | None) -> None:
            if collation is None:
                await self._master_query(
                    f"CREATE DATABASE {quote_identifier(database, DIALECT)} "
                    f"DEFAULT CHARACTER SET {DEFAULT_CHARSET} DEFAULT COLLATE {DEFAULT_COLLATION}",
                    operation="create_db",
                )
            else:
                await self._master_query(
                    f"CREATE DATABASE {_ident(database)} DEFAULT CHARACTER SET {DEFAULT_CHARSET} "
                    "DEFAULT COLLATE %s",
                    [collation],
                    operation="create_db",
                )

        await self._create_with_collations(database, _attempt)

        owner = self.config.connection.user
        if owner:
            await self._master_query(
                f"GRANT ALL PRIVILEGES ON {_ident(database)}.* TO %s@'%%'",
                [owner],
                operation="create_db",
            )

    async def drop_db(self, name: str | None = None) -> None:
        database = self._database_name(name)
        await self.close_tenant(database)
        await self._master_query(
            f"DROP DATABASE IF EXISTS {quote_identifier(database, DIALECT)}",
            operation="drop_db",
        )
        LOG.info("Dropped database", extra={"engine": self.engine, "database": database})

    async def copy_db(self, from_name: str, to_name: str) -> None:
        raise self.unsupported("copy_db")

    async def update_id_sequences(self) -> None:
        raise self.unsupported("update_id_sequences")

    async def truncate_db(self, exclude: Iterable[str] = ()) -> None:
        tenant = self.tenant()
        targets = truncation_targets(await self._table_names(tenant), exclude)
        if not targets:
            LOG.debug("Nothing to truncate", extra={"engine": self.engine})
            return
        async with tenant.transaction() as session:
            await self._session_execute(session, "SET FOREIGN_KEY_CHECKS = 0", operation="truncate_db")
            try:
                # One table at a time; TRUNCATE order is not safe to parallelize under foreign keys.
                for table in targets:
                    await self._session_execute(
                        session, f"TRUNCATE TABLE {quote_identifier(table, DIALECT)}", operation="truncate_db"
                    )
            finally:
                # The flag is per connection and the connection goes back to the pool.
                await self._session_execute(session, "SET FOREIGN_KEY_CHECKS = 1", operation="truncate_db")
        LOG.info("Truncated tables", extra={"engine": self.engine, "tables": len(targets)})

    def _create_master(self) -> MySqlMasterConnection:
        return MySqlMasterConnection(self.config)

    def _create_tenant(self, database: str) -> MySqlTenant:
        return MySqlTenant(self.config.connection.with_database(database))

    async def _load_table_names(self, tenant: TenantPool[Any]) -> list[str]:
        rows = await self._tenant_fetch(tenant, _TABLE_NAMES_QUERY, tenant.database, operation="load_table_names")
        return [str(row["table_name"]) for row in rows]


__all__ = [
    "MySqlDatabaseManager",
    "MySqlMasterConnection",
    "MySqlSession",
    "MySqlTenant",
]
