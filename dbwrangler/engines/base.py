"""Operation contract shared by every engine-specific database manager."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, ClassVar, Iterable, Sequence

from ..cache import IdSequence, MetadataCache
from ..config import ManagerConfig
from ..errors import ConfigurationError, StatementError, UnsupportedOperationError
from ..master import MasterConnection
from ..migrations import Migrator, call_with_session
from ..tenant import TenantPool, TenantSession

LOG = logging.getLogger(__name__)

SeedFunction = Callable[[TenantSession], Awaitable[None] | None]

OPERATIONS: tuple[str, ...] = (
    "create_db_owner",
    "create_db",
    "drop_db",
    "copy_db",
    "truncate_db",
    "update_id_sequences",
    "migrate_db",
    "db_version",
    "populate_db",
)


class DatabaseManager:
    """Creates, drops, copies, truncates and migrates databases for one engine.

    Subclasses set ``engine`` and ``operations`` and override the operations
    they implement. Anything outside ``operations`` raises
    ``UnsupportedOperationError`` so callers can branch on it.
    """

    engine: ClassVar[str] = "generic"
    operations: ClassVar[frozenset[str]] = frozenset({"migrate_db", "db_version", "populate_db"})
    driver_errors: ClassVar[tuple[type[BaseException], ...]] = ()

    def __init__(self, config: ManagerConfig) -> None:
        self.config = config
        self.metadata = MetadataCache()
        self._master: MasterConnection[Any] | None = None
        self._tenants: dict[str, TenantPool[Any]] = {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(database={self.config.connection.database!r})"

    def supports(self, operation: str) -> bool:
        """Whether this engine implements ``operation``."""

        return operation in self.operations

    # -- administrative operations -------------------------------------------------

    async def create_db_owner(self) -> None:
        """Create the tenant user from ``connection.user`` if it does not exist."""

        raise self.unsupported("create_db_owner")

    async def create_db(self, name: str | None = None) -> None:
        """Create ``name`` (default: the configured database); fails if it exists."""

        raise self.unsupported("create_db")

    async def drop_db(self, name: str | None = None) -> None:
        """Drop ``name`` if it exists; dropping a missing database succeeds."""

        raise self.unsupported("drop_db")

    async def copy_db(self, from_name: str, to_name: str) -> None:
        """Create ``to_name`` as a copy of ``from_name``."""

        raise self.unsupported("copy_db")

    async def truncate_db(self, exclude: Iterable[str] = ()) -> None:
        """Empty every table except ``exclude`` and reset identity counters."""

        raise self.unsupported("truncate_db")

    async def update_id_sequences(self) -> None:
        """Move every ``id`` sequence past the largest id currently stored."""

        raise self.unsupported("update_id_sequences")

    # -- shared operations --------------------------------------------------------

    async def migrate_db(self) -> int:
        """Run pending migrations; return how many were applied."""

        return await self._migrator().latest()

    async def db_version(self) -> str:
        """Return ``"none"`` or the numeric prefix of the latest applied migration."""

        return await self._migrator().current_version()

    async def populate_db(self, seeds: Sequence[SeedFunction]) -> None:
        """Run seed callables, each inside its own transaction.

        The first failure cancels the remaining seeds and is re-raised as is.
        """

        tenant = self.tenant()
        if not seeds:
            return

        async def _run(seed: SeedFunction) -> None:
            async with tenant.transaction() as session:
                await call_with_session(seed, session)

        if tenant.concurrent_transactions:
            tasks = [asyncio.ensure_future(_run(seed)) for seed in seeds]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
        else:
            for seed in seeds:
                await _run(seed)
        LOG.info("Populated database", extra={"engine": self.engine, "seeds": len(seeds)})

    # -- connections --------------------------------------------------------------

    def tenant(self, name: str | None = None) -> TenantPool[Any]:
        """Memoized tenant pool for ``name``; connects lazily on first use."""

        database = self._database_name(name)
        pool = self._tenants.get(database)
        if pool is None:
            pool = self._create_tenant(database)
            self._tenants[database] = pool
        return pool

    async def close_tenant(self, name: str | None = None) -> None:
        """Close and forget the memoized tenant pool for ``name``."""

        database = self._database_name(name)
        pool = self._tenants.pop(database, None)
        if pool is not None:
            await pool.close()

    @asynccontextmanager
    async def scoped_tenant(self, name: str | None = None) -> AsyncIterator[TenantPool[Any]]:
        """Short-lived tenant pool closed when the block exits."""

        pool = self._create_tenant(self._database_name(name))
        try:
            yield pool
        finally:
            await pool.close()

    def invalidate_cache(self) -> None:
        """Forget cached table names and id sequences."""

        self.metadata.invalidate()

    async def close(self) -> None:
        """Release the master session and every tenant pool.

        Every release runs even when another one fails; failures are logged,
        never raised. Safe to call repeatedly, and the manager reconnects on
        its next operation.
        """

        closers: list[tuple[str, Awaitable[None]]] = []
        if self._master is not None:
            closers.append(("master", self._master.close()))
        tenants, self._tenants = self._tenants, {}
        for database, pool in tenants.items():
            closers.append((database, pool.close()))
        if not closers:
            return
        results = await asyncio.gather(*(closer for _, closer in closers), return_exceptions=True)
        for (target, _), result in zip(closers, results):
            if isinstance(result, BaseException):
                LOG.warning(
                    "Failed to close connection",
                    extra={"engine": self.engine, "target": target, "error": str(result)},
                )

    # -- helpers for engines ------------------------------------------------------

    def unsupported(self, operation: str) -> UnsupportedOperationError:
        return UnsupportedOperationError(operation, self.engine)

    def _database_name(self, name: str | None) -> str:
        database = name or self.config.connection.database
        if not database:
            raise ConfigurationError(
                f"{self.engine} manager needs a database name (connection.database is not set)"
            )
        return database

    def _create_tenant(self, database: str) -> TenantPool[Any]:
        raise NotImplementedError

    def _migrator(self) -> Migrator:
        connection = self.config.connection
        return Migrator(self.tenant(), connection.migrations_directory, connection.migrations_table_name)

    async def _master_query(self, statement: str, params: Sequence[Any] = (), *, operation: str) -> list[dict[str, Any]]:
        if self._master is None:
            self._master = self._create_master()
        return await self._master.query(statement, params, operation=operation)

    def _create_master(self) -> MasterConnection[Any]:
        raise self.unsupported("master_connection")

    async def _tenant_execute(self, tenant: TenantPool[Any], statement: str, *args: Any, operation: str) -> None:
        try:
            await tenant.execute(statement, *args)
        except self.driver_errors as exc:
            raise StatementError(operation, self.engine, statement, str(exc)) from exc

    async def _tenant_fetch(
        self, tenant: TenantPool[Any], statement: str, *args: Any, operation: str
    ) -> list[dict[str, Any]]:
        try:
            return await tenant.fetch(statement, *args)
        except self.driver_errors as exc:
            raise StatementError(operation, self.engine, statement, str(exc)) from exc

    async def _session_execute(self, session: TenantSession, statement: str, *args: Any, operation: str) -> None:
        try:
            await session.execute(statement, *args)
        except self.driver_errors as exc:
            raise StatementError(operation, self.engine, statement, str(exc)) from exc

    async def _create_with_collations(self, name: str, attempt: Callable[[str | None], Awaitable[None]]) -> None:
        """Try each configured collation in order; the first accepted one wins."""

        candidates: list[str | None] = list(self.config.admin.collation_candidates) or [None]
        last = len(candidates) - 1
        for position, collation in enumerate(candidates):
            try:
                await attempt(collation)
            except StatementError as exc:
                # Any rejection, "already exists" included, moves on while candidates remain.
                if position == last:
                    raise
                LOG.warning(
                    "Database creation attempt rejected",
                    extra={"engine": self.engine, "database": name, "collation": collation, "error": str(exc)},
                )
                continue
            LOG.info("Created database", extra={"engine": self.engine, "database": name, "collation": collation})
            return

    async def _table_names(self, tenant: TenantPool[Any]) -> tuple[str, ...]:
        async def _load() -> tuple[str, ...]:
            names = await self._load_table_names(tenant)
            bookkeeping = self.config.connection.migrations_table_name
            return tuple(name for name in names if name != bookkeeping)

        return await self.metadata.table_names.get(_load)

    async def _load_table_names(self, tenant: TenantPool[Any]) -> list[str]:
        raise NotImplementedError

    async def _id_sequences(self, tenant: TenantPool[Any]) -> tuple[IdSequence, ...]:
        async def _load() -> tuple[IdSequence, ...]:
            table_names = await self._table_names(tenant)
            return tuple(await self._load_id_sequences(tenant, table_names))

        return await self.metadata.id_sequences.get(_load)

    async def _load_id_sequences(self, tenant: TenantPool[Any], table_names: tuple[str, ...]) -> list[IdSequence]:
        raise NotImplementedError


def truncation_targets(table_names: Iterable[str], exclude: Iterable[str]) -> list[str]:
    """Cached table names minus ``exclude``, keeping cache order.

    A bare string names a single table.
    """

    skipped = {exclude} if isinstance(exclude, str) else set(exclude)
    return [name for name in table_names if name not in skipped]


__all__ = ["DatabaseManager", "OPERATIONS", "SeedFunction", "truncation_targets"]
