"""Tenant connection pools scoped to one target database."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Generic, Protocol, Sequence, TypeVar, runtime_checkable

from .config import ConnectionConfig
from .errors import ConfigurationError, DatabaseConnectionError

LOG = logging.getLogger(__name__)

PoolT = TypeVar("PoolT")

Row = dict[str, Any]


@runtime_checkable
class TenantSession(Protocol):
    """Connection handle passed to seeds and migrations."""

    dialect: str

    async def execute(self, sql: str, *args: Any) -> None:
        """Run a statement that returns no rows."""

    async def fetch(self, sql: str, *args: Any) -> list[Row]:
        """Run a query and return its rows as dictionaries."""

    def placeholder(self, position: int) -> str:
        """Bind parameter marker for the 1-based ``position``."""


class TenantPool(Generic[PoolT]):
    """Lazily connected pool targeting ``connection.database``.

    The underlying driver pool is created on first use and released by
    ``close()``; a closed pool reopens transparently when used again.
    """

    dialect: str = "generic"
    driver_errors: tuple[type[BaseException], ...] = ()
    # Engines whose pool hands out independent connections can run
    # transactions side by side.
    concurrent_transactions: bool = True

    def __init__(self, connection: ConnectionConfig) -> None:
        if not connection.database:
            raise ConfigurationError(f"{self.dialect} tenant connection requires a database name")
        self._connection = connection
        self._pool: PoolT | None = None
        self._lock = asyncio.Lock()

    @property
    def database(self) -> str:
        return self._connection.database or ""

    @property
    def connected(self) -> bool:
        return self._pool is not None

    def placeholder(self, position: int) -> str:
        raise NotImplementedError

    async def execute(self, sql: str, *args: Any) -> None:
        async with self.session() as session:
            await session.execute(sql, *args)

    async def fetch(self, sql: str, *args: Any) -> list[Row]:
        async with self.session() as session:
            return await session.fetch(sql, *args)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[TenantSession]:
        """Borrow a connection outside of any explicit transaction."""

        pool = await self._ensure_pool()
        async with self._acquire(pool, transactional=False) as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[TenantSession]:
        """Borrow a connection wrapped in a transaction committed on success."""

        pool = await self._ensure_pool()
        async with self._acquire(pool, transactional=True) as session:
            yield session

    async def close(self) -> None:
        async with self._lock:
            pool, self._pool = self._pool, None
            if pool is None:
                return
            await self._close_pool(pool)
            LOG.debug("Closed tenant pool", extra={"dialect": self.dialect, "database": self.database})

    async def _ensure_pool(self) -> PoolT:
        async with self._lock:
            if self._pool is None:
                try:
                    self._pool = await self._open_pool()
                except (OSError, asyncio.TimeoutError, *self.driver_errors) as exc:
                    raise DatabaseConnectionError(self.dialect, self.database, str(exc)) from exc
                LOG.debug("Opened tenant pool", extra={"dialect": self.dialect, "database": self.database})
            return self._pool

    async def _open_pool(self) -> PoolT:
        raise NotImplementedError

    async def _close_pool(self, pool: PoolT) -> None:
        raise NotImplementedError

    def _acquire(self, pool: PoolT, *, transactional: bool):
        """Return an async context manager yielding a ``TenantSession``."""

        raise NotImplementedError


def rows_to_dicts(rows: Sequence[Any]) -> list[Row]:
    return [dict(row) for row in rows]


__all__ = ["Row", "TenantPool", "TenantSession", "rows_to_dicts"]
