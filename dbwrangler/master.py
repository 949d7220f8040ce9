"""Privileged administrative connection shared by a manager's operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Generic, Sequence, TypeVar

from .config import ManagerConfig
from .errors import (
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseExistsError,
    StatementError,
)

LOG = logging.getLogger(__name__)

ClientT = TypeVar("ClientT")


class MasterConnection(Generic[ClientT]):
    """Lazily opened superuser session owned by a single manager.

    The session targets an engine bootstrap database rather than the tenant
    database so it keeps working while the tenant database does not exist.
    Statements are serialized with a lock because the drivers reject
    overlapping queries on one connection.
    """

    engine: str = "generic"
    driver_errors: tuple[type[BaseException], ...] = ()

    def __init__(self, config: ManagerConfig) -> None:
        self._config = config
        self._client: ClientT | None = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def target(self) -> str:
        """Human-readable description of what the session connects to."""

        return self._config.admin.master_database or self.engine

    async def query(
        self,
        statement: str,
        params: Sequence[Any] = (),
        *,
        operation: str,
    ) -> list[dict[str, Any]]:
        """Run ``statement`` on the master session, connecting on first use."""

        async with self._lock:
            if self._client is None:
                self._client = await self._open()
            LOG.debug("Master statement", extra={"engine": self.engine, "operation": operation})
            try:
                return await self._run(self._client, statement, params)
            except self.driver_errors as exc:
                error_cls = DatabaseExistsError if self.is_duplicate_database(exc) else StatementError
                raise error_cls(operation, self.engine, statement, str(exc)) from exc

    async def close(self) -> None:
        """Release the session; safe to call repeatedly."""

        async with self._lock:
            client, self._client = self._client, None
            if client is None:
                return
            try:
                await self._disconnect(client)
            except (OSError, *self.driver_errors) as exc:
                LOG.warning(
                    "Failed to close master connection",
                    extra={"engine": self.engine, "target": self.target, "error": str(exc)},
                )

    async def _open(self) -> ClientT:
        admin = self._config.admin
        if not admin.super_user:
            raise ConfigurationError(
                f"{self.engine} manager configuration must define admin.super_user"
            )
        try:
            return await self._connect()
        except (OSError, asyncio.TimeoutError, *self.driver_errors) as exc:
            raise DatabaseConnectionError(self.engine, self.target, str(exc)) from exc

    async def _connect(self) -> ClientT:
        raise NotImplementedError

    async def _run(self, client: ClientT, statement: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def _disconnect(self, client: ClientT) -> None:
        raise NotImplementedError

    def is_duplicate_database(self, exc: BaseException) -> bool:
        return False


__all__ = ["MasterConnection"]
