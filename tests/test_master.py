"""Tests for the shared master session behaviour."""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

import pytest

from dbwrangler.config import AdminConfig, ManagerConfig
from dbwrangler.errors import (
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseExistsError,
    StatementError,
)
from dbwrangler.master import MasterConnection


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _DriverError(Exception):
    pass


class _FakeClient:
    def __init__(self) -> None:
        self.statements: list[str] = []
        self.active = 0
        self.max_active = 0
        self.closed = False


class _RecordingMaster(MasterConnection[_FakeClient]):
    engine = "fake"
    driver_errors = (_DriverError,)

    def __init__(self, config: ManagerConfig, *, connect_error: BaseException | None = None) -> None:
        super().__init__(config)
        self.connects = 0
        self.connect_error = connect_error
        self.clients: list[_FakeClient] = []

    async def _connect(self) -> _FakeClient:
        self.connects += 1
        if self.connect_error is not None:
            error, self.connect_error = self.connect_error, None
            raise error
        client = _FakeClient()
        self.clients.append(client)
        return client

    async def _run(self, client: _FakeClient, statement: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        client.active += 1
        client.max_active = max(client.max_active, client.active)
        try:
            await asyncio.sleep(0.005)
            client.statements.append(statement)
            if "fail" in statement:
                raise _DriverError("rejected")
            if "duplicate" in statement:
                raise _DriverError("exists")
            return [{"statement": statement}]
        finally:
            client.active -= 1

    async def _disconnect(self, client: _FakeClient) -> None:
        client.closed = True

    def is_duplicate_database(self, exc: BaseException) -> bool:
        return str(exc) == "exists"


def _config(super_user: str | None = "root") -> ManagerConfig:
    return ManagerConfig(dialect="fake", admin=AdminConfig(super_user=super_user))


@pytest.mark.anyio
async def test_statements_are_serialized_on_one_session() -> None:
    master = _RecordingMaster(_config())

    await asyncio.gather(*(master.query(f"SELECT {index}", operation="test") for index in range(5)))

    assert master.connects == 1
    client = master.clients[0]
    assert client.max_active == 1
    assert len(client.statements) == 5


@pytest.mark.anyio
async def test_missing_super_user_fails_before_connecting() -> None:
    master = _RecordingMaster(_config(super_user=None))

    with pytest.raises(ConfigurationError):
        await master.query("SELECT 1", operation="test")

    assert master.connects == 0


@pytest.mark.anyio
async def test_connect_failure_is_retried_on_next_call() -> None:
    master = _RecordingMaster(_config(), connect_error=OSError("connection refused"))

    with pytest.raises(DatabaseConnectionError, match="connection refused"):
        await master.query("SELECT 1", operation="test")
    assert not master.connected

    assert await master.query("SELECT 1", operation="test") == [{"statement": "SELECT 1"}]
    assert master.connects == 2


@pytest.mark.anyio
async def test_driver_errors_become_statement_errors() -> None:
    master = _RecordingMaster(_config())

    with pytest.raises(StatementError) as excinfo:
        await master.query("SELECT fail", operation="create_db")
    assert excinfo.value.operation == "create_db"
    assert excinfo.value.statement == "SELECT fail"

    with pytest.raises(DatabaseExistsError):
        await master.query("CREATE duplicate", operation="create_db")


@pytest.mark.anyio
async def test_close_is_idempotent_and_allows_reconnect() -> None:
    master = _RecordingMaster(_config())
    await master.close()

    await master.query("SELECT 1", operation="test")
    await master.close()
    await master.close()

    assert master.clients[0].closed
    await master.query("SELECT 2", operation="test")
    assert master.connects == 2
