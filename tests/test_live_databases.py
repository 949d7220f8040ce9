"""Opt-in checks against real servers started by scripts/start_test_databases.py.

Set ``DBWRANGLER_LIVE_POSTGRES=1`` and/or ``DBWRANGLER_LIVE_MYSQL=1`` to run them.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any, AsyncIterator

import pytest

from dbwrangler import DatabaseManager, database_manager_factory
from dbwrangler.config import AdminConfig, ConnectionConfig, ManagerConfig
from dbwrangler.errors import DatabaseConnectionError, DatabaseExistsError
from dbwrangler.sql import quote_identifier

LATEST_VERSION = "20150623130922"

LIVE_CONFIGS = {
    "postgres": ManagerConfig(
        dialect="postgresql",
        connection=ConnectionConfig(
            port=15432,
            user="knexdbmanager",
            password="knexdbmanagerpassword",
            database="dbmanager-pg-test-database",
            migrations_table_name="testmigrations",
        ),
        admin=AdminConfig(
            super_user="postgres",
            super_password="postgresrootpassword",
            collation_candidates=["fi_FI.UTF-8", "Finnish_Finland.1252", "en_US.utf8", "C.UTF-8"],
        ),
    ),
    "mysql": ManagerConfig(
        dialect="mysql",
        connection=ConnectionConfig(
            host="127.0.0.1",
            port=13306,
            user="knexdbmanager",
            password="knexdbmanagerpassword",
            database="dbmanager-mysql-test-database",
            migrations_table_name="testmigrations",
        ),
        admin=AdminConfig(
            super_user="root",
            super_password="mysqlrootpassword",
            collation_candidates=["utf8_swedish_ci"],
        ),
    ),
}

ENGINES = [
    pytest.param(
        engine,
        marks=pytest.mark.skipif(
            not os.environ.get(f"DBWRANGLER_LIVE_{engine.upper()}"),
            reason=f"set DBWRANGLER_LIVE_{engine.upper()}=1 to run against a live {engine} server",
        ),
    )
    for engine in LIVE_CONFIGS
]

pytestmark = pytest.mark.live


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(params=ENGINES)
async def manager(request: pytest.FixtureRequest, migrations_dir: Path) -> AsyncIterator[DatabaseManager]:
    config = LIVE_CONFIGS[request.param].model_copy(deep=True)
    config.connection.migrations_directory = migrations_dir
    manager = database_manager_factory(config)
    await manager.drop_db()
    await manager.create_db_owner()
    await manager.create_db()
    try:
        yield manager
    finally:
        await manager.close()
        await manager.drop_db()
        await manager.close()


async def _usernames(manager: DatabaseManager) -> list[str]:
    table = quote_identifier("User", manager.tenant().dialect)
    rows = await manager.tenant().fetch(f"SELECT username FROM {table} ORDER BY id")
    return [str(row["username"]) for row in rows]


async def _insert(manager: DatabaseManager, table: str, column: str, value: str) -> int:
    tenant = manager.tenant()
    quoted = quote_identifier(table, tenant.dialect)
    marker = tenant.placeholder(1)
    await tenant.execute(f"INSERT INTO {quoted} ({column}) VALUES ({marker})", value)
    rows = await tenant.fetch(f"SELECT id FROM {quoted} WHERE {column} = {marker}", value)
    return int(rows[0]["id"])


@pytest.mark.anyio
async def test_create_twice_fails(manager: DatabaseManager) -> None:
    with pytest.raises(DatabaseExistsError):
        await manager.create_db()


@pytest.mark.anyio
async def test_migrate_populate_truncate(manager: DatabaseManager, user_seed: Any) -> None:
    assert await manager.db_version() == "none"
    assert await manager.migrate_db() == 2
    assert await manager.db_version() == LATEST_VERSION

    await manager.populate_db([user_seed])
    assert await _usernames(manager) == ["dummy"]

    await manager.truncate_db(["Ignoreme"])
    assert await _usernames(manager) == []
    assert await manager.db_version() == LATEST_VERSION
    assert await _insert(manager, "User", "username", "after-truncate") == 1


@pytest.mark.anyio
async def test_drop_with_open_tenant(manager: DatabaseManager) -> None:
    await manager.migrate_db()

    await manager.drop_db()

    with pytest.raises(DatabaseConnectionError):
        await manager.tenant().fetch("SELECT 1")

    await manager.create_db()


@pytest.mark.anyio
async def test_managers_create_distinct_databases_concurrently(manager: DatabaseManager) -> None:
    names = [f"{manager.config.connection.database}-{suffix}" for suffix in ("one", "two")]
    managers = [database_manager_factory(manager.config.with_database(name)) for name in names]
    try:
        await asyncio.gather(*(other.drop_db() for other in managers))
        await asyncio.gather(*(other.create_db() for other in managers))
        for other in managers:
            assert await other.tenant().fetch("SELECT 1 AS one") == [{"one": 1}]
    finally:
        for other in managers:
            await other.drop_db()
        await asyncio.gather(*(other.close() for other in managers))


@pytest.mark.anyio
async def test_postgres_copy_and_sequence_resync(manager: DatabaseManager) -> None:
    if not manager.supports("copy_db"):
        pytest.skip(f"{manager.engine} cannot copy databases")
    await manager.migrate_db()
    tenant = manager.tenant()
    for user_id in (5, 6, 7):
        await tenant.execute('INSERT INTO "User" (id, username) VALUES ($1, $2)', user_id, f"user-{user_id}")
    await tenant.execute('ALTER SEQUENCE "IdSeqTest_id_seq" START 200 RESTART WITH 200 MINVALUE 100')

    manager.invalidate_cache()
    await manager.update_id_sequences()
    assert await _insert(manager, "User", "username", "next") == 8
    assert await _insert(manager, "IdSeqTest", "value", "first") == 100

    source = manager.config.connection.database or ""
    copy_name = f"{source}-copy"
    await manager.drop_db(copy_name)
    await manager.copy_db(source, copy_name)
    copy = database_manager_factory(manager.config.with_database(copy_name))
    try:
        assert await copy.db_version() == LATEST_VERSION
    finally:
        await copy.close()
        await manager.drop_db(copy_name)
