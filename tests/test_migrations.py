"""Tests for migration discovery and the batch runner."""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator

import pytest

from dbwrangler.config import ConnectionConfig, ManagerConfig
from dbwrangler.engines import SqliteDatabaseManager
from dbwrangler.errors import ConfigurationError, MigrationError
from dbwrangler.migrations import discover_migrations, version_of


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _write(directory: Path, name: str, body: str) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / name).write_text(body)


@pytest.fixture
async def manager(tmp_path: Path) -> AsyncIterator[SqliteDatabaseManager]:
    config = ManagerConfig(
        dialect="sqlite",
        connection=ConnectionConfig(
            database=str(tmp_path / "migrations.db"),
            migrations_directory=tmp_path / "migrations",
        ),
    )
    manager = SqliteDatabaseManager(config)
    await manager.create_db()
    yield manager
    await manager.close()


def test_discover_migrations_orders_and_filters(migrations_dir: Path) -> None:
    found = discover_migrations(migrations_dir)

    assert [migration.name for migration in found] == [
        "20141024070315_test_schema.py",
        "20150623130922_id_sequence_test_table.py",
    ]
    assert [migration.version for migration in found] == ["20141024070315", "20150623130922"]


def test_discover_migrations_requires_directory(tmp_path: Path) -> None:
    with pytest.raises(MigrationError, match="does not exist"):
        discover_migrations(tmp_path / "missing")


def test_version_of_returns_numeric_prefix() -> None:
    assert version_of("20141024070315_test_schema.py") == "20141024070315"
    assert version_of("7_add_index.js") == "7"


@pytest.mark.anyio
async def test_sync_and_async_migrations_run_in_order(manager: SqliteDatabaseManager, tmp_path: Path) -> None:
    directory = tmp_path / "migrations"
    _write(
        directory,
        "1_create_items.py",
        "def up(session):\n    return session.execute('CREATE TABLE items (id INTEGER PRIMARY KEY, label TEXT)')\n",
    )
    _write(
        directory,
        "2_seed_items.py",
        "async def up(session):\n    await session.execute(\"INSERT INTO items (label) VALUES ('first')\")\n",
    )

    assert await manager.migrate_db() == 2
    assert await manager.db_version() == "2"
    assert await manager.tenant().fetch("SELECT label FROM items") == [{"label": "first"}]


@pytest.mark.anyio
async def test_later_runs_get_a_new_batch(manager: SqliteDatabaseManager, tmp_path: Path) -> None:
    directory = tmp_path / "migrations"
    _write(directory, "1_first.py", "def up(session):\n    return None\n")
    await manager.migrate_db()
    _write(directory, "10_second.py", "def up(session):\n    return None\n")

    assert await manager.migrate_db() == 1

    rows = await manager.tenant().fetch('SELECT name, batch FROM "migrations" ORDER BY id')
    assert [(row["name"], row["batch"]) for row in rows] == [("1_first.py", 1), ("10_second.py", 2)]
    assert await manager.db_version() == "10"


@pytest.mark.anyio
async def test_failed_batch_is_rolled_back(manager: SqliteDatabaseManager, tmp_path: Path) -> None:
    directory = tmp_path / "migrations"
    _write(directory, "1_create.py", "def up(session):\n    return session.execute('CREATE TABLE kept (id INTEGER)')\n")
    _write(directory, "2_broken.py", "def up(session):\n    raise RuntimeError('broken migration')\n")

    with pytest.raises(RuntimeError, match="broken migration"):
        await manager.migrate_db()

    assert await manager.db_version() == "none"
    tables = await manager.tenant().fetch("SELECT name FROM sqlite_master WHERE name = 'kept'")
    assert tables == []


@pytest.mark.anyio
async def test_migration_without_up_is_rejected(manager: SqliteDatabaseManager, tmp_path: Path) -> None:
    _write(tmp_path / "migrations", "1_empty.py", "VALUE = 1\n")

    with pytest.raises(MigrationError, match="does not define up"):
        await manager.migrate_db()


@pytest.mark.anyio
async def test_migrate_requires_a_directory(tmp_path: Path) -> None:
    config = ManagerConfig(dialect="sqlite", connection=ConnectionConfig(database=str(tmp_path / "plain.db")))
    manager = SqliteDatabaseManager(config)

    with pytest.raises(ConfigurationError):
        await manager.migrate_db()

    await manager.close()
