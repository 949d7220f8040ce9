"""Shared fixtures for dbwrangler tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable

import pytest

from dbwrangler.sql import quote_identifier
from dbwrangler.tenant import TenantSession

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


async def _seed_user(session: TenantSession) -> None:
    await asyncio.sleep(0.01)
    table = quote_identifier("User", session.dialect)
    await session.execute(
        f"INSERT INTO {table} (username, email) VALUES ({session.placeholder(1)}, {session.placeholder(2)})",
        "dummy",
        "lol@fake.invalid",
    )


@pytest.fixture
def migrations_dir() -> Path:
    return MIGRATIONS_DIR


@pytest.fixture
def user_seed() -> Callable[[TenantSession], Awaitable[None]]:
    """Seed inserting a single ``User`` row after a short delay."""

    return _seed_user
