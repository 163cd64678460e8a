import asyncio
import os

# Settings are read at import time; point them at an in-memory database first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402

from safepath.config import get_settings  # noqa: E402
from safepath.database import create_tables, drop_tables  # noqa: E402


async def _reset_database():
    await drop_tables()
    await create_tables()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def db():
    """Fresh schema for tests that touch the database"""
    asyncio.run(_reset_database())
    yield
