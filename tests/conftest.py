"""Root conftest — shared test configuration and registry fixtures."""

import os

import pytest

from cako.infrastructure.database import Database
from cako.services.entity_registry import EntityRegistry

SQLITE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure CAKO_* variables from the developer shell don't leak into tests."""
    for key in list(os.environ):
        if key.upper().startswith("CAKO_"):
            monkeypatch.delenv(key)


@pytest.fixture
def db_config():
    """Cako config with persistence on an in-memory SQLite database."""
    return {"model": {"useModel": True, "options": {"url": SQLITE_URL}}}


@pytest.fixture
async def database():
    db = Database(SQLITE_URL)
    yield db
    await db.dispose()


@pytest.fixture
def registry(database):
    """Entity registry with persistence enabled (nothing connects until load)."""
    return EntityRegistry(database)
