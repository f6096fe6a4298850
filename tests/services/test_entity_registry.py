"""Entity Registry tests — definitions, lookups, disabled persistence and model load.

Tests cover:
    - define() registers entities; duplicates raise DuplicateEntityError
    - lookup() / all() raise UnknownEntityError for unknown names
    - Disabled persistence turns every operation into a no-op
    - load() materializes the schema, rejects later definitions, and surfaces
      connection failures as DatabaseError
"""

import pytest
from sqlalchemy import Integer, String

from cako.core.errors import (
    ConfigurationError, DatabaseError, DuplicateEntityError, UnknownEntityError,
)
from cako.infrastructure.database import DISABLED, Database
from cako.services.entity_registry import EntityRegistry


# --- Definitions --------------------------------------------------------------

def test_define_and_lookup(registry):
    entity = registry.define("user", {"id": Integer})
    assert registry.lookup("user") is entity
    assert registry.all()["user"] is entity
    assert registry.has("user")


def test_names_are_case_sensitive(registry):
    registry.define("user", {"id": Integer})
    registry.define("User", {"id": Integer})
    assert len(registry.all()) == 2


def test_duplicate_definition_raises(registry):
    registry.define("user", {"id": Integer})
    with pytest.raises(DuplicateEntityError) as exc:
        registry.define("user", {"name": String(20)})
    assert exc.value.name == "user"
    assert "name" not in registry.lookup("user").attributes


def test_lookup_unknown_raises(registry):
    with pytest.raises(UnknownEntityError):
        registry.lookup("ghost")


def test_empty_name_rejected(registry):
    with pytest.raises(ConfigurationError):
        registry.define("", {"id": Integer})


def test_non_mapping_attributes_rejected(registry):
    with pytest.raises(ConfigurationError):
        registry.define("user", ["id"])


# --- Disabled persistence -----------------------------------------------------

def test_disabled_registry_ignores_definitions():
    registry = EntityRegistry(DISABLED)
    assert registry.define("user", {"id": Integer}) is None
    assert len(registry.all()) == 0
    assert registry.persistence_handle() is DISABLED


def test_disabled_registry_ignores_relations():
    registry = EntityRegistry(DISABLED)
    edges = registry.define_relation({
        "type": "one2many", "description": {"owner": "ghost", "to": "phantom"},
    })
    assert edges == []


async def test_disabled_registry_load_is_noop():
    registry = EntityRegistry(DISABLED)
    await registry.load()
    assert not registry.loaded


# --- Model load ---------------------------------------------------------------

async def test_load_builds_tables_and_models(registry):
    registry.define("user", {"name": String(50)})
    await registry.load()
    user = registry.lookup("user")
    assert user.table is not None
    assert user.model is not None
    assert "user" in registry.persistence_handle().metadata.tables


async def test_define_after_load_rejected(registry):
    registry.define("user", {"name": String(50)})
    await registry.load()
    with pytest.raises(ConfigurationError):
        registry.define("role", {"label": String(20)})
    with pytest.raises(ConfigurationError):
        registry.define_relation({
            "type": "hasOne", "description": {"owner": "user", "to": "user", "as": "me"},
        })


async def test_load_unreachable_database_raises(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path}/missing/dir/app.db")
    registry = EntityRegistry(database)
    registry.define("user", {"name": String(50)})
    with pytest.raises(DatabaseError):
        await registry.load()
    await database.dispose()


async def test_failed_connect_leaves_registry_unloaded():
    database = Database("sqlite+aiosqlite:////nonexistent-cako-dir/cako.db")
    registry = EntityRegistry(database)
    registry.define("user", {"name": String(50)})

    for _ in range(2):
        with pytest.raises(DatabaseError):
            await registry.load()
        assert not registry.loaded
    assert len(database.metadata.tables) == 1
    await database.dispose()
