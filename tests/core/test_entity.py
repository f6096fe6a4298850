"""Entity Graph tests — pure tests for Entity, EntityMap and naming helpers.

Tests cover:
    - Entity attributes and options are read-only after creation
    - attach() is idempotent for identical edges and rejects conflicting ones
    - EntityMap raises UnknownEntityError, supports `in` and get()
    - pluralize() naming used for collection attributes
"""

import pytest

from cako.core.domain_types import AssociationKind
from cako.core.entity import Association, Entity, EntityMap, pluralize
from cako.core.errors import ConfigurationError, UnknownEntityError


def _edge(name="messages", target="message"):
    return Association(AssociationKind.HAS_MANY, "user", target, name, "user_id")


# --- Entity -------------------------------------------------------------------

def test_attributes_are_read_only():
    entity = Entity("user", {"name": "x"})
    with pytest.raises(TypeError):
        entity.attributes["name"] = "y"


def test_attributes_are_copied():
    attributes = {"name": "x"}
    entity = Entity("user", attributes)
    attributes["age"] = 3
    assert "age" not in entity.attributes


def test_table_name_defaults_to_entity_name():
    assert Entity("user", {}).table_name == "user"
    assert Entity("user", {}, {"tableName": "users"}).table_name == "users"
    assert Entity("user", {}, {"table_name": "people"}).table_name == "people"


def test_attach_identical_edge_is_noop():
    entity = Entity("user", {})
    assert entity.attach(_edge()) is True
    assert entity.attach(_edge()) is False
    assert len(entity.edges()) == 1


def test_attach_conflicting_edge_raises():
    entity = Entity("user", {})
    entity.attach(_edge())
    with pytest.raises(ConfigurationError):
        entity.attach(_edge(target="comment"))


def test_attach_edge_shadowing_attribute_raises():
    entity = Entity("user", {"messages": "x"})
    with pytest.raises(ConfigurationError):
        entity.attach(_edge())


def test_edges_filter_by_kind():
    entity = Entity("user", {})
    entity.attach(_edge())
    assert entity.edges(AssociationKind.HAS_MANY) == [_edge()]
    assert entity.edges(AssociationKind.HAS_ONE) == []


# --- EntityMap ----------------------------------------------------------------

def test_entity_map_unknown_name_raises_unknown_entity():
    models = EntityMap({})
    with pytest.raises(UnknownEntityError) as exc:
        models["user"]
    assert exc.value.name == "user"
    assert exc.value.code == "UNKNOWN_ENTITY"


def test_entity_map_is_live_view():
    entities = {}
    models = EntityMap(entities)
    entities["user"] = Entity("user", {})
    assert "user" in models
    assert len(models) == 1
    assert list(models) == ["user"]


def test_entity_map_get_returns_default():
    models = EntityMap({})
    assert models.get("user") is None
    assert "user" not in models


# --- pluralize ----------------------------------------------------------------

@pytest.mark.parametrize("name,plural", [
    ("message", "messages"),
    ("role", "roles"),
    ("address", "addresses"),
    ("box", "boxes"),
    ("category", "categories"),
    ("key", "keys"),
    ("match", "matches"),
])
def test_pluralize(name, plural):
    assert pluralize(name) == plural
