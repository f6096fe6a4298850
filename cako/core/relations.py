"""Relation Resolver — turns relation descriptors into bidirectional schema edges.

Invariants:
    - Every referenced entity is looked up before anything is mutated
      (UnknownEntityError leaves the graph untouched)
    - Every edge and the join entity are checked for conflicts before the first
      mutation; a rejected relation leaves no edge and no join entity behind
    - many2many join name is `through` or owner1 + owner2 in the given order (never sorted)
    - one2many attaches the belongs-to edge before the has-many edge; both share one foreign key
    - hasOne attaches an edge only when `as` is supplied
    - Resolving an identical descriptor twice leaves exactly one edge per direction

Design Decisions:
    - Pure functions over an EntityStore protocol: no IO, no SQLAlchemy (impureim sandwich)
    - Return value is the list of newly attached edges so the shell can log them
"""

from collections.abc import Callable, Mapping
from typing import Any, Protocol

from cako.core.domain_types import AssociationKind, RelationType
from cako.core.entity import Association, Entity, JoinKey, pluralize
from cako.core.errors import ConfigurationError, ErrorContext
from cako.schemas.relation import (
    HasOneDescription, Many2ManyDescription, One2ManyDescription, RelationDefine,
)


class EntityStore(Protocol):
    """What the resolver needs from the entity registry."""
    def has(self, name: str) -> bool: ...
    def lookup(self, name: str) -> Entity: ...
    def define(
        self, name: str, attributes: Mapping[str, Any],
        options: Mapping[str, Any] | None = None, *, synthesized: bool = False,
    ) -> Entity | None: ...


def foreign_key_name(name: str) -> str:
    return f"{name}_id"


def resolve(store: EntityStore, relation: RelationDefine) -> list[Association]:
    """Attach the edges described by `relation`. Returns the edges actually added."""
    return _RESOLVERS[relation.type](store, relation.description)


def resolve_many2many(
    store: EntityStore, description: Many2ManyDescription,
) -> list[Association]:
    first, second = (store.lookup(name) for name in description.owners)
    through = description.through or f"{first.name}{second.name}"
    keys = (
        JoinKey(foreign_key_name(first.name), first.name),
        JoinKey(foreign_key_name(second.name), second.name),
    )
    edges = [
        (source, Association(
            AssociationKind.BELONGS_TO_MANY, source.name, target.name,
            pluralize(target.name), foreign_key_name(source.name), through=through,
        ))
        for source, target in ((first, second), (second, first))
    ]
    pending = [(source, edge) for source, edge in edges if source.accepts(edge)]
    _check_join(store, through, keys, description.extra_attributes)

    if store.has(through):
        store.lookup(through).join_keys = keys
    else:
        join = store.define(through, description.extra_attributes, synthesized=True)
        join.join_keys = keys
    return _attach_all(pending)


def _check_join(
    store: EntityStore, through: str, keys: tuple[JoinKey, ...],
    extra_attributes: Mapping[str, Any],
) -> None:
    if not store.has(through):
        return
    join = store.lookup(through)
    if join.join_keys == keys:
        return
    if join.join_keys:
        joined = " and ".join(k.target for k in join.join_keys)
        raise ConfigurationError(
            f"'{through}' already joins {joined}",
            ErrorContext(entity=through),
        )
    if extra_attributes:
        raise ConfigurationError(
            f"extraAttributes cannot be added to the existing entity '{through}'",
            ErrorContext(entity=through),
        )


def resolve_one2many(
    store: EntityStore, description: One2ManyDescription,
) -> list[Association]:
    owner = store.lookup(description.owner)
    to = store.lookup(description.to)
    name = description.as_ or owner.name
    foreign_key = foreign_key_name(name)
    collection = pluralize(to.name)
    if name != owner.name:
        collection = f"{name}_{collection}"

    belongs_to = Association(
        AssociationKind.BELONGS_TO, to.name, owner.name, name, foreign_key,
    )
    has_many = Association(
        AssociationKind.HAS_MANY, owner.name, to.name, collection, foreign_key,
    )
    pending = [
        (entity, edge)
        for entity, edge in ((to, belongs_to), (owner, has_many))
        if entity.accepts(edge)
    ]
    return _attach_all(pending)


def resolve_has_one(
    store: EntityStore, description: HasOneDescription,
) -> list[Association]:
    owner = store.lookup(description.owner)
    to = store.lookup(description.to)
    if description.as_ is None:
        return []

    edge = Association(
        AssociationKind.HAS_ONE, owner.name, to.name, description.as_,
        foreign_key_name(description.as_),
    )
    return [edge] if owner.attach(edge) else []


def _attach_all(pending: list[tuple[Entity, Association]]) -> list[Association]:
    # each pair already passed Entity.accepts
    for entity, edge in pending:
        entity.attach(edge)
    return [edge for _, edge in pending]


_RESOLVERS: dict[RelationType, Callable[[EntityStore, Any], list[Association]]] = {
    RelationType.MANY2MANY: resolve_many2many,
    RelationType.ONE2MANY: resolve_one2many,
    RelationType.HAS_ONE: resolve_has_one,
}
