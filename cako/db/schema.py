"""Schema Builder — materializes the entity graph as SQLAlchemy tables and mapped records.

Invariants:
    - One Table per entity on the Database's MetaData, named entity.table_name
    - Foreign keys derive from edges: belongs_to -> column on the source,
      has_one -> column on the target, join keys -> columns on the join entity
    - has_many reuses the belongs_to column it pairs with (no second foreign key)
    - Primary key: declared columns, else an `id` attribute, else the join keys
      of a join entity, else an implicit autoincrement integer `id`
    - Each entity gets its own record class, mapped imperatively; entity.table and
      entity.model are set only after every mapper configured successfully

Design Decisions:
    - Built in one pass at model load, so relation order never matters to SQLAlchemy
    - Sequelize-style column keys (primaryKey, allowNull, ...) translated, others rejected
    - lazy="selectin" on every relationship: safe under AsyncSession
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, DateTime, ForeignKey, ForeignKeyConstraint, Integer, MetaData, Table, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import registry, relationship
from sqlalchemy.types import TypeEngine

from cako.core.domain_types import AssociationKind
from cako.core.entity import Association, Entity
from cako.core.errors import ConfigurationError, ErrorContext

logger = logging.getLogger(__name__)

_KEYWORD_ALIASES = {
    "primaryKey": "primary_key",
    "autoIncrement": "autoincrement",
    "allowNull": "nullable",
    "defaultValue": "default",
}
_COLUMN_KEYWORDS = {
    "primary_key", "autoincrement", "nullable", "default", "server_default",
    "onupdate", "unique", "index", "comment",
}


class EntityRecord:
    """Base class of every mapped record; one subclass per entity."""
    __entity__: str = ""

    def __init__(self, **values: Any):
        for key, value in values.items():
            setattr(self, key, value)

    def to_dict(self) -> dict[str, Any]:
        """Column values only; relationships are not followed."""
        return {
            attr.key: getattr(self, attr.key)
            for attr in inspect(type(self)).column_attrs
        }

    def __repr__(self) -> str:
        identity = inspect(self).identity
        return f"<{self.__entity__} {identity!r}>"


def _is_type(descriptor: Any) -> bool:
    return isinstance(descriptor, TypeEngine) or (
        isinstance(descriptor, type) and issubclass(descriptor, TypeEngine)
    )


def _column_kwargs(entity: str, field: str, descriptor: Any) -> tuple[Any, dict]:
    if _is_type(descriptor):
        return descriptor, {}
    if not isinstance(descriptor, Mapping) or "type" not in descriptor:
        raise ConfigurationError(
            f"Field '{entity}.{field}' needs a SQLAlchemy type or a mapping with 'type'",
            ErrorContext(entity=entity),
        )
    kwargs = {}
    for key, value in descriptor.items():
        if key == "type":
            continue
        key = _KEYWORD_ALIASES.get(key, key)
        if key not in _COLUMN_KEYWORDS:
            raise ConfigurationError(
                f"Unsupported option '{key}' on field '{entity}.{field}'",
                ErrorContext(entity=entity),
            )
        kwargs[key] = value
    return descriptor["type"], kwargs


def primary_key_names(entity: Entity) -> list[str]:
    declared = [
        name for name, descriptor in entity.attributes.items()
        if isinstance(descriptor, Mapping)
        and (descriptor.get("primary_key") or descriptor.get("primaryKey"))
    ]
    if declared:
        return declared
    if "id" in entity.attributes:
        return ["id"]
    if entity.join_keys:
        return [key.column for key in entity.join_keys]
    return ["id"]


def _referenced_column(entity: Entity) -> str:
    names = primary_key_names(entity)
    if len(names) != 1:
        raise ConfigurationError(
            f"Entity '{entity.name}' has a composite primary key and cannot be referenced",
            ErrorContext(entity=entity.name),
        )
    return names[0]


def _foreign_keys(
    entities: Mapping[str, Entity],
) -> dict[str, dict[str, tuple[Entity, str]]]:
    """Per entity: foreign key column -> (referenced entity, ondelete)."""
    columns: dict[str, dict[str, tuple[Entity, str]]] = {name: {} for name in entities}

    def add(holder: str, column: str, target: Entity, ondelete: str) -> None:
        existing = columns[holder].get(column)
        if existing and existing[0] is not target:
            raise ConfigurationError(
                f"Foreign key '{holder}.{column}' would reference both "
                f"'{existing[0].name}' and '{target.name}'",
                ErrorContext(entity=holder),
            )
        columns[holder][column] = (target, ondelete)

    for entity in entities.values():
        for edge in entity.edges(AssociationKind.BELONGS_TO):
            add(entity.name, edge.foreign_key, entities[edge.target], "SET NULL")
        for edge in entity.edges(AssociationKind.HAS_ONE):
            add(edge.target, edge.foreign_key, entity, "SET NULL")
        for key in entity.join_keys:
            add(entity.name, key.column, entities[key.target], "CASCADE")
    return columns


def _build_table(
    entity: Entity, metadata: MetaData,
    foreign_keys: Mapping[str, tuple[Entity, str]],
) -> Table:
    primary = primary_key_names(entity)
    columns = []
    constraints = []

    if primary == ["id"] and "id" not in entity.attributes:
        columns.append(Column("id", Integer, primary_key=True, autoincrement=True))

    for field, descriptor in entity.attributes.items():
        type_, kwargs = _column_kwargs(entity.name, field, descriptor)
        if field in primary:
            kwargs["primary_key"] = True
        columns.append(Column(field, type_, **kwargs))

    for column, (target, ondelete) in foreign_keys.items():
        reference = f"{target.table_name}.{_referenced_column(target)}"
        if column in entity.attributes:
            constraints.append(
                ForeignKeyConstraint([column], [reference], ondelete=ondelete),
            )
            continue
        is_key = column in primary
        columns.append(Column(
            column, ForeignKey(reference, ondelete=ondelete),
            primary_key=is_key, nullable=not is_key,
        ))

    if entity.options.get("timestamps", True):
        columns.append(Column(
            "created_at", DateTime(timezone=True), nullable=False,
            default=lambda: datetime.now(timezone.utc),
        ))
        columns.append(Column(
            "updated_at", DateTime(timezone=True), nullable=False,
            default=lambda: datetime.now(timezone.utc),
            onupdate=lambda: datetime.now(timezone.utc),
        ))

    return Table(entity.table_name, metadata, *columns, *constraints)


def _paired(edge: Association, entities: Mapping[str, Entity]) -> str | None:
    """Name of the reverse edge sharing this edge's foreign key, if any."""
    reverse_kind = {
        AssociationKind.BELONGS_TO: AssociationKind.HAS_MANY,
        AssociationKind.HAS_MANY: AssociationKind.BELONGS_TO,
        AssociationKind.BELONGS_TO_MANY: AssociationKind.BELONGS_TO_MANY,
    }.get(edge.kind)
    if reverse_kind is None:
        return None
    for other in entities[edge.target].edges(reverse_kind):
        if other.target != edge.source:
            continue
        if edge.kind == AssociationKind.BELONGS_TO_MANY:
            if other.through == edge.through:
                return other.name
        elif other.foreign_key == edge.foreign_key:
            return other.name
    return None


def _relationship(
    edge: Association, entities: Mapping[str, Entity],
    tables: Mapping[str, Table], classes: Mapping[str, type],
):
    source, target = entities[edge.source], entities[edge.target]
    back_populates = _paired(edge, entities)

    if edge.kind == AssociationKind.BELONGS_TO:
        kwargs = {"foreign_keys": [tables[source.name].c[edge.foreign_key]]}
        if source is target:
            kwargs["remote_side"] = [tables[target.name].c[_referenced_column(target)]]
        return relationship(
            classes[target.name], back_populates=back_populates, lazy="selectin", **kwargs,
        )
    if edge.kind == AssociationKind.HAS_MANY:
        return relationship(
            classes[target.name],
            foreign_keys=[tables[target.name].c[edge.foreign_key]],
            back_populates=back_populates, lazy="selectin",
        )
    if edge.kind == AssociationKind.HAS_ONE:
        return relationship(
            classes[target.name],
            foreign_keys=[tables[target.name].c[edge.foreign_key]],
            uselist=False, lazy="selectin",
        )

    join = tables[edge.through]
    target_key = next(
        key.column for key in entities[edge.through].join_keys
        if key.target == target.name
    )
    return relationship(
        classes[target.name],
        secondary=join,
        primaryjoin=tables[source.name].c[_referenced_column(source)] == join.c[edge.foreign_key],
        secondaryjoin=tables[target.name].c[_referenced_column(target)] == join.c[target_key],
        back_populates=back_populates, lazy="selectin",
    )


def build_schema(entities: Mapping[str, Entity], metadata: MetaData) -> registry:
    """Create tables and mapped record classes for every entity."""
    foreign_keys = _foreign_keys(entities)
    tables = {
        name: _build_table(entity, metadata, foreign_keys[name])
        for name, entity in entities.items()
    }
    classes = {
        name: type(name, (EntityRecord,), {"__entity__": name})
        for name in entities
    }

    mappers = registry(metadata=metadata)
    try:
        for name, entity in entities.items():
            mappers.map_imperatively(
                classes[name], tables[name],
                properties={
                    edge.name: _relationship(edge, entities, tables, classes)
                    for edge in entity.associations
                },
            )
        mappers.configure()
    except SQLAlchemyError as e:
        mappers.dispose()
        raise ConfigurationError(f"Schema could not be mapped: {e}") from e

    for name, entity in entities.items():
        entity.table = tables[name]
        entity.model = classes[name]
    logger.info(
        f"Schema built: {len(tables)} table(s)",
        extra={"entity_count": len(tables)},
    )
    return mappers
