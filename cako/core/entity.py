"""Entity Graph — entity definitions and the association edges between them.

Invariants:
    - Entity name, attributes and options are immutable once created
    - Associations are the only mutable part and are attached by the relation resolver
    - At most one association per attribute name on an entity; re-attaching an
      identical association is a no-op, a different one under the same name is rejected
    - EntityMap lookups of unknown names raise UnknownEntityError (never KeyError)

Design Decisions:
    - Pure data, no SQLAlchemy import: the graph is resolved before any persistence call
      and materialized later by db/schema.py
    - Data-driven entities (name + field map) instead of one class per definition
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from cako.core.domain_types import AssociationKind
from cako.core.errors import ConfigurationError, ErrorContext, UnknownEntityError


@dataclass(frozen=True)
class Association:
    """One directed edge of the schema graph, exposed as `name` on `source`."""
    kind: AssociationKind
    source: str
    target: str
    name: str
    foreign_key: str
    through: str | None = None


@dataclass(frozen=True)
class JoinKey:
    """Foreign key column a join entity carries towards one many2many owner."""
    column: str
    target: str


@dataclass(eq=False)
class Entity:
    """Named schema definition; `table` and `model` are set at model load."""
    name: str
    attributes: Mapping[str, Any]
    options: Mapping[str, Any] = field(default_factory=dict)
    associations: list[Association] = field(default_factory=list)
    join_keys: tuple[JoinKey, ...] = ()
    synthesized: bool = False
    table: Any = None
    model: Any = None

    def __post_init__(self):
        self.attributes = MappingProxyType(dict(self.attributes))
        self.options = MappingProxyType(dict(self.options or {}))

    @property
    def table_name(self) -> str:
        return (
            self.options.get("table_name")
            or self.options.get("tableName")
            or self.name
        )

    def association(self, name: str) -> Association | None:
        for assoc in self.associations:
            if assoc.name == name:
                return assoc
        return None

    def edges(self, kind: AssociationKind | None = None) -> list[Association]:
        if kind is None:
            return list(self.associations)
        return [a for a in self.associations if a.kind == kind]

    def attach(self, association: Association) -> bool:
        """Attach an edge. Returns False when the identical edge is already present."""
        if not self.accepts(association):
            return False
        self.associations.append(association)
        return True

    def accepts(self, association: Association) -> bool:
        """True if `association` is new here, False if already attached.

        Raises ConfigurationError when it would clash with an attribute or
        another edge of the same name. Never mutates the entity.
        """
        existing = self.association(association.name)
        if existing is None:
            if association.name in self.attributes:
                raise ConfigurationError(
                    f"Association '{association.name}' on '{self.name}' "
                    "shadows an attribute of the same name",
                    ErrorContext(entity=self.name),
                )
            return True
        if existing == association:
            return False
        raise ConfigurationError(
            f"Association '{association.name}' on '{self.name}' is already "
            f"bound to '{existing.target}' ({existing.kind.value})",
            ErrorContext(entity=self.name),
        )


class EntityMap(Mapping):
    """Read-only live view over the registry's entities."""

    def __init__(self, entities: dict[str, Entity]):
        self._entities = entities

    def __getitem__(self, name: str) -> Entity:
        try:
            return self._entities[name]
        except KeyError:
            raise UnknownEntityError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._entities

    def get(self, name: str, default: Any = None) -> Any:
        return self._entities.get(name, default)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entities)

    def __len__(self) -> int:
        return len(self._entities)

    def __repr__(self) -> str:
        return f"EntityMap({list(self._entities)!r})"


def pluralize(name: str) -> str:
    """Naive English plural used for has-many / belongs-to-many attribute names."""
    if name.endswith(("s", "x", "z", "ch", "sh")):
        return f"{name}es"
    if len(name) > 1 and name.endswith("y") and name[-2] not in "aeiou":
        return f"{name[:-1]}ies"
    return f"{name}s"
