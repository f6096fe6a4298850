"""Entity Registry — named entity definitions, relation resolution and model load.

Invariants:
    - Entity names are unique and case-sensitive; redefinition raises DuplicateEntityError
    - Relations resolve immediately against already-defined entities (definition order matters)
    - With persistence disabled every define/relation/load is a logged no-op
    - Definitions are rejected once the schema has been built
    - `loaded` is set only after the database answered; a failed connect can be retried
      without building the schema twice

Design Decisions:
    - Registry is the imperative shell around core/relations.py (pure) and
      db/schema.py (SQLAlchemy); it owns the persistence handle
    - Duplicate definitions are errors rather than silent overrides
"""

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from cako.core.entity import Association, Entity, EntityMap
from cako.core.errors import ConfigurationError, DuplicateEntityError, ErrorContext
from cako.core.relations import resolve
from cako.db.schema import build_schema
from cako.infrastructure.database import DISABLED, Database, PersistenceDisabled
from cako.schemas.relation import RelationDefine

logger = logging.getLogger(__name__)


class EntityRegistry:
    """Entities by name plus the persistence handle they are loaded into."""

    def __init__(self, database: Database | PersistenceDisabled = DISABLED):
        self._database = database
        self._entities: dict[str, Entity] = {}
        self._view = EntityMap(self._entities)
        self.loaded = False
        self._mappers = None

    @property
    def enabled(self) -> bool:
        return self._database is not DISABLED

    def persistence_handle(self) -> Database | PersistenceDisabled:
        return self._database

    def define(
        self,
        name: str,
        attributes: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
        *,
        synthesized: bool = False,
    ) -> Entity | None:
        """Register a new entity. Returns None when persistence is disabled."""
        if not self.enabled:
            logger.debug(f"Persistence disabled, skipping entity '{name}'")
            return None
        self._check_open(name)
        if not isinstance(name, str) or not name:
            raise ConfigurationError(f"Entity name must be a non-empty string, got {name!r}")
        if name in self._entities:
            raise DuplicateEntityError(name)
        if not isinstance(attributes, Mapping):
            raise ConfigurationError(
                f"Attributes of '{name}' must be a mapping",
                ErrorContext(entity=name),
            )

        entity = Entity(name, attributes, options or {}, synthesized=synthesized)
        self._entities[name] = entity
        logger.info(f"Entity '{name}' defined", extra={"entity": name})
        return entity

    def has(self, name: str) -> bool:
        return name in self._entities

    def lookup(self, name: str) -> Entity:
        return self._view[name]

    def all(self) -> EntityMap:
        return self._view

    def define_relation(self, descriptor: Mapping[str, Any] | RelationDefine) -> list[Association]:
        """Validate a relation descriptor and attach its edges."""
        if not self.enabled:
            logger.debug("Persistence disabled, skipping relation")
            return []
        self._check_open()
        relation = parse_relation(descriptor)
        attached = resolve(self, relation)
        if not attached:
            logger.warning(
                f"Relation {relation.type.value} attached no new edge",
                extra={"relation": relation.type.value},
            )
        for edge in attached:
            logger.info(
                f"Edge {edge.source}.{edge.name} -> {edge.target} ({edge.kind.value})",
                extra={"relation": relation.type.value, "entity": edge.source},
            )
        return attached

    async def load(self) -> None:
        """Materialize the schema and verify the database is reachable."""
        if not self.enabled:
            logger.info("Persistence disabled, no model to load")
            return
        if self.loaded:
            return
        if self._mappers is None:
            self._mappers = build_schema(self._entities, self._database.metadata)
        await self._database.connect()
        self.loaded = True

    def _check_open(self, name: str | None = None) -> None:
        if self._mappers is not None:
            raise ConfigurationError(
                "Models are already loaded; define entities and relations before start()",
                ErrorContext(entity=name),
            )


def parse_relation(descriptor: Mapping[str, Any] | RelationDefine) -> RelationDefine:
    if isinstance(descriptor, RelationDefine):
        return descriptor
    try:
        return RelationDefine.model_validate(descriptor)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid relation descriptor: {e}") from e
