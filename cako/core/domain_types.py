"""Domain Types — enums and identity types shared across the codebase.

Invariants:
    - All valid relation tags, edge kinds, verbs and stages encoded as Enums
    - Verb order (GET, POST, PUT, DELETE) is the route binding order
    - Stage order is the lifecycle order; no stage may be skipped

Design Decisions:
    - str Enums: relation tags compare equal to the plain strings users pass
"""

from enum import Enum
from typing import NewType


EntityName = NewType("EntityName", str)


class RelationType(str, Enum):
    """Relation descriptor tags."""
    MANY2MANY = "many2many"
    ONE2MANY = "one2many"
    HAS_ONE = "hasOne"


class AssociationKind(str, Enum):
    """Edge kinds attached to an entity by the relation resolver."""
    BELONGS_TO = "belongs_to"
    HAS_MANY = "has_many"
    HAS_ONE = "has_one"
    BELONGS_TO_MANY = "belongs_to_many"


class Verb(str, Enum):
    """HTTP verbs a handler declaration may bind, in binding order."""
    GET = "get"
    POST = "post"
    PUT = "put"
    DELETE = "delete"


class Stage(str, Enum):
    """Lifecycle states, in strict pipeline order."""
    CREATED = "created"
    MODEL_LOADED = "model_loaded"
    MIDDLEWARE_LOADED = "middleware_loaded"
    CONTROLLER_LOADED = "controller_loaded"
    VIEW_LOADED = "view_loaded"
    LISTENING = "listening"


class Hook(str, Enum):
    """Hook slots, one per hooked stage boundary."""
    BEFORE_LOAD_MODEL = "before_load_model"
    BEFORE_LOAD_CONTROLLER = "before_load_controller"
    BEFORE_LOAD_VIEW = "before_load_view"
    BEFORE_LISTEN = "before_listen"
