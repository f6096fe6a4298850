"""Error Hierarchy — typed, categorized exceptions for all Cako failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Registration errors are raised synchronously from the define_* call
    - Lifecycle errors abort the pipeline before the listener is opened
    - to_response() produces the REST envelope used by the FastAPI handlers

Design Decisions:
    - Single hierarchy with CakoError base: one FastAPI handler catches all
    - ErrorContext as dataclass: observability data without coupling to logging
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    CONFIGURATION = "configuration"
    RESOURCE_NOT_FOUND = "resource_not_found"
    CONFLICT = "conflict"
    ROUTING = "routing"
    LIFECYCLE = "lifecycle"
    DATABASE = "database"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Context attached to an error for logs and responses."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    entity: str | None = None
    url: str | None = None
    verb: str | None = None
    stage: str | None = None
    debug_info: dict[str, Any] | None = None


class CakoError(Exception):
    """Base exception for all Cako errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "entity": self.context.entity,
                    "url": self.context.url,
                    "verb": self.context.verb,
                    "stage": self.context.stage,
                },
            }
        }


# ─── Registration Errors ────────────────────────────────────────

class ConfigurationError(CakoError):
    """Invalid or incomplete configuration or declaration."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "CONFIGURATION_ERROR", ErrorCategory.CONFIGURATION,
            ErrorSeverity.CRITICAL, context, 500,
        )


class UnknownEntityError(CakoError):
    """A relation or handler referenced an entity that was never defined."""
    def __init__(self, name: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.entity = name
        super().__init__(
            f"Entity '{name}' is not defined",
            "UNKNOWN_ENTITY", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, ctx, 500,
        )
        self.name = name


class DuplicateEntityError(CakoError):
    """An entity name was defined twice."""
    def __init__(self, name: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.entity = name
        super().__init__(
            f"Entity '{name}' is already defined",
            "DUPLICATE_ENTITY", ErrorCategory.CONFLICT,
            ErrorSeverity.ERROR, ctx, 500,
        )
        self.name = name


class BindError(CakoError):
    """A route could not be installed on the router."""
    def __init__(
        self, message: str, url: str, verb: str | None = None,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.url = url
        ctx.verb = verb
        super().__init__(
            message, "BIND_ERROR", ErrorCategory.ROUTING,
            ErrorSeverity.CRITICAL, ctx, 500,
        )
        self.url = url
        self.verb = verb


class LifecycleError(CakoError):
    """Pipeline driven out of order (e.g. started twice)."""
    def __init__(self, message: str, stage: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.stage = stage
        super().__init__(
            message, "LIFECYCLE_ERROR", ErrorCategory.LIFECYCLE,
            ErrorSeverity.CRITICAL, ctx, 500,
        )
        self.stage = stage


# ─── Infrastructure Errors ──────────────────────────────────────

class DatabaseError(CakoError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation
