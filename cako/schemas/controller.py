"""Controller Schemas — handler declarations (URL + per-verb factories).

Invariants:
    - url is a string starting with "/"
    - Each verb field is either absent or a factory (database, models) -> endpoint

Design Decisions:
    - Factories are stored uncalled; the route binder invokes them at view load
"""

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict

from cako.core.domain_types import Verb

HandlerFactory = Callable[[Any, Any], Callable[..., Any]]


class ControllerDefine(BaseModel):
    """One handler declaration."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    url: str
    get: HandlerFactory | None = None
    post: HandlerFactory | None = None
    put: HandlerFactory | None = None
    delete: HandlerFactory | None = None

    def factories(self) -> list[tuple[Verb, HandlerFactory]]:
        """Present verbs with their factories, in binding order."""
        return [
            (verb, getattr(self, verb.value))
            for verb in Verb
            if getattr(self, verb.value) is not None
        ]
