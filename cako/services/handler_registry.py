"""Handler Registry — ordered handler declarations, not yet bound to any router.

Invariants:
    - Declarations kept in registration order; the same url may appear several times
    - Malformed urls rejected at registration (BindError), before any socket opens
    - Frozen at controller load; later registration is a ConfigurationError
"""

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from cako.core.errors import BindError, ConfigurationError
from cako.schemas.controller import ControllerDefine

logger = logging.getLogger(__name__)


class HandlerRegistry:

    def __init__(self):
        self._declarations: list[ControllerDefine] = []
        self.frozen = False

    def register(self, declaration: Mapping[str, Any] | ControllerDefine) -> ControllerDefine:
        if self.frozen:
            raise ConfigurationError(
                "Controllers are already loaded; define controllers before start()",
            )
        define = parse_controller(declaration)
        self._declarations.append(define)
        logger.info(
            f"Controller '{define.url}' defined",
            extra={"url": define.url},
        )
        return define

    def all(self) -> tuple[ControllerDefine, ...]:
        return tuple(self._declarations)

    def freeze(self) -> int:
        self.frozen = True
        return len(self._declarations)

    def __len__(self) -> int:
        return len(self._declarations)


def parse_controller(declaration: Mapping[str, Any] | ControllerDefine) -> ControllerDefine:
    if isinstance(declaration, ControllerDefine):
        define = declaration
    else:
        try:
            define = ControllerDefine.model_validate(declaration)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid controller declaration: {e}") from e
    if not define.url.startswith("/"):
        raise BindError(
            f"Malformed URL pattern {define.url!r}: must start with '/'", define.url,
        )
    return define
