"""Middleware Registry — ordered middleware factories, instantiated at middleware load.

Invariants:
    - Factories are zero-argument callables, invoked once each at install time
    - Registration order is execution order: the first registered middleware is
      the outermost and sees every request first
    - A factory returns an `async (request, call_next)` function, a starlette
      `Middleware(cls, *args, **kwargs)` entry, or an ASGI middleware class taking
      only `app` (added as is, never wrapped as a dispatch function)

Design Decisions:
    - Starlette wraps the most recently added middleware outermost, so install()
      adds them in reverse registration order
    - CORS (middleware.corsOrigins) added last: outermost, as in a plain FastAPI app
"""

import logging
from collections.abc import Callable
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware

from cako.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

MiddlewareFactory = Callable[[], Any]


class MiddlewareRegistry:

    def __init__(self):
        self._factories: list[MiddlewareFactory] = []

    def register(self, factory: MiddlewareFactory) -> None:
        if not callable(factory):
            raise ConfigurationError(f"Middleware factory must be callable, got {factory!r}")
        self._factories.append(factory)

    def use(self, instance: Any) -> None:
        """Register an already-built middleware."""
        _check_instance(instance)
        self.register(lambda: instance)

    def all(self) -> tuple[MiddlewareFactory, ...]:
        return tuple(self._factories)

    def install(self, server: FastAPI, cors_origins: list[str] | None = None) -> int:
        """Instantiate every factory and add the results to `server`."""
        instances = [factory() for factory in self._factories]
        for instance in instances:
            _check_instance(instance)
        for instance in reversed(instances):
            if isinstance(instance, type):
                server.add_middleware(instance)
            elif isinstance(instance, Middleware):
                server.add_middleware(instance.cls, *instance.args, **instance.kwargs)
            else:
                server.add_middleware(BaseHTTPMiddleware, dispatch=instance)
        if cors_origins:
            server.add_middleware(
                CORSMiddleware,
                allow_origins=cors_origins,
                allow_methods=["*"],
                allow_headers=["*"],
            )
        logger.info(
            f"{len(instances)} middleware(s) installed",
            extra={"middleware_count": len(instances)},
        )
        return len(instances)


def _check_instance(instance: Any) -> None:
    if isinstance(instance, type):
        if not any("__call__" in vars(klass) for klass in instance.__mro__[:-1]):
            raise ConfigurationError(
                f"Middleware class {instance.__name__} defines no __call__; not an ASGI app",
            )
        return
    if not (isinstance(instance, Middleware) or callable(instance)):
        raise ConfigurationError(
            "Middleware must be an ASGI middleware class, a starlette Middleware "
            f"or an async (request, call_next) function, got {instance!r}",
        )
