"""Cako — public entry point composing models, controllers, middleware and views.

Invariants:
    - Every registration call is chainable and valid until start()
    - Registration errors raise from the offending define_* call, never from start()
    - One FastAPI server, one APIRouter and one registry of each kind per instance,
      shared by reference with every hook and handler
    - Settings are built fresh per instance (no shared default object)

Design Decisions:
    - start() blocks (asyncio.run + uvicorn); serve() and load() are the async
      variants for embedding and tests
    - sync() exits the process with status 0 once the tables are synced
"""

import asyncio
import sys
from collections.abc import Mapping
from typing import Any, NoReturn

from fastapi import APIRouter, FastAPI

from cako.api.error_handlers import register_error_handlers
from cako.config import CakoSettings, build_settings
from cako.core.domain_types import Hook, Stage
from cako.infrastructure.database import open_database
from cako.infrastructure.observability import setup_logging
from cako.schemas.controller import ControllerDefine
from cako.schemas.relation import RelationDefine
from cako.services.entity_registry import EntityRegistry
from cako.services.handler_registry import HandlerRegistry
from cako.services.lifecycle import HookFn, Lifecycle
from cako.services.middleware_registry import MiddlewareFactory, MiddlewareRegistry


class Cako:
    """Thin MVC server: define models, relations, controllers and middleware, then start()."""

    def __init__(self, config: Mapping[str, Any] | CakoSettings | None = None):
        self.settings = build_settings(config)

        self.server = FastAPI(title="Cako")
        register_error_handlers(self.server)
        self.router = APIRouter()

        self.model = EntityRegistry(open_database(self.settings.model))
        self.controller = HandlerRegistry()
        self.middleware = MiddlewareRegistry()
        self.lifecycle = Lifecycle(
            self.settings, self.server, self.router,
            self.model, self.controller, self.middleware,
        )

    @property
    def state(self) -> Stage:
        return self.lifecycle.state

    # ─── Registration ───────────────────────────────────────────

    def define_model(
        self, name: str, attributes: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> "Cako":
        self.model.define(name, attributes, options)
        return self

    def define_relation(self, descriptor: Mapping[str, Any] | RelationDefine) -> "Cako":
        self.model.define_relation(descriptor)
        return self

    def define_controller(self, declaration: Mapping[str, Any] | ControllerDefine) -> "Cako":
        self.controller.register(declaration)
        return self

    def define_middleware(self, factory: MiddlewareFactory) -> "Cako":
        self.middleware.register(factory)
        return self

    def use_middleware(self, instance: Any) -> "Cako":
        self.middleware.use(instance)
        return self

    # ─── Hooks ──────────────────────────────────────────────────

    def before_load_model(self, hook: HookFn) -> "Cako":
        self.lifecycle.set_hook(Hook.BEFORE_LOAD_MODEL, hook)
        return self

    def before_load_controller(self, hook: HookFn) -> "Cako":
        self.lifecycle.set_hook(Hook.BEFORE_LOAD_CONTROLLER, hook)
        return self

    def before_load_view(self, hook: HookFn) -> "Cako":
        self.lifecycle.set_hook(Hook.BEFORE_LOAD_VIEW, hook)
        return self

    def before_listen(self, hook: HookFn) -> "Cako":
        self.lifecycle.set_hook(Hook.BEFORE_LISTEN, hook)
        return self

    # ─── Running ────────────────────────────────────────────────

    async def load(self) -> FastAPI:
        """Run every stage except listen; returns the ready ASGI app."""
        return await self.lifecycle.load()

    async def serve(self) -> None:
        await self.lifecycle.serve()

    def start(self) -> None:
        """Run the full pipeline and block serving requests."""
        setup_logging(self.settings.log_level, self.settings.log_format)
        asyncio.run(self.serve())

    def sync(self, force: bool = False) -> NoReturn:
        """Create the tables (drop them first when `force`), then exit the process."""
        setup_logging(self.settings.log_level, self.settings.log_format)
        asyncio.run(self.lifecycle.sync(force))
        sys.exit(0)
