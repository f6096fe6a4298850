"""Lifecycle Pipeline — drives registrations to a bound, listening server.

Invariants:
    - Stages run in strict order: model → middleware → controller → view → listen
    - Each stage runs its hook (if set) then its load action; state advances only
      after both succeed
    - A failing stage leaves the state at the last completed stage and the listener
      is never opened
    - The pipeline runs at most once per instance (LifecycleError otherwise), and a
      failed pipeline is never re-driven
    - sync() never advances past MODEL_LOADED

Design Decisions:
    - One hook slot per hooked stage; setting a slot again replaces the previous hook
    - The middleware stage has no hook slot
    - Hooks may return an awaitable, which is awaited before the load action
    - LISTENING is entered from uvicorn's startup, once the sockets are bound
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import uvicorn
from fastapi import APIRouter, FastAPI

from cako.api.route_binder import bind
from cako.config import CakoSettings
from cako.core.domain_types import Hook, Stage
from cako.core.errors import BindError, ConfigurationError, LifecycleError
from cako.services.entity_registry import EntityRegistry
from cako.services.handler_registry import HandlerRegistry
from cako.services.middleware_registry import MiddlewareRegistry

logger = logging.getLogger(__name__)

HookFn = Callable[[FastAPI, APIRouter, EntityRegistry, HandlerRegistry], Any]


class Listener(uvicorn.Server):
    """uvicorn server that reports when its sockets are bound."""

    def __init__(self, config: uvicorn.Config, on_listening: Callable[[], None]):
        super().__init__(config)
        self._on_listening = on_listening

    async def startup(self, sockets=None) -> None:
        await super().startup(sockets=sockets)
        if self.started:
            self._on_listening()


class Lifecycle:
    """Staged startup shared by start(), load() and sync()."""

    def __init__(
        self,
        settings: CakoSettings,
        server: FastAPI,
        router: APIRouter,
        entities: EntityRegistry,
        handlers: HandlerRegistry,
        middlewares: MiddlewareRegistry,
    ):
        self.settings = settings
        self.server = server
        self.router = router
        self.entities = entities
        self.handlers = handlers
        self.middlewares = middlewares
        self.state = Stage.CREATED
        self.listener: Listener | None = None
        self.failed = False
        self._hooks: dict[Hook, HookFn | None] = {slot: None for slot in Hook}

    def set_hook(self, slot: Hook, hook: HookFn | None) -> None:
        if hook is not None and not callable(hook):
            raise ConfigurationError(f"{slot.value} hook must be callable, got {hook!r}")
        self._hooks[slot] = hook

    def hook(self, slot: Hook) -> HookFn | None:
        return self._hooks[slot]

    # ─── Entry points ───────────────────────────────────────────

    async def load(self) -> FastAPI:
        """Run every stage up to VIEW_LOADED and return the ASGI app."""
        self._require(Stage.CREATED)
        await self._advance(Stage.MODEL_LOADED, Hook.BEFORE_LOAD_MODEL, self._load_model)
        await self._advance(Stage.MIDDLEWARE_LOADED, None, self._load_middleware)
        await self._advance(Stage.CONTROLLER_LOADED, Hook.BEFORE_LOAD_CONTROLLER, self._load_controller)
        await self._advance(Stage.VIEW_LOADED, Hook.BEFORE_LOAD_VIEW, self._load_view)
        return self.server

    async def serve(self) -> None:
        """Run the full pipeline and serve until uvicorn exits."""
        self._require(Stage.CREATED)
        try:
            await self.load()
            await self._run_hook(Hook.BEFORE_LISTEN, Stage.LISTENING)
            config = uvicorn.Config(
                self.server,
                host=self.settings.server.host,
                port=self.settings.server.port,
                log_config=None,
            )
            self.listener = Listener(config, self._on_listening)
            await self.listener.serve()
        except Exception:
            self.failed = True
            raise
        finally:
            await self._close()

    async def sync(self, force: bool = False) -> None:
        """Model load only, then create (or drop and recreate) the tables."""
        self._require(Stage.CREATED)
        await self._advance(Stage.MODEL_LOADED, Hook.BEFORE_LOAD_MODEL, self._load_model)
        database = self.entities.persistence_handle()
        if not self.entities.enabled:
            logger.info("Persistence disabled, nothing to sync")
            return
        try:
            await database.sync(force)
        finally:
            await self._close()

    # ─── Stages ─────────────────────────────────────────────────

    async def _advance(
        self, target: Stage, slot: Hook | None,
        action: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            if slot is not None:
                await self._run_hook(slot, target)
            await action()
        except Exception:
            self.failed = True
            logger.error(
                f"Stage {target.value} failed, server will not listen",
                extra={"stage": target.value},
            )
            raise
        self.state = target
        logger.debug(f"Stage {target.value} complete", extra={"stage": target.value})

    async def _run_hook(self, slot: Hook, target: Stage) -> None:
        hook = self._hooks[slot]
        if hook is None:
            return
        logger.debug(f"Running {slot.value} hook", extra={"stage": target.value})
        result = hook(self.server, self.router, self.entities, self.handlers)
        if inspect.isawaitable(result):
            await result

    async def _load_model(self) -> None:
        await self.entities.load()

    async def _load_middleware(self) -> None:
        self.middlewares.install(
            self.server, cors_origins=self.settings.middleware.cors_origins,
        )

    async def _load_controller(self) -> None:
        count = self.handlers.freeze()
        logger.info(
            f"{count} controller(s) loaded", extra={"controller_count": count},
        )

    async def _load_view(self) -> None:
        count = bind(
            self.entities.persistence_handle(),
            self.entities.all(),
            self.handlers.all(),
            self.router,
        )
        prefix = self.settings.view.public_url_prefix
        try:
            self.server.include_router(self.router, prefix=prefix)
        except AssertionError as e:
            raise BindError(f"Could not mount routes under {prefix!r}: {e}", prefix) from e
        logger.info(
            f"{count} route(s) bound", extra={"route_count": count, "url": prefix or "/"},
        )

    def _on_listening(self) -> None:
        self.state = Stage.LISTENING
        logger.info(
            f"Cako listening on {self.settings.server.host}:{self.settings.server.port}",
            extra={"host": self.settings.server.host, "port": self.settings.server.port},
        )

    def _require(self, expected: Stage) -> None:
        if self.failed:
            raise LifecycleError(
                f"Pipeline failed after {self.state.value} and cannot be run again",
                self.state.value,
            )
        if self.state is not expected:
            raise LifecycleError(
                f"Pipeline already ran (state: {self.state.value})", self.state.value,
            )

    async def _close(self) -> None:
        database = self.entities.persistence_handle()
        if self.entities.enabled:
            await database.dispose()
