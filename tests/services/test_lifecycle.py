"""Lifecycle Pipeline tests — stage order, hooks and failure handling.

Tests cover:
    - Hooks run in order model, controller, view, listen, exactly once each
    - Hooks receive live server, router and registries and may mutate them
    - Setting a hook again replaces it; async hooks are awaited
    - A failing hook or stage stops the pipeline at the last completed stage
    - The pipeline cannot run twice, nor again after a failure
    - start() reaches LISTENING and logs the startup confirmation
"""

import logging

import pytest
from fastapi import APIRouter, FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import Integer

from cako.app import Cako
from cako.core.domain_types import Stage
from cako.core.errors import (
    ConfigurationError, DatabaseError, LifecycleError, UnknownEntityError,
)
from cako.services.entity_registry import EntityRegistry
from cako.services.handler_registry import HandlerRegistry
from cako.services.lifecycle import Listener


def _hello(database, models):
    async def endpoint():
        return "hello"
    return endpoint


async def _fake_serve(self, sockets=None):
    """Stand-in for uvicorn's serve loop: report bound sockets and return."""
    self.started = True
    self._on_listening()


async def _get(app, path):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as client:
        return await client.get(path)


def _recorder(calls, label):
    def hook(server, router, entities, handlers):
        calls.append((label, server, router, entities, handlers))
    return hook


def _with_all_hooks(app, calls):
    return (
        app.before_listen(_recorder(calls, "listen"))
        .before_load_view(_recorder(calls, "view"))
        .before_load_controller(_recorder(calls, "controller"))
        .before_load_model(_recorder(calls, "model"))
    )


# --- Order --------------------------------------------------------------------

def test_start_runs_hooks_in_order_exactly_once(monkeypatch):
    monkeypatch.setattr(Listener, "serve", _fake_serve)
    calls = []
    app = _with_all_hooks(Cako({"server": {"port": 4000}}), calls)
    for i in range(5):
        app.define_controller({"url": f"/{i}", "get": _hello})

    app.start()

    assert [c[0] for c in calls] == ["model", "controller", "view", "listen"]
    assert app.state is Stage.LISTENING


def test_start_logs_startup_confirmation(monkeypatch, caplog):
    monkeypatch.setattr(Listener, "serve", _fake_serve)
    app = Cako({"server": {"port": 4000}})
    with caplog.at_level(logging.INFO, logger="cako.services.lifecycle"):
        app.start()
    assert any("listening" in r.getMessage() and "4000" in r.getMessage() for r in caplog.records)


async def test_hooks_receive_live_handles():
    calls = []
    app = _with_all_hooks(Cako(), calls)
    await app.load()

    _, server, router, entities, handlers = calls[0]
    assert server is app.server and isinstance(server, FastAPI)
    assert router is app.router and isinstance(router, APIRouter)
    assert entities is app.model and isinstance(entities, EntityRegistry)
    assert handlers is app.controller and isinstance(handlers, HandlerRegistry)
    assert [c[0] for c in calls] == ["model", "controller", "view"]
    assert app.state is Stage.VIEW_LOADED


async def test_stage_states_advance_in_order():
    seen = []
    app = Cako()

    def capture(*_):
        seen.append(app.state)

    app.before_load_model(capture).before_load_controller(capture).before_load_view(capture)
    await app.load()
    assert seen == [Stage.CREATED, Stage.MIDDLEWARE_LOADED, Stage.CONTROLLER_LOADED]


# --- Hook behaviour -----------------------------------------------------------

async def test_setting_hook_again_replaces_it():
    calls = []
    app = Cako()
    app.before_load_model(_recorder(calls, "first"))
    app.before_load_model(_recorder(calls, "second"))
    await app.load()
    assert [c[0] for c in calls] == ["second"]


async def test_async_hook_is_awaited():
    calls = []

    async def hook(server, router, entities, handlers):
        calls.append("ran")

    app = Cako().before_load_view(hook)
    await app.load()
    assert calls == ["ran"]


async def test_hook_may_register_controller_before_controller_load():
    app = Cako()
    app.before_load_controller(
        lambda server, router, entities, handlers: handlers.register({"url": "/late", "get": _hello}),
    )
    asgi = await app.load()
    assert (await _get(asgi, "/late")).text == "hello"


async def test_hook_may_add_routes_to_router():
    app = Cako()

    def add_route(server, router, entities, handlers):
        router.add_api_route("/extra", _hello(None, None), methods=["GET"])

    app.before_load_view(add_route)
    asgi = await app.load()
    assert (await _get(asgi, "/extra")).json() == "hello"


def test_non_callable_hook_rejected():
    with pytest.raises(ConfigurationError):
        Cako().before_listen("not a hook")


# --- Failures -----------------------------------------------------------------

async def test_failing_hook_stops_pipeline():
    def explode(*_):
        raise RuntimeError("boom")

    app = Cako().before_load_controller(explode)
    with pytest.raises(RuntimeError):
        await app.load()
    assert app.state is Stage.MIDDLEWARE_LOADED


async def test_failing_stage_never_listens(monkeypatch):
    served = []

    async def serve(self, sockets=None):
        served.append(True)

    monkeypatch.setattr(Listener, "serve", serve)

    def uses_ghost(database, models):
        models["ghost"]

    app = Cako().define_controller({"url": "/", "get": uses_ghost})
    with pytest.raises(UnknownEntityError):
        await app.serve()
    assert served == []
    assert app.state is Stage.CONTROLLER_LOADED
    assert app.lifecycle.listener is None


async def test_pipeline_cannot_run_twice():
    app = Cako()
    await app.load()
    with pytest.raises(LifecycleError):
        await app.load()


async def test_registration_after_load_rejected():
    app = Cako()
    await app.load()
    with pytest.raises(ConfigurationError):
        app.define_controller({"url": "/late", "get": _hello})


async def test_failed_pipeline_cannot_be_rerun():
    def explode(*_):
        raise RuntimeError("boom")

    app = Cako().before_load_view(explode)
    with pytest.raises(RuntimeError):
        await app.load()
    with pytest.raises(LifecycleError):
        await app.load()
    assert app.state is Stage.CONTROLLER_LOADED


async def test_unreachable_database_is_not_retried_silently():
    app = Cako({"model": {
        "useModel": True,
        "options": {"url": "sqlite+aiosqlite:////nonexistent-cako-dir/cako.db"},
    }})
    app.define_model("user", {"id": {"type": Integer, "primaryKey": True}})

    with pytest.raises(DatabaseError):
        await app.load()
    with pytest.raises(LifecycleError):
        await app.load()
    assert app.state is Stage.CREATED
    assert not app.model.loaded
    await app.model.persistence_handle().dispose()
