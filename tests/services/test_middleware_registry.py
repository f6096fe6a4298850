"""Middleware Registry tests — factory invocation and execution order.

Tests cover:
    - Factories are invoked once, at install time
    - First registered middleware runs first (outermost)
    - starlette Middleware entries, ASGI middleware classes and plain async
      callables all install; a class is never wrapped as a dispatch function
    - use() registers a prebuilt instance
    - CORS origins from config add CORSMiddleware
    - Non-callable factories and invalid instances are ConfigurationErrors
"""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from starlette.middleware import Middleware

from cako.core.errors import ConfigurationError
from cako.services.middleware_registry import MiddlewareRegistry


def _recording(calls, label):
    def factory():
        calls.append(f"build {label}")

        async def middleware(request, call_next):
            calls.append(label)
            return await call_next(request)
        return middleware
    return factory


class _HeaderMiddleware:
    """Pure ASGI middleware adding a response header."""

    def __init__(self, app, value):
        self.app = app
        self.value = value

    async def __call__(self, scope, receive, send):
        async def send_with_header(message):
            if message["type"] == "http.response.start":
                message.setdefault("headers", []).append(
                    (b"x-cako", self.value.encode()),
                )
            await send(message)
        await self.app(scope, receive, send_with_header)


def _app():
    app = FastAPI()

    @app.get("/")
    async def root():
        return "ok"
    return app


async def _get(app, path="/", **kwargs):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as client:
        return await client.get(path, **kwargs)


async def test_registration_order_is_execution_order():
    calls = []
    registry = MiddlewareRegistry()
    registry.register(_recording(calls, "first"))
    registry.register(_recording(calls, "second"))
    app = _app()

    assert registry.install(app) == 2
    assert calls == ["build first", "build second"]

    await _get(app)
    assert calls[2:] == ["first", "second"]


async def test_starlette_middleware_entry_installs():
    registry = MiddlewareRegistry()
    registry.register(lambda: Middleware(_HeaderMiddleware, value="yes"))
    app = _app()
    registry.install(app)

    res = await _get(app)
    assert res.headers["x-cako"] == "yes"


async def test_use_registers_instance():
    calls = []
    registry = MiddlewareRegistry()
    registry.use(_recording(calls, "direct")())
    app = _app()
    registry.install(app)

    await _get(app)
    assert calls == ["build direct", "direct"]


async def test_cors_origins_install_cors_middleware():
    registry = MiddlewareRegistry()
    app = _app()
    registry.install(app, cors_origins=["http://example.com"])

    res = await _get(app, headers={"Origin": "http://example.com"})
    assert res.headers["access-control-allow-origin"] == "http://example.com"


def test_non_callable_factory_rejected():
    with pytest.raises(ConfigurationError):
        MiddlewareRegistry().register("gzip")


def test_factory_returning_invalid_instance_rejected():
    registry = MiddlewareRegistry()
    registry.register(lambda: 42)
    with pytest.raises(ConfigurationError):
        registry.install(_app())


class _DefaultHeaderMiddleware(_HeaderMiddleware):
    def __init__(self, app):
        super().__init__(app, "class")


async def test_middleware_class_added_as_asgi_app():
    registry = MiddlewareRegistry()
    registry.register(lambda: _DefaultHeaderMiddleware)
    app = _app()
    registry.install(app)

    res = await _get(app)
    assert res.status_code == 200
    assert res.headers["x-cako"] == "class"


def test_class_without_call_rejected():
    class NotMiddleware:
        def __init__(self, app):
            self.app = app

    registry = MiddlewareRegistry()
    registry.register(lambda: NotMiddleware)
    with pytest.raises(ConfigurationError):
        registry.install(_app())
