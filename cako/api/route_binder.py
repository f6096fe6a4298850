"""Route Binder — projects handler declarations onto an APIRouter.

Invariants:
    - For each declaration, verbs bound in the order GET, POST, PUT, DELETE
    - Each present verb yields exactly one route; absent verbs yield none
    - Factories receive (persistence handle, entity map); an unknown entity
      looked up inside a factory surfaces as UnknownEntityError
    - Any routing-layer rejection becomes BindError
    - Not idempotent: binding the same declarations twice installs routes twice

Design Decisions:
    - add_api_route over add_route: endpoints get FastAPI's parameter injection
      and dict / list return values are serialized as JSON
    - A str return value is sent as text/plain, unquoted; Response objects pass through
"""

import functools
import inspect
import logging
from collections.abc import Callable, Iterable
from typing import Any

from fastapi import APIRouter
from fastapi.exceptions import FastAPIError
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from cako.core.entity import EntityMap
from cako.core.errors import BindError
from cako.schemas.controller import ControllerDefine

logger = logging.getLogger(__name__)


def bind(
    database: Any,
    models: EntityMap,
    declarations: Iterable[ControllerDefine],
    router: APIRouter,
) -> int:
    """Install every declared handler on `router`. Returns the number of routes."""
    count = 0
    for define in declarations:
        for verb, factory in define.factories():
            endpoint = factory(database, models)
            if not callable(endpoint):
                raise BindError(
                    f"{verb.value} factory for {define.url!r} returned "
                    f"{type(endpoint).__name__}, not a callable",
                    define.url, verb.value,
                )
            try:
                router.add_api_route(
                    define.url, _text_for_str(endpoint), methods=[verb.value.upper()],
                )
            # FastAPI reports some invalid endpoints through assert
            except (FastAPIError, ValueError, TypeError, AssertionError) as e:
                raise BindError(
                    f"Could not bind {verb.value.upper()} {define.url!r}: {e}",
                    define.url, verb.value,
                ) from e
            logger.debug(
                f"Bound {verb.value.upper()} {define.url}",
                extra={"url": define.url, "verb": verb.value},
            )
            count += 1
    return count


def _text_for_str(endpoint: Callable[..., Any]) -> Callable[..., Any]:
    """Wrap `endpoint` so a str result becomes a PlainTextResponse.

    functools.wraps keeps the original signature visible to FastAPI, so
    parameter injection is unchanged. Sync endpoints still run in the threadpool.
    """
    is_async = inspect.iscoroutinefunction(endpoint)

    @functools.wraps(endpoint)
    async def wrapper(*args, **kwargs):
        if is_async:
            result = await endpoint(*args, **kwargs)
        else:
            result = await run_in_threadpool(endpoint, *args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        if isinstance(result, str):
            return PlainTextResponse(result)
        return result
    return wrapper
