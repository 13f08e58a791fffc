"""
Sync wrapper generator for async clients.

Write only async code; the blocking client is generated at import time.

Usage:
    class AsyncXetClient:
        async def resolve(self, repo: str, path: str) -> ContentDescriptor | None:
            ...

    XetClient = create_sync_client(AsyncXetClient)
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import inspect
from typing import Any, Callable


def run_sync(coro):
    """Run coroutine synchronously."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        # Already in async context - run on a fresh loop in a worker thread
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)


def _make_sync_method(async_method: Callable) -> Callable:
    """Convert async method to sync method."""

    @functools.wraps(async_method)
    def sync_method(self, *args, **kwargs):
        return run_sync(async_method(self._async_client, *args, **kwargs))

    return sync_method


def _make_forwarder(method: Callable) -> Callable:
    @functools.wraps(method)
    def forwarder(self, *args, **kwargs):
        return method(self._async_client, *args, **kwargs)

    return forwarder


def _make_property_forwarder(name: str) -> property:
    def getter(self) -> Any:
        return getattr(self._async_client, name)

    return property(getter)


def create_sync_client(async_class: type) -> type:
    """
    Create a blocking client class from an async client class.

    Coroutine methods become blocking methods, plain methods and properties
    are forwarded, and the constructor takes the async class's arguments.

    Args:
        async_class: Class whose public coroutine methods are wrapped.

    Returns:
        New class named like ``async_class`` without the "Async" prefix.
    """
    sync_name = async_class.__name__
    if sync_name.startswith("Async"):
        sync_name = sync_name[5:]

    def sync_init(self, *args, **kwargs):
        self._async_client = async_class(*args, **kwargs)

    def sync_repr(self) -> str:
        return f"<{sync_name} endpoint={self._async_client.endpoint!r}>"

    class_dict: dict[str, Any] = {
        "__init__": sync_init,
        "__repr__": sync_repr,
        "__doc__": async_class.__doc__,
        "__module__": async_class.__module__,
    }

    for name, attr in inspect.getmembers(async_class):
        if name.startswith("_"):
            continue
        if isinstance(attr, property):
            class_dict[name] = _make_property_forwarder(name)
        elif inspect.iscoroutinefunction(attr):
            class_dict[name] = _make_sync_method(attr)
        elif inspect.isfunction(attr):
            class_dict[name] = _make_forwarder(attr)

    return type(sync_name, (), class_dict)


__all__ = ["create_sync_client", "run_sync"]
