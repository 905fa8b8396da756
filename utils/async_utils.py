"""Helpers for invoking source and store capabilities from the event loop."""

import asyncio
import functools
import inspect
from collections.abc import Callable
from typing import Any


async def run_capability(fn: Callable[..., Any], *args, **kwargs) -> Any:
    """
    Invoke ``fn`` without blocking the event loop.

    Coroutine functions are awaited directly; plain callables run on the loop's
    default thread pool executor.
    """
    if inspect.iscoroutinefunction(fn):
        return await fn(*args, **kwargs)
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
    # Sync wrappers around async clients may hand back an awaitable
    if inspect.isawaitable(result):
        return await result
    return result
