"""Utility functions."""
import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar
import nest_asyncio

PACKAGE_NAME = 'vllm-obs'

T = TypeVar('T')


def get_package_version() -> str:
    """Get the installed version of vllm-obs, or 'unknown' when it is not installed."""
    try:
        from importlib.metadata import version
        return version(PACKAGE_NAME)
    except Exception:
        return 'unknown'


def run_sync(make_coroutine: Callable[[], Awaitable[T]]) -> T:
    """
    Run a coroutine to completion from synchronous code.

    Works both when no event loop is running (a new one is created) and from inside a running loop
    (tests, Jupyter), where `nest_asyncio` is applied to allow the nested run.

    Args:
        make_coroutine:
            Zero-argument callable returning the coroutine; it is only called once the loop to
            run it on is known.
    """
    try:
        # Will raise RuntimeError if no loop is running
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(make_coroutine())
    nest_asyncio.apply()
    return loop.run_until_complete(make_coroutine())
