"""
Tests for async_utils module.

Covers run_sync, run_sync_limited and gather_limited.
"""

import asyncio
import threading
import time

import pytest

from workitem_sync.core.async_utils import (
    gather_limited,
    run_sync,
    run_sync_limited,
)


def _sync_add(a: int, b: int) -> int:
    """Simple sync function for testing."""
    return a + b


def _sync_identity(x):
    """Return input unchanged."""
    return x


async def test_run_sync_calls_function():
    """run_sync delegates to asyncio.to_thread with correct args."""
    assert await run_sync(_sync_add, 3, 4) == 7


async def test_run_sync_passes_kwargs():
    """run_sync forwards keyword arguments."""

    def _kw_func(*, name: str) -> str:
        return f"hello {name}"

    assert await run_sync(_kw_func, name="world") == "hello world"


async def test_run_sync_limited_with_semaphore():
    """run_sync_limited acquires the semaphore before running."""
    semaphore = asyncio.Semaphore(2)

    assert await run_sync_limited(semaphore, _sync_add, 10, 20) == 30
    # Released again afterwards
    assert not semaphore.locked()


async def test_run_sync_limited_without_semaphore():
    """run_sync_limited falls back to unbounded when semaphore is None."""
    assert await run_sync_limited(None, _sync_add, 5, 6) == 11


async def test_gather_limited_preserves_order():
    """gather_limited returns results in input order."""
    semaphore = asyncio.Semaphore(3)
    coros = [
        run_sync_limited(semaphore, _sync_identity, i) for i in range(5)
    ]

    assert await gather_limited(coros) == [0, 1, 2, 3, 4]


async def test_gather_limited_empty_list():
    """gather_limited handles empty coroutine list."""
    assert await gather_limited([]) == []


async def test_gather_limited_propagates_errors():
    def _boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await gather_limited([run_sync(_boom)])


async def test_run_sync_limited_concurrency_bound():
    """run_sync_limited actually limits concurrency via semaphore."""
    semaphore = asyncio.Semaphore(2)
    max_concurrent = 0
    current_concurrent = 0
    lock = threading.Lock()

    def _track_concurrency(val):
        nonlocal max_concurrent, current_concurrent
        with lock:
            current_concurrent += 1
            max_concurrent = max(max_concurrent, current_concurrent)
        time.sleep(0.05)  # Hold for a bit so others overlap
        with lock:
            current_concurrent -= 1
        return val

    coros = [
        run_sync_limited(semaphore, _track_concurrency, i) for i in range(6)
    ]
    results = await gather_limited(coros)

    assert results == [0, 1, 2, 3, 4, 5]
    assert max_concurrent <= 2
