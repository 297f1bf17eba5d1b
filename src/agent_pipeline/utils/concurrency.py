"""Async fan-in and timeout primitives used by group execution."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable

T = TypeVar("T")


async def gather_fail_fast(awaitables: Iterable[Awaitable[T]]) -> list[T]:
    """Await every awaitable concurrently and return results in input order.

    The first exception cancels every sibling still running and is re-raised;
    nothing is retried or downgraded here.
    """

    tasks: list[asyncio.Task[T]] = [
        asyncio.ensure_future(_await_value(awaitable)) for awaitable in awaitables
    ]
    if not tasks:
        return []

    pending: set[asyncio.Task[T]] = set(tasks)
    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
            errors = [task.exception() for task in done if not task.cancelled()]
            failure = next((error for error in errors if error is not None), None)
            if failure is not None:
                raise failure
            if any(task.cancelled() for task in done):
                raise asyncio.CancelledError("fan-in task cancelled")
    except BaseException:
        await _cancel_all(pending)
        raise
    return [task.result() for task in tasks]


async def run_with_timeout(awaitable: Awaitable[T], timeout_seconds: float) -> T:
    """Await ``awaitable`` for at most ``timeout_seconds``; raise ``TimeoutError`` on expiry."""

    if timeout_seconds <= 0:
        _close_unscheduled_coroutine(awaitable)
        raise ValueError("timeout_seconds must be > 0")

    task: asyncio.Task[T] = asyncio.ensure_future(_await_value(awaitable))
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_seconds)
    except asyncio.CancelledError:
        await _cancel_all({task})
        raise

    if task in done:
        return task.result()

    await _cancel_all({task})
    raise TimeoutError(f"operation timed out after {timeout_seconds:g} seconds")


async def maybe_await(value: Awaitable[T] | T) -> T:
    """Return ``value``, awaiting it first when a callback handed back an awaitable."""

    if inspect.isawaitable(value):
        return await value
    return value


async def _await_value(awaitable: Awaitable[T]) -> T:
    return await awaitable


async def _cancel_all(tasks: Iterable[asyncio.Task[T]]) -> None:
    tasks = [task for task in tasks if not task.done()]
    for task in tasks:
        task.cancel()
    if tasks:
        with suppress(Exception):
            await asyncio.gather(*tasks, return_exceptions=True)


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Close raw coroutine objects rejected before scheduling so CPython does not
    # warn "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = ["gather_fail_fast", "maybe_await", "run_with_timeout"]
