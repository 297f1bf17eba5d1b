"""Regression tests for fan-in and timeout primitives."""

from __future__ import annotations

import asyncio

import pytest

from agent_pipeline.utils.concurrency import gather_fail_fast, maybe_await, run_with_timeout


async def _value_after(value: int, delay: float) -> int:
    await asyncio.sleep(delay)
    return value


async def test_gather_fail_fast_keeps_input_order() -> None:
    results = await gather_fail_fast(
        [_value_after(1, 0.03), _value_after(2, 0.0), _value_after(3, 0.01)]
    )

    assert results == [1, 2, 3]


async def test_gather_fail_fast_on_empty_input() -> None:
    assert await gather_fail_fast([]) == []


async def test_gather_fail_fast_cancels_siblings_on_first_error() -> None:
    cancelled = asyncio.Event()

    async def slow() -> int:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return 0

    async def boom() -> int:
        await asyncio.sleep(0.01)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await gather_fail_fast([slow(), boom()])
    assert cancelled.is_set()


async def test_run_with_timeout_returns_value() -> None:
    assert await run_with_timeout(_value_after(7, 0.0), 1.0) == 7


async def test_run_with_timeout_raises_timeout_error() -> None:
    with pytest.raises(TimeoutError, match="timed out"):
        await run_with_timeout(_value_after(7, 5.0), 0.02)


async def test_run_with_timeout_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError, match="timeout_seconds"):
        await run_with_timeout(_value_after(7, 0.0), 0)


@pytest.mark.asyncio
async def test_maybe_await_accepts_plain_values_and_awaitables() -> None:
    assert await maybe_await(5) == 5
    assert await maybe_await(_value_after(6, 0.0)) == 6
