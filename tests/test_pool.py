"""Tests for the model call pool."""

from __future__ import annotations

import asyncio

import pytest

from shelfcount.config import Settings
from shelfcount.vision.pool import ModelCallPool


async def _echo(value: str) -> str:
    return value


class TestModelCallPool:
    async def test_run_returns_result(self) -> None:
        pool = ModelCallPool(Settings(max_concurrent=2))
        assert await pool.run(_echo, "ok") == "ok"
        assert pool.active_count == 0
        assert pool.queue_depth == 0

    async def test_counts_active_calls(self) -> None:
        pool = ModelCallPool(Settings(max_concurrent=2))
        release = asyncio.Event()

        async def held() -> None:
            await release.wait()

        task = asyncio.create_task(pool.run(held))
        while pool.active_count == 0:
            await asyncio.sleep(0)
        assert pool.active_count == 1

        release.set()
        await task
        assert pool.active_count == 0

    async def test_times_out_when_saturated(self) -> None:
        pool = ModelCallPool(Settings(max_concurrent=1, queue_timeout=0.01))
        release = asyncio.Event()

        async def held() -> None:
            await release.wait()

        task = asyncio.create_task(pool.run(held))
        while pool.active_count == 0:
            await asyncio.sleep(0)

        with pytest.raises(TimeoutError):
            await pool.run(_echo, "late")
        assert pool.queue_depth == 0

        release.set()
        await task

    async def test_slot_released_after_error(self) -> None:
        pool = ModelCallPool(Settings(max_concurrent=1, queue_timeout=0.05))

        async def boom() -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await pool.run(boom)
        assert await pool.run(_echo, "again") == "again"
