"""Concurrency limit for outbound model calls.

Architecture:
    FastAPI (async) -> CaptureSession -> asyncio.Semaphore(N) -> transport.invoke_model

Calls beyond the semaphore limit queue for ``queue_timeout`` seconds, then fail
with ``TimeoutError``. The model call itself is not timed out here.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from shelfcount.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ModelCallPool:
    """Bounds the number of model calls in flight across all sessions."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._queue_timeout = settings.queue_timeout
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., Awaitable[T]], *args: object) -> T:
        """Await ``func(*args)`` once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within the queue timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._queue_timeout)
        except TimeoutError:
            logger.warning("Model call queue full, gave up after %.1fs", self._queue_timeout)
            raise
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            return await func(*args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of model calls currently in flight."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of calls waiting for a slot."""
        with self._counter_lock:
            return self._queue_depth
