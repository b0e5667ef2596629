"""Inference concurrency layer.

Architecture:
    event task (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> decode / ONNX inference

Decoding and inference are CPU-bound, so they run in worker threads and never
stall the event loop that is fetching images and sending replies for other
events. Callers queue for a slot indefinitely unless a queue timeout is
configured.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from cloudspotter.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Manages the semaphore and thread pool for ML inference."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="onnx-inference",
        )
        self._queue_timeout = settings.inference_queue_timeout
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Submit a synchronous function to the inference thread pool.

        Acquires the semaphore (with the optional queue timeout), runs the
        function in the executor, then releases.

        Raises:
            TimeoutError: If a queue timeout is configured and no slot frees up in time.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._queue_timeout)
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    async def run_unbounded(self, func: Callable[..., T], *args: object) -> T:
        """Run a function on the pool's threads without queueing for a slot."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    @property
    def active_count(self) -> int:
        """Number of currently running inference tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self, *, wait: bool = True) -> None:
        """Shut down the thread pool executor, dropping work that has not started."""
        self._executor.shutdown(wait=wait, cancel_futures=True)
        logger.info("Inference pool shut down")
