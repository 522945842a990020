"""Inference concurrency layer.

Architecture:
    classify (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> provider call

Provider clients are blocking (HTTP or ONNX Runtime), so every call is
pushed onto the pool and bounded by a timeout. A call that times out keeps
running in its worker thread; its result is dropped.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

from chromatag.errors import ProviderUnavailable

if TYPE_CHECKING:
    from collections.abc import Callable

    from chromatag.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Manages the semaphore and thread pool for provider calls."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="provider-call",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Submit a synchronous function to the thread pool.

        Acquires the semaphore (with timeout), runs the function in the
        executor, then releases.

        Raises:
            TimeoutError: If the semaphore cannot be acquired within the timeout.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(
                self._semaphore.acquire(),
                timeout=SEMAPHORE_TIMEOUT_SECONDS,
            )
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

    async def call(self, provider: str, func: Callable[..., T], *args: object, timeout: float) -> T:
        """Run a provider method with an overall timeout.

        Raises:
            ProviderUnavailable: If the call (queueing included) exceeds ``timeout``.
        """
        try:
            return await asyncio.wait_for(self.run(func, *args), timeout=timeout)
        except TimeoutError:
            logger.warning("Provider %s timed out after %.1fs", provider, timeout)
            raise ProviderUnavailable(provider, f"timed out after {timeout:g}s") from None

    @property
    def active_count(self) -> int:
        """Number of currently running provider calls."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of calls waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=False, cancel_futures=True)
