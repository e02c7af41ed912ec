"""Run batches from the HTTP service without blocking the event loop.

Each request takes a slot from an ``asyncio.Semaphore`` sized by
``max_concurrent`` and runs :meth:`BatchDriver.process` on a worker thread.
Requests that cannot get a slot within ``queue_timeout`` are rejected, and
batches still running at shutdown are cancelled through their events.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from faceseq.batch.driver import BatchDriver
    from faceseq.batch.results import BatchResult

logger = logging.getLogger(__name__)

QUEUE_TIMEOUT_SECONDS: float = 5.0


class BatchPool:
    """Bounded runner for batch requests against one driver."""

    def __init__(self, driver: BatchDriver, max_concurrent: int, queue_timeout: float = QUEUE_TIMEOUT_SECONDS) -> None:
        self._driver = driver
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent, thread_name_prefix="faceseq-batch")
        self._queue_timeout = queue_timeout
        self._waiting = 0
        self._running: set[threading.Event] = set()
        self._lock = threading.Lock()

    async def process(self, locations: Sequence[str], extension: str) -> BatchResult:
        """Run one batch on a worker thread.

        Raises:
            TimeoutError: If no slot frees up within the queue timeout.
        """
        with self._lock:
            self._waiting += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._queue_timeout)
        finally:
            with self._lock:
                self._waiting -= 1

        cancel = threading.Event()
        with self._lock:
            self._running.add(cancel)
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, self._driver.process, list(locations), extension, cancel)
        finally:
            with self._lock:
                self._running.discard(cancel)
            self._semaphore.release()

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._running)

    @property
    def queue_depth(self) -> int:
        """Requests waiting for a slot."""
        with self._lock:
            return self._waiting

    def shutdown(self) -> None:
        """Cancel running batches and wait for their workers to stop."""
        with self._lock:
            running = list(self._running)
        for cancel in running:
            cancel.set()
        if running:
            logger.warning("Cancelling %d running batch(es)", len(running))
        self._executor.shutdown(wait=True)
