"""Tests for the HTTP batch pool."""

from __future__ import annotations

import asyncio
import threading
from unittest.mock import ANY, MagicMock

import pytest

from faceseq.batch.pool import BatchPool
from faceseq.batch.results import BatchResult


class _BlockingDriver:
    """Holds each batch until released or cancelled."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()

    def process(self, locations: list[str], extension: str, cancel: threading.Event) -> BatchResult:
        self.started.set()
        while not (self.release.is_set() or cancel.is_set()):
            cancel.wait(0.01)
        return BatchResult(containers=list(locations), cancelled=cancel.is_set())


async def _wait_until_started(driver: _BlockingDriver) -> None:
    while not driver.started.is_set():
        await asyncio.sleep(0.01)


class TestBatchPool:
    async def test_runs_driver_with_cancel_event(self) -> None:
        driver = MagicMock()
        driver.process.return_value = BatchResult(containers=["a.seq"])
        pool = BatchPool(driver, max_concurrent=1)

        result = await pool.process(("a.seq",), "seq")

        assert result.containers == ["a.seq"]
        driver.process.assert_called_once_with(["a.seq"], "seq", ANY)
        assert isinstance(driver.process.call_args.args[2], threading.Event)
        assert pool.active_count == 0
        pool.shutdown()

    async def test_active_count_while_running(self) -> None:
        driver = _BlockingDriver()
        pool = BatchPool(driver, max_concurrent=1)

        task = asyncio.create_task(pool.process(["a.seq"], "seq"))
        await _wait_until_started(driver)
        assert pool.active_count == 1

        driver.release.set()
        result = await task
        assert result.cancelled is False
        assert pool.active_count == 0
        pool.shutdown()

    async def test_full_pool_times_out(self) -> None:
        driver = _BlockingDriver()
        pool = BatchPool(driver, max_concurrent=1, queue_timeout=0.05)

        task = asyncio.create_task(pool.process(["a.seq"], "seq"))
        await _wait_until_started(driver)
        with pytest.raises(TimeoutError):
            await pool.process(["b.seq"], "seq")
        assert pool.queue_depth == 0

        driver.release.set()
        await task
        pool.shutdown()

    async def test_shutdown_cancels_running_batch(self) -> None:
        driver = _BlockingDriver()
        pool = BatchPool(driver, max_concurrent=1)

        task = asyncio.create_task(pool.process(["a.seq"], "seq"))
        await _wait_until_started(driver)
        pool.shutdown()

        result = await task
        assert result.cancelled is True
        assert result.containers == ["a.seq"]
