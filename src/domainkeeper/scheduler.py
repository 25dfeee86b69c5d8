"""Periodic background jobs.

A Ticker calls job(now) every interval seconds until stopped. The job
itself stays a plain coroutine function, so tests call it directly with
a fixed time instead of waiting for the ticker.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import structlog

logger = structlog.get_logger()


def _utc_now() -> datetime:
    return datetime.now(UTC)


class Ticker:
    """Runs a job on a fixed interval in a background task."""

    def __init__(
        self,
        name: str,
        interval: float,
        job: Callable[[datetime], Awaitable[Any]],
        clock: Callable[[], datetime] = _utc_now,
        run_immediately: bool = False,
    ) -> None:
        self.name = name
        self.interval = interval
        self.job = job
        self.clock = clock
        self.run_immediately = run_immediately
        self.runs = 0
        self._shutdown_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info("Ticker started", ticker=self.name, interval=self.interval)

    async def stop(self) -> None:
        self._shutdown_event.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Ticker stopped", ticker=self.name, runs=self.runs)

    async def tick(self) -> None:
        """Run the job once, logging instead of raising."""
        try:
            await self.job(self.clock())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Ticker job failed", ticker=self.name, error=str(e))
        finally:
            self.runs += 1

    async def _loop(self) -> None:
        if self.run_immediately:
            await self.tick()
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(self.interval)
                await self.tick()
            except asyncio.CancelledError:
                break
