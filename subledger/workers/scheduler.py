from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from contextlib import suppress
from datetime import datetime

import structlog

from subledger.core.clock import UTC, Clock, SystemClock
from subledger.economy.subscriptions.expiry import ExpirySweeper

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def next_run_after(now_utc: datetime, *, interval_seconds: int) -> datetime:
    """First interval boundary strictly after ``now_utc``.

    Boundaries are counted from the Unix epoch, so a 6 hour interval fires at
    00:00, 06:00, 12:00 and 18:00 UTC.
    """
    timestamp = now_utc.timestamp()
    next_timestamp = (math.floor(timestamp / interval_seconds) + 1) * interval_seconds
    return datetime.fromtimestamp(next_timestamp, tz=UTC)


class ExpiryScheduler:
    def __init__(
        self,
        *,
        sweeper: ExpirySweeper,
        interval_seconds: int = 21600,
        recovery_delay_seconds: float = 10.0,
        clock: Clock | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._sweeper = sweeper
        self._interval_seconds = interval_seconds
        self._recovery_delay_seconds = recovery_delay_seconds
        self._clock = clock or SystemClock()
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._tasks: list[asyncio.Task[None]] = []
        self.last_run_at: datetime | None = None
        self.next_run_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def next_run_after(self, now_utc: datetime) -> datetime:
        return next_run_after(now_utc, interval_seconds=self._interval_seconds)

    async def run_periodic_sweep(self) -> dict[str, dict[str, int]]:
        async with self._lock:
            now_utc = self._clock.now()
            logger.info("subscription_periodic_sweep_started", now_utc=now_utc.isoformat())
            result = await self._sweeper.run_periodic(now_utc=now_utc)
            self.last_run_at = now_utc
            return result

    async def run_recovery_sweep(self) -> dict[str, dict[str, int]]:
        async with self._lock:
            now_utc = self._clock.now()
            logger.info("subscription_recovery_sweep_started", now_utc=now_utc.isoformat())
            result = await self._sweeper.run_recovery(now_utc=now_utc)
            self.last_run_at = now_utc
            return result

    async def _recovery_once(self) -> None:
        await self._sleep(self._recovery_delay_seconds)
        try:
            await self.run_recovery_sweep()
        except Exception:
            logger.exception("subscription_recovery_sweep_failed")

    async def _tick_forever(self) -> None:
        while True:
            now_utc = self._clock.now()
            self.next_run_at = self.next_run_after(now_utc)
            await self._sleep(max(0.0, (self.next_run_at - now_utc).total_seconds()))
            try:
                await self.run_periodic_sweep()
            except Exception:
                logger.exception("subscription_periodic_sweep_failed")

    def start(self, *, run_periodic: bool = True, run_recovery: bool = True) -> None:
        if self.is_running:
            return
        self._tasks = []
        if run_periodic:
            self._tasks.append(asyncio.create_task(self._tick_forever(), name="expiry-ticker"))
        if run_recovery:
            self._tasks.append(asyncio.create_task(self._recovery_once(), name="expiry-recovery"))
        logger.info(
            "expiry_scheduler_started",
            interval_seconds=self._interval_seconds if run_periodic else None,
            recovery_delay_seconds=self._recovery_delay_seconds if run_recovery else None,
        )

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        logger.info("expiry_scheduler_stopped")
