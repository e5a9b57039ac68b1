"""Tickers and the background loop that runs the due scan on a cadence."""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, time, timedelta
from typing import Awaitable, Callable

from rentbill.services.clock import Clock
from rentbill.services.scanner_service import DueScheduleScanner, ScanReport

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# Re-check the clock at least this often while waiting for the next run
MAX_SLEEP_SECONDS = 3600.0


class Ticker(ABC):
    """Source of scan triggers."""

    @abstractmethod
    async def wait_next(self) -> bool:
        """Wait for the next tick.

        Returns:
            True when a scan should run, False when the ticker was stopped
        """
        ...

    @abstractmethod
    def stop(self) -> None:
        """Stop ticking; pending and future wait_next() calls return False."""
        ...


class DailyTicker(Ticker):
    """Ticks once a day at ``run_at`` wall-clock time on the given clock."""

    def __init__(self, clock: Clock, run_at: time, sleep: Sleep = asyncio.sleep):
        self.clock = clock
        self.run_at = run_at
        self._sleep = sleep
        self._stopped = asyncio.Event()

    def next_run(self, now: datetime | None = None) -> datetime:
        """First ``run_at`` strictly after ``now``."""
        now = now or self.clock.now()
        candidate = now.replace(
            hour=self.run_at.hour,
            minute=self.run_at.minute,
            second=self.run_at.second,
            microsecond=0,
        )
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    async def wait_next(self) -> bool:
        target = self.next_run()
        logger.debug("Next due scan at %s", target.isoformat())
        while not self._stopped.is_set():
            remaining = (target - self.clock.now()).total_seconds()
            if remaining <= 0:
                return True
            await self._sleep_or_stop(min(remaining, MAX_SLEEP_SECONDS))
        return False

    async def _sleep_or_stop(self, seconds: float) -> None:
        sleeper = asyncio.ensure_future(self._sleep(seconds))
        stopper = asyncio.ensure_future(self._stopped.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, stopper):
                if not task.done():
                    task.cancel()

    def stop(self) -> None:
        self._stopped.set()


class ManualTicker(Ticker):
    """Ticks whenever fire() is called."""

    def __init__(self):
        self._ticks: asyncio.Queue[bool] = asyncio.Queue()
        self._stopped = False

    def fire(self) -> None:
        if not self._stopped:
            self._ticks.put_nowait(True)

    async def wait_next(self) -> bool:
        # Ticks fired before stop() are still delivered
        if self._stopped and self._ticks.empty():
            return False
        return await self._ticks.get()

    def stop(self) -> None:
        self._stopped = True
        self._ticks.put_nowait(False)


class BillingScheduler:
    """Runs one due scan per tick until the ticker stops."""

    def __init__(self, scanner: DueScheduleScanner, ticker: Ticker):
        self.scanner = scanner
        self.ticker = ticker
        self.last_report: ScanReport | None = None
        self.runs = 0
        self._task: asyncio.Task | None = None

    async def run_forever(self) -> None:
        logger.info("Billing scheduler started")
        while await self.ticker.wait_next():
            try:
                self.last_report = await self.scanner.run_due_scan()
                self.runs += 1
            except Exception:
                logger.exception("Due scan failed, waiting for the next tick")
        logger.info("Billing scheduler stopped after %d scans", self.runs)

    def start(self) -> asyncio.Task:
        """Run the loop in a background task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever())
        return self._task

    def stop(self) -> None:
        """Stop the ticker and stop enqueuing schedules of a running scan."""
        self.ticker.stop()
        self.scanner.request_stop()

    async def shutdown(self, timeout: float | None = None) -> None:
        """Stop and wait for the background task, cancelling it after ``timeout``.

        In-flight schedules get ``timeout`` seconds to finish. A schedule cut off
        by the cancellation rolls back as a whole, since its invoice, audit entry
        and schedule link are committed together; the next scan picks it up again.
        """
        self.stop()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Billing scheduler did not stop within %ss; in-flight scan cancelled, "
                "uncommitted invoices are retried on the next scan",
                timeout,
            )
        self._task = None


__all__ = [
    "BillingScheduler",
    "DailyTicker",
    "ManualTicker",
    "Ticker",
]
