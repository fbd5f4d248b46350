"""
Sync Scheduler

Background loop that runs a full sync every SYNC_SYNC_INTERVAL_MINUTES and
the daily summary once a day at SYNC_DAILY_SUMMARY_HOUR (local time).

Usage:
- Standalone: python -m finsync.sync.scheduler
- Embedded: SyncScheduler(...).run_forever() inside an existing event loop

Every iteration is isolated: an exception is logged and the loop carries on.
"""

import asyncio
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

import structlog

from finsync.config import SyncSettings, get_settings
from finsync.sync.engine import ReconciliationEngine
from finsync.sync.summary import DailySummaryJob


logger = structlog.get_logger()


class SyncScheduler:
    """
    Periodic driver for the reconciliation engine and the summary job.
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        summary_job: Optional[DailySummaryJob] = None,
        settings: Optional[SyncSettings] = None,
        tick_seconds: float = 60.0,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            engine: Engine whose synchronize() runs on the interval
            summary_job: Daily summary job (None disables it)
            settings: Interval and summary hour
            tick_seconds: How often the loop wakes up to check what is due
            now: Local clock, injectable for tests
        """
        self._engine = engine
        self._summary_job = summary_job
        self._settings = settings or get_settings().sync
        self._tick_seconds = tick_seconds
        self._now = now or datetime.now
        self._running = False
        self._last_sync: Optional[datetime] = None
        self._last_summary_day: Optional[date] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def sync_due(self, now: datetime) -> bool:
        if self._last_sync is None:
            return True
        interval = timedelta(minutes=self._settings.sync_interval_minutes)
        return now - self._last_sync >= interval

    def summary_due(self, now: datetime) -> bool:
        if self._summary_job is None:
            return False
        if now.hour < self._settings.daily_summary_hour:
            return False
        return self._last_summary_day != now.date()

    async def run_once(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """
        Run whatever is due right now.

        Returns:
            {"sync": SyncResult or None, "summary": DailySummary or None}
        """
        now = now or self._now()
        outcome: dict[str, Any] = {"sync": None, "summary": None}

        if self.sync_due(now):
            self._last_sync = now
            try:
                outcome["sync"] = await self._engine.synchronize()
            except Exception as e:
                logger.error("scheduled_sync_failed", error=str(e), exc_info=True)

        if self.summary_due(now):
            self._last_summary_day = now.date()
            try:
                outcome["summary"] = await self._summary_job.generate(now.date() - timedelta(days=1))
            except Exception as e:
                logger.error("scheduled_summary_failed", error=str(e), exc_info=True)

        return outcome

    async def run_forever(self) -> None:
        """
        Run until stop() is called.

        Use Ctrl+C to stop when running standalone.
        """
        self._running = True
        logger.info(
            "scheduler_started",
            sync_interval_minutes=self._settings.sync_interval_minutes,
            daily_summary_hour=self._settings.daily_summary_hour,
        )

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("scheduler_iteration_failed", error=str(e), exc_info=True)
            await asyncio.sleep(self._tick_seconds)

    def stop(self) -> None:
        """Stop the loop after the current iteration."""
        self._running = False
        logger.info("scheduler_stopping")


async def run_scheduler() -> None:
    """Run the scheduler as a standalone process."""
    from finsync.orchestrator import create_app_components

    components = create_app_components()
    try:
        await components.scheduler.run_forever()
    finally:
        await components.registry.aclose()


if __name__ == "__main__":
    try:
        asyncio.run(run_scheduler())
    except KeyboardInterrupt:
        logger.info("scheduler_interrupted")
