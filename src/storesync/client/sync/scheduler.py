"""Polling fallback for missed change notifications.

This module provides:
- PollingScheduler: Interval timer that runs a full sync only when the
  realtime channel has been quiet for longer than the quiet period

Realtime notifications are the primary freshness mechanism. Polling exists
to heal dropped or missed notifications and is suppressed whenever recent
change events prove the channel is alive.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from storesync.client.sync.engine import ReconciliationEngine

logger = logging.getLogger(__name__)

POLL_JOB_ID = "poll_full_sync"


class PollingScheduler:
    """Timer-driven full sync fallback.

    Runs every ``interval`` seconds; a tick triggers a full sync only if
    ``now - last_realtime_at > quiet_period`` (or no event was ever seen).
    """

    def __init__(
        self,
        engine: ReconciliationEngine,
        interval: float = 300.0,
        quiet_period: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the scheduler.

        Args:
            engine: Engine to run full syncs on.
            interval: Seconds between ticks.
            quiet_period: Realtime silence required before polling syncs.
            clock: Must be the same clock the engine stamps events with.
        """
        self._engine = engine
        self._interval = interval
        self._quiet_period = quiet_period
        self._clock = clock
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        """Whether the timer is active."""
        return self._scheduler is not None

    @property
    def interval(self) -> float:
        return self._interval

    def should_sync(self) -> bool:
        """Check whether the realtime channel has been quiet long enough."""
        last = self._engine.state.last_realtime_at
        if last is None:
            return True
        return self._clock() - last > self._quiet_period

    async def tick(self) -> bool:
        """Job function for one polling tick.

        Returns:
            True if a full sync was started.
        """
        if not self.should_sync():
            logger.debug("Polling tick skipped, realtime channel is active")
            return False

        logger.info("Polling tick: running full sync")
        try:
            await self._engine.full_sync()
        except Exception:
            logger.exception("Error during polling full sync")
        return True

    def start(self) -> None:
        """Start the timer. Must be called from the running event loop."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self._interval),
            id=POLL_JOB_ID,
            name="Polling full sync fallback",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(
            "Polling scheduler started (every %.0fs, quiet period %.0fs)",
            self._interval,
            self._quiet_period,
        )

    def stop(self) -> None:
        """Stop the timer."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Polling scheduler stopped")
