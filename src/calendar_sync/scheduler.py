"""Background auto-sync for the shared calendar.

Runs ``CalendarSyncService.sync_subscribers`` on a fixed interval while the
API process is up.  Each tick fetches the shared calendar once and
reconciles it for every subscribed user; a failed tick is logged and the
loop carries on with the next one.

Interval defaults to ``sync.auto_sync_interval_seconds`` in sync_config.yaml
(15 minutes).
"""

from __future__ import annotations

import asyncio
import logging

from src.calendar_sync.config_loader import get_sync_config
from src.calendar_sync.errors import SyncError
from src.calendar_sync.orchestrator import CalendarSyncService, SyncResult

logger = logging.getLogger("wellnest.calendar_sync.scheduler")


class AutoSyncScheduler:
    """Periodically sync the shared calendar for all subscribers.

    Usage::

        scheduler = AutoSyncScheduler(service)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        service: CalendarSyncService,
        interval_seconds: float | None = None,
    ) -> None:
        self._service = service
        self._interval = interval_seconds or get_sync_config().sync.auto_sync_interval_seconds
        self._task: asyncio.Task | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> list[SyncResult]:
        """Run one sync tick.  Never raises for sync failures."""
        self.runs += 1
        try:
            results = await self._service.sync_subscribers()
        except SyncError as exc:
            level = logging.ERROR if exc.needs_admin else logging.WARNING
            logger.log(level, "Auto-sync failed (%s): %s", exc.kind.value, exc.detail)
            return []

        errors = sum(1 for r in results if r.status == "error")
        logger.info("Auto-sync: %d user(s) synced, %d errors", len(results), errors)
        return results

    def start(self) -> None:
        if self.running:
            return
        logger.info("Starting calendar auto-sync every %ss", self._interval)
        self._task = asyncio.create_task(self._loop(), name="calendar-auto-sync")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Calendar auto-sync stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Unexpected error during calendar auto-sync")
            await asyncio.sleep(self._interval)
