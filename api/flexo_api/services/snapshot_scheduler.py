"""Automatic snapshot scheduler.

A single background task per process: after an initial delay it takes the
daily snapshot and prunes archives past the retention window, then sleeps
until the next tick. Failures are logged and never end the loop.
"""

import asyncio
import logging
from contextlib import suppress
from datetime import datetime, timedelta
from typing import Callable, ContextManager, List, Optional

from flexo_api.services.snapshot_service import SnapshotService

logger = logging.getLogger(__name__)

ServiceFactory = Callable[[], ContextManager[SnapshotService]]


class SnapshotScheduler:
    """
    Periodic daily snapshot and retention sweep.

    Attributes:
        service_factory: Returns a context manager yielding a SnapshotService
            (a fresh session per tick)
        interval_seconds: Time between ticks
        initial_delay_seconds: Grace period before the first tick
        retention_days: Archives older than this are deleted
    """

    def __init__(
        self,
        service_factory: ServiceFactory,
        interval_seconds: float = 24 * 60 * 60,
        initial_delay_seconds: float = 300,
        retention_days: int = 30,
    ):
        self.service_factory = service_factory
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.retention_days = retention_days
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop on the running event loop. No-op if already started."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(
            f"Snapshot scheduler started (interval={self.interval_seconds}s, "
            f"retention={self.retention_days} days)"
        )

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Snapshot scheduler stopped")

    async def _loop(self) -> None:
        await asyncio.sleep(self.initial_delay_seconds)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    async def run_once(self) -> None:
        """Take the daily snapshot, then prune expired archives."""
        try:
            with self.service_factory() as service:
                result = await service.create_daily()
            logger.info(f"Automatic snapshot {result.snapshot_id} created ({result.total_records} programs)")
        except Exception as e:
            logger.error(f"Automatic snapshot failed: {e}", exc_info=True)

        try:
            await self.prune_expired()
        except Exception as e:
            logger.error(f"Snapshot retention sweep failed: {e}", exc_info=True)

    async def prune_expired(self, now: Optional[datetime] = None) -> List[str]:
        """
        Delete archives created before the retention window.

        Returns:
            Ids of the deleted snapshots
        """
        cutoff = (now or datetime.utcnow()) - timedelta(days=self.retention_days)
        deleted = []

        with self.service_factory() as service:
            for snapshot in await service.list_snapshots():
                if snapshot.created_at < cutoff and await service.delete(snapshot.snapshot_id):
                    deleted.append(snapshot.snapshot_id)

        if deleted:
            logger.info(f"Pruned {len(deleted)} expired snapshots: {deleted}")
        return deleted
