"""
Polling watcher for compilation database paths.

Fires `changed` whenever one of the watched paths appears or disappears.
Polling runs as an APScheduler interval job on the event loop.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from executor.events import EventEmitter

logger = logging.getLogger(__name__)

JOB_ID = 'database_watch'


class DatabaseWatcher:
    """Watches a set of file paths for creation and deletion."""

    def __init__(
        self,
        paths: Iterable[str] = (),
        interval: float = 2.0,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.interval = interval
        self.changed = EventEmitter('database_location_changed')
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._snapshot: Dict[str, bool] = {}
        self.watch(paths)

    @property
    def paths(self):
        return list(self._snapshot)

    @property
    def running(self) -> bool:
        return (
            self._scheduler is not None
            and self._scheduler.running
            and self._scheduler.get_job(JOB_ID) is not None
        )

    def watch(self, paths: Iterable[str]):
        """Replace the watched paths. Does not fire `changed`."""
        self._snapshot = {str(p): Path(p).exists() for p in paths if p}
        logger.debug(f"Watching {len(self._snapshot)} database path(s)")

    def check(self) -> bool:
        """
        Poll the watched paths once.

        Returns:
            True if any path was created or deleted since the last check
        """
        modified = False
        for path, existed in self._snapshot.items():
            exists = Path(path).exists()
            if exists != existed:
                self._snapshot[path] = exists
                logger.info(f"Database {'created' if exists else 'deleted'}: {path}")
                modified = True

        if modified:
            self.changed.fire()
        return modified

    async def _poll(self):
        self.check()

    def start(self):
        """Start polling. Must be called from the event loop."""
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(
                timezone='UTC',
                event_loop=asyncio.get_running_loop()
            )

        self._scheduler.add_job(
            self._poll,
            'interval',
            seconds=self.interval,
            id=JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1
        )
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info(f"Database watcher started (every {self.interval}s)")

    def stop(self):
        if not self.running:
            return
        if self._owns_scheduler:
            self._scheduler.shutdown(wait=False)
        else:
            self._scheduler.remove_job(JOB_ID)
        logger.info("Database watcher stopped")
