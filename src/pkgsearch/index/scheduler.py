"""APScheduler-based scheduler for periodic full rebuilds.

Each run builds a fresh generation from the full corpus; there are no
incremental updates.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pkgsearch.exceptions import PkgSearchError

logger = logging.getLogger(__name__)


class RebuildScheduler:
    """Schedules periodic indexing cycles using AsyncIOScheduler."""

    def __init__(self) -> None:
        self._scheduler = AsyncIOScheduler()
        self._started = False

    def start(self) -> None:
        """Start the underlying scheduler if not already started."""
        if not self._started:
            self._scheduler.start(paused=False)
            self._started = True

    def shutdown(self, *, wait: bool = True) -> None:
        """Shut down the scheduler."""
        if self._started:
            self._scheduler.shutdown(wait=wait)
            self._started = False

    def schedule_rebuild(
        self,
        rebuild: Callable[[], Awaitable[Any]],
        *,
        interval: timedelta = timedelta(hours=24),
        job_id: str = "rebuild",
        replace_existing: bool = True,
        run_immediately: bool = False,
    ) -> None:
        """Schedule periodic execution of `rebuild()`.

        Parameters
        ----------
        rebuild: Callable[[], Awaitable[Any]]
            Coroutine function running one full indexing cycle.
        interval: timedelta
            How often to rebuild (default 24 hours).
        job_id: str
            Job id, allowing the job to be replaced or removed.
        replace_existing: bool
            If True, replace any existing job with the same id.
        run_immediately: bool
            Also run once as soon as the scheduler starts.
        """

        async def _job() -> None:
            try:
                await rebuild()
            except PkgSearchError as exc:
                # Serving continues on the current live generation
                logger.error("Scheduled rebuild failed: %s", exc)

        trigger = IntervalTrigger(seconds=int(interval.total_seconds()))
        options: dict[str, Any] = {}
        if run_immediately:
            # An explicit None would add the job paused, so only pass a time
            options["next_run_time"] = datetime.now(timezone.utc)
        self._scheduler.add_job(
            _job,
            trigger=trigger,
            id=job_id,
            replace_existing=replace_existing,
            max_instances=1,
            coalesce=True,
            **options,
        )

    def job_ids(self) -> list[str]:
        return [job.id for job in self._scheduler.get_jobs()]
