"""
APScheduler-based CronService binding job schedules to timers.

Each enabled job gets a CronTrigger on an AsyncIOScheduler. A tick does not
run the job itself: it spawns an independent asyncio task that calls the
execution coordinator, so the timer never waits on a job and never sees its
errors. A daily housekeeping timer purges expired execution history.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Set

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..scheduler.registry import JobRegistry
from ..scheduler.types import JobDefinition

logger = logging.getLogger(__name__)

TickCallback = Callable[[str], Awaitable[Any]]

HOUSEKEEPING_JOB_ID = "job_executions_retention"

_JOB_DEFAULTS = {
    "replace_existing": True,
    "coalesce": True,
    "max_instances": 1,
    "misfire_grace_time": 3600,
}


class CronService:
    """Background scheduler for registered jobs."""

    def __init__(
        self,
        registry: JobRegistry,
        on_tick: TickCallback,
        timezone: Optional[str] = None,
        housekeeping: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.registry = registry
        self._on_tick = on_tick
        self._timezone = timezone
        self._housekeeping = housekeeping
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._bound: Set[str] = set()
        self._inflight: Set["asyncio.Task[None]"] = set()

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    @property
    def scheduler(self) -> Optional[AsyncIOScheduler]:
        return self._scheduler

    def start(self) -> None:
        """Bind every enabled job and start the timers.

        Must be called from inside a running event loop.
        """
        if self._scheduler is not None:
            logger.warning("CronService already started; ignoring duplicate start.")
            return

        scheduler = AsyncIOScheduler(
            timezone=self._timezone,
            event_loop=asyncio.get_running_loop(),
        )
        self._scheduler = scheduler

        for definition in self.registry.list():
            if not definition.enabled:
                logger.info("Job %s is disabled, skipping", definition.name)
                continue
            self.bind(definition)

        if self._housekeeping is not None:
            scheduler.add_job(
                self._housekeeping,
                id=HOUSEKEEPING_JOB_ID,
                trigger=CronTrigger(hour=3, minute=30, timezone=self._timezone),
                **_JOB_DEFAULTS,
            )

        scheduler.start()
        logger.info("CronService started: %s jobs scheduled", len(self._bound))

    def stop(self) -> None:
        """Cancel all timers. Executions already in flight keep running."""
        if self._scheduler is None:
            return
        try:
            for name in sorted(self._bound):
                logger.info("Job %s stopped", name)
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            logger.info("CronService stopped.")
        finally:
            self._bound.clear()
            self._scheduler = None

    def bind(self, definition: JobDefinition) -> bool:
        """Attach a timer for `definition`. No-op if stopped or already bound."""
        if self._scheduler is None or definition.name in self._bound:
            return False
        self._scheduler.add_job(
            self._fire,
            id=definition.name,
            name=definition.description or definition.name,
            trigger=CronTrigger.from_crontab(definition.schedule, timezone=self._timezone),
            args=[definition.name],
            **_JOB_DEFAULTS,
        )
        self._bound.add(definition.name)
        logger.info(
            "Job %s scheduled: %s (%s)", definition.name, definition.schedule, definition.description
        )
        return True

    def unbind(self, name: str) -> bool:
        if name not in self._bound:
            return False
        self._bound.discard(name)
        if self._scheduler is not None:
            try:
                self._scheduler.remove_job(name)
            except JobLookupError:
                logger.warning("Timer for job %s was already gone", name)
        logger.info("Job %s unscheduled", name)
        return True

    def is_bound(self, name: str) -> bool:
        return name in self._bound

    def bound_jobs(self) -> List[str]:
        return sorted(self._bound)

    def next_run_time(self, name: str) -> Optional[datetime]:
        if self._scheduler is None or name not in self._bound:
            return None
        job = self._scheduler.get_job(name)
        return getattr(job, "next_run_time", None) if job is not None else None

    async def _fire(self, name: str) -> None:
        # Hand off to a separate task; the timer must not wait for the job.
        task = asyncio.create_task(self._run_tick(name), name=f"job:{name}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run_tick(self, name: str) -> None:
        try:
            await self._on_tick(name)
        except Exception:
            logger.exception("Unhandled job execution error: %s", name)
