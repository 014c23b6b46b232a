"""
SchedulerService: the admin-facing facade over registry, store, coordinator
and cron binder.

Every operation that takes a job name resolves it in the registry first, so
an unknown name raises UnknownJobError before the store is touched.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional

from .. import db
from ..core import config
from ..schemas.scheduler import (
    JobDefinitionInfo,
    JobExecution,
    JobResult,
    JobStatus,
    JobToggleResult,
    SchedulerStatus,
)
from ..services.cron_service import CronService
from .coordinator import ExecutionCoordinator
from .registry import JobRegistry
from .store import JobExecutionStore
from .types import JobDefinition

logger = logging.getLogger(__name__)


class SchedulerService:
    def __init__(
        self,
        db_path: Optional[db.PathLike] = None,
        timezone: Optional[str] = None,
        stale_after: Optional[timedelta] = None,
        retention: Optional[timedelta] = None,
        store: Optional[JobExecutionStore] = None,
    ) -> None:
        if timezone is None:
            timezone = config.SCHEDULER_TIMEZONE
        self.registry = JobRegistry(timezone=timezone)
        self.store = store or JobExecutionStore(
            db_path,
            stale_after=stale_after or timedelta(minutes=config.STALE_LOCK_MINUTES),
            retention=retention or timedelta(days=config.JOB_RETENTION_DAYS),
        )
        self.coordinator = ExecutionCoordinator(self.registry, self.store)
        self.cron = CronService(
            self.registry,
            on_tick=self.coordinator.execute_job,
            timezone=timezone,
            housekeeping=self.purge_expired_executions,
        )

    # --------- Lifecycle ---------

    def initialize(self, definitions: Optional[List[JobDefinition]] = None) -> None:
        """Prepare storage and register `definitions`."""
        self.store.initialize()
        for definition in definitions or []:
            self.register(definition)
        logger.info("Scheduler initialized: %s jobs registered", len(self.registry))

    def register(self, definition: JobDefinition) -> bool:
        registered = self.registry.register(definition)
        if registered:
            logger.info("Job registered: %s (%s)", definition.name, definition.schedule)
            # A job (re)registered while timers run is rebound immediately.
            if self.cron.running:
                self.cron.unbind(definition.name)
                if definition.enabled:
                    self.cron.bind(definition)
        return registered

    def start(self) -> None:
        self.cron.start()

    def stop(self) -> None:
        self.cron.stop()

    def is_running(self) -> bool:
        return self.cron.running

    # --------- Status ---------

    def get_job_definitions(self) -> List[JobDefinitionInfo]:
        return [
            JobDefinitionInfo(name=d.name, schedule=d.schedule, enabled=d.enabled, description=d.description)
            for d in self.registry.list()
        ]

    def get_all_job_statuses(self) -> List[JobStatus]:
        statuses = []
        for d in self.registry.list():
            statuses.append(
                JobStatus(
                    name=d.name,
                    schedule=d.schedule,
                    enabled=d.enabled,
                    description=d.description,
                    scheduled=self.cron.is_bound(d.name),
                    next_run_time=self.cron.next_run_time(d.name),
                    last_run=self.store.get_last_execution(d.name),
                )
            )
        return statuses

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(running=self.is_running(), jobs=self.get_all_job_statuses())

    def get_last_run(self, name: str) -> Optional[JobExecution]:
        self.registry.get(name)
        return self.store.get_last_execution(name)

    def get_job_history(self, name: str, limit: int = 10) -> List[JobExecution]:
        self.registry.get(name)
        return self.store.get_recent_executions(name, limit)

    # --------- Execution ---------

    async def execute_job(self, name: str) -> JobResult:
        return await self.coordinator.execute_job(name)

    async def trigger_job(self, name: str) -> JobResult:
        return await self.coordinator.trigger_job(name)

    # --------- Enable / disable at runtime ---------

    def enable_job(self, name: str) -> JobToggleResult:
        definition = self.registry.set_enabled(name, True)
        if self.cron.running:
            self.cron.bind(definition)
        logger.info("Job enabled: %s", name)
        return JobToggleResult(name=name, enabled=True, scheduled=self.cron.is_bound(name))

    def disable_job(self, name: str) -> JobToggleResult:
        self.registry.set_enabled(name, False)
        self.cron.unbind(name)
        logger.info("Job disabled: %s", name)
        return JobToggleResult(name=name, enabled=False, scheduled=False)

    # --------- Housekeeping ---------

    def purge_expired_executions(self) -> int:
        return self.store.purge_expired()
