"""
Execution coordinator: the one path every job run goes through.

Scheduled ticks and manual triggers both call `execute_job`, so they share
the same lock and the same audit trail. Handler exceptions stop here and are
turned into a failed execution plus a JobResult describing the failure.
Storage errors are not caught and reach the caller.

Store calls run in worker threads so a blocking SQLite write never stalls
the event loop. Within one process a job name is also claimed in memory
before the first await, so a second caller sees it as running even while
the first is still waiting for its database lock.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Set

from ..schemas.scheduler import JobResult
from .registry import JobRegistry
from .store import JobExecutionStore

logger = logging.getLogger(__name__)

SCHEDULED = "scheduled"
MANUAL = "manual"


def error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _coerce_result(value: Any) -> JobResult:
    if isinstance(value, JobResult):
        return value
    if isinstance(value, dict):
        return JobResult(**value)
    raise TypeError(f"Job handler returned {type(value).__name__}, expected JobResult")


def _skipped() -> JobResult:
    return JobResult(processed_count=0, error_count=0, metadata={"skipped": True})


class ExecutionCoordinator:
    def __init__(self, registry: JobRegistry, store: JobExecutionStore) -> None:
        self.registry = registry
        self.store = store
        self._active: Set[str] = set()

    async def execute_job(self, name: str, trigger: str = SCHEDULED) -> JobResult:
        definition = self.registry.get(name)

        if name in self._active:
            logger.warning("Job %s is already running in this process, skipping (%s)", name, trigger)
            return _skipped()
        self._active.add(name)
        try:
            return await self._run(definition, trigger)
        finally:
            self._active.discard(name)

    async def _run(self, definition, trigger: str) -> JobResult:
        name = definition.name
        execution = await asyncio.to_thread(self.store.acquire_lock, name)
        if execution is None:
            logger.warning("Job %s is already running, skipping (%s)", name, trigger)
            return _skipped()

        logger.info("Job execution started: %s id=%s (%s)", name, execution.id, trigger)

        try:
            result = _coerce_result(await definition.handler())
        except Exception as exc:
            message = error_message(exc)
            await asyncio.to_thread(self.store.mark_failed, execution.id, message)
            logger.exception("Job execution failed: %s id=%s", name, execution.id)
            return JobResult(processed_count=0, error_count=1, errors=[message])

        await asyncio.to_thread(
            self.store.mark_completed,
            execution.id,
            result.processed_count,
            result.error_count,
            result.errors,
            result.metadata,
        )
        logger.info(
            "Job execution completed: %s id=%s processed=%s errors=%s",
            name,
            execution.id,
            result.processed_count,
            result.error_count,
        )
        return result

    async def trigger_job(self, name: str) -> JobResult:
        """Manual, out-of-band run. Same lock as the scheduled path."""
        logger.info("Manual job trigger: %s", name)
        return await self.execute_job(name, trigger=MANUAL)
