import asyncio
import logging
import sqlite3

import pytest

from fintrack.schemas.scheduler import JobResult
from fintrack.scheduler.coordinator import ExecutionCoordinator
from fintrack.scheduler.registry import JobRegistry
from fintrack.scheduler.store import JobExecutionStore
from fintrack.scheduler.types import UnknownJobError


def _coordinator(store, *definitions):
    registry = JobRegistry()
    for d in definitions:
        registry.register(d)
    return ExecutionCoordinator(registry, store)


def _row_count(db_conn):
    return db_conn.execute("SELECT COUNT(*) FROM job_executions").fetchone()[0]


def test_successful_run_is_recorded(store, definition_factory):
    result = JobResult(processed_count=3, error_count=0)
    coordinator = _coordinator(store, definition_factory("daily_cleanup", result=result))

    returned = asyncio.run(coordinator.trigger_job("daily_cleanup"))
    assert returned == result

    last = store.get_last_execution("daily_cleanup")
    assert last.status == "completed"
    assert last.processed_count == 3
    assert last.error_count == 0


def test_handler_exception_becomes_failed_execution(store, definition_factory, caplog):
    coordinator = _coordinator(store, definition_factory("daily_cleanup", exc=RuntimeError("boom")))

    with caplog.at_level(logging.ERROR, logger="fintrack.scheduler.coordinator"):
        returned = asyncio.run(coordinator.execute_job("daily_cleanup"))

    assert returned == JobResult(processed_count=0, error_count=1, errors=["boom"])
    last = store.get_last_execution("daily_cleanup")
    assert last.status == "failed"
    assert last.errors == ["boom"]
    failed_logs = [r for r in caplog.records if "Job execution failed" in r.getMessage()]
    assert failed_logs and failed_logs[0].exc_info is not None


def test_exception_without_message_uses_class_name(store, definition_factory):
    coordinator = _coordinator(store, definition_factory("daily_cleanup", exc=KeyError()))
    returned = asyncio.run(coordinator.execute_job("daily_cleanup"))
    assert returned.errors == ["KeyError"]


def test_handler_returning_wrong_type_fails(store):
    from fintrack.scheduler.types import JobDefinition

    async def handler():
        return 42

    coordinator = _coordinator(store, JobDefinition("daily_cleanup", "0 3 * * *", handler))
    returned = asyncio.run(coordinator.execute_job("daily_cleanup"))
    assert returned.error_count == 1
    assert store.get_last_execution("daily_cleanup").status == "failed"


def test_concurrent_runs_are_mutually_exclusive(store, definition_factory, db_conn):
    calls = []
    coordinator = _coordinator(
        store,
        definition_factory("daily_cleanup", result=JobResult(processed_count=1), delay=0.05, calls=calls),
    )

    async def run_twice():
        return await asyncio.gather(
            coordinator.trigger_job("daily_cleanup"),
            coordinator.trigger_job("daily_cleanup"),
        )

    results = asyncio.run(run_twice())
    skipped = [r for r in results if r.metadata and r.metadata.get("skipped")]
    assert len(skipped) == 1
    assert skipped[0] == JobResult(processed_count=0, error_count=0, metadata={"skipped": True})
    assert calls == ["daily_cleanup"]
    assert _row_count(db_conn) == 1
    assert store.get_last_execution("daily_cleanup").status == "completed"


def test_contention_logs_warning_not_error(store, definition_factory, caplog):
    calls = []
    coordinator = _coordinator(store, definition_factory("daily_cleanup", calls=calls))
    store.acquire_lock("daily_cleanup")

    with caplog.at_level(logging.DEBUG, logger="fintrack.scheduler"):
        returned = asyncio.run(coordinator.execute_job("daily_cleanup"))

    assert returned.metadata == {"skipped": True}
    assert calls == []
    assert any(r.levelno == logging.WARNING and "already running" in r.getMessage() for r in caplog.records)
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


def test_unknown_job_raises_without_store_writes(store, db_conn):
    coordinator = _coordinator(store)
    with pytest.raises(UnknownJobError):
        asyncio.run(coordinator.trigger_job("not_a_real_job"))
    assert _row_count(db_conn) == 0


class _BrokenStore(JobExecutionStore):
    def mark_completed(self, *args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")


def test_storage_errors_propagate(db_path, definition_factory):
    coordinator = _coordinator(_BrokenStore(db_path), definition_factory("daily_cleanup"))
    with pytest.raises(sqlite3.OperationalError):
        asyncio.run(coordinator.execute_job("daily_cleanup"))


def test_each_run_gets_exactly_one_terminal_status(store, definition_factory, db_conn):
    coordinator = _coordinator(
        store,
        definition_factory("ok_job", result=JobResult(processed_count=2)),
        definition_factory("bad_job", exc=ValueError("bad input")),
    )

    async def run_all():
        for _ in range(3):
            await coordinator.execute_job("ok_job")
            await coordinator.execute_job("bad_job")

    asyncio.run(run_all())
    rows = db_conn.execute("SELECT job_name, status FROM job_executions").fetchall()
    assert len(rows) == 6
    assert {(r["job_name"], r["status"]) for r in rows} == {("ok_job", "completed"), ("bad_job", "failed")}


def test_concurrent_runs_exclusive_when_handler_never_yields(store, db_conn):
    from fintrack.scheduler.types import JobDefinition

    calls = []

    async def handler():
        calls.append("daily_cleanup")
        return JobResult(processed_count=1)

    coordinator = _coordinator(store, JobDefinition("daily_cleanup", "0 3 * * *", handler))

    async def run_twice():
        return await asyncio.gather(
            coordinator.trigger_job("daily_cleanup"),
            coordinator.trigger_job("daily_cleanup"),
        )

    results = asyncio.run(run_twice())
    assert sum(1 for r in results if r.metadata == {"skipped": True}) == 1
    assert calls == ["daily_cleanup"]
    assert _row_count(db_conn) == 1


def test_back_to_back_recurring_transactions_triggers_skip_once(db_path, store, db_conn):
    from fintrack.scheduler.jobs.recurring_transactions import create_recurring_transactions_job
    from fintrack.scheduler.types import JobDefinition

    coordinator = _coordinator(
        store,
        JobDefinition("recurring_transactions", "0 1 * * *", create_recurring_transactions_job(db_path)),
    )

    async def run_twice():
        first = asyncio.create_task(coordinator.trigger_job("recurring_transactions"))
        second = asyncio.create_task(coordinator.trigger_job("recurring_transactions"))
        return await asyncio.gather(first, second)

    results = asyncio.run(run_twice())
    assert sum(1 for r in results if r.metadata and r.metadata.get("skipped")) == 1
    rows = db_conn.execute("SELECT status FROM job_executions").fetchall()
    assert [r["status"] for r in rows] == ["completed"]


def test_lock_is_released_for_the_next_run(store, definition_factory):
    calls = []
    coordinator = _coordinator(store, definition_factory("daily_cleanup", calls=calls))

    async def run_in_sequence():
        await coordinator.execute_job("daily_cleanup")
        await coordinator.execute_job("daily_cleanup")

    asyncio.run(run_in_sequence())
    assert calls == ["daily_cleanup", "daily_cleanup"]


def test_dict_result_with_unknown_keys_fails(store):
    from fintrack.scheduler.types import JobDefinition

    async def handler():
        return {"processedCount": 3}

    coordinator = _coordinator(store, JobDefinition("daily_cleanup", "0 3 * * *", handler))
    returned = asyncio.run(coordinator.execute_job("daily_cleanup"))
    assert returned.error_count == 1
    last = store.get_last_execution("daily_cleanup")
    assert last.status == "failed"
    assert last.processed_count == 0


def test_dict_result_with_known_keys_is_accepted(store):
    from fintrack.scheduler.types import JobDefinition

    async def handler():
        return {"processed_count": 3, "error_count": 0}

    coordinator = _coordinator(store, JobDefinition("daily_cleanup", "0 3 * * *", handler))
    returned = asyncio.run(coordinator.execute_job("daily_cleanup"))
    assert returned == JobResult(processed_count=3, error_count=0)
    assert store.get_last_execution("daily_cleanup").status == "completed"
