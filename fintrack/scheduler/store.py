"""
Durable execution log for scheduled jobs, doubling as the per-job lock.

Every run attempt is one row in `job_executions`. A row with
`status = 'running'` is the lock for its job name; the partial unique index
`ux_job_executions_running` guarantees that at most one such row exists per
job, so acquiring the lock is a single INSERT that either succeeds or hits
an IntegrityError. That holds even with several processes sharing the file.

A running row older than the stale window is presumed to belong to a crashed
run. The next acquisition attempt reclassifies it as failed inside the same
write transaction and then takes the lock.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from .. import db
from ..schemas.scheduler import JobExecution
from .types import ExecutionStatus

logger = logging.getLogger(__name__)

STALE_LOCK_MESSAGE = "Stale lock - timed out"
DEFAULT_STALE_AFTER = timedelta(minutes=30)
DEFAULT_RETENTION = timedelta(days=90)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(value: datetime) -> str:
    """UTC ISO-8601 with fixed microsecond precision, so text order == time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dumps(value: Any) -> Optional[str]:
    return json.dumps(value, default=str) if value is not None else None


def _row_to_execution(row: sqlite3.Row) -> JobExecution:
    rec = dict(row)
    return JobExecution(
        id=rec["id"],
        job_name=rec["job_name"],
        started_at=rec["started_at"],
        completed_at=rec["completed_at"],
        status=rec["status"],
        processed_count=rec["processed_count"],
        error_count=rec["error_count"],
        errors=json.loads(rec["errors"]) if rec["errors"] else None,
        metadata=json.loads(rec["metadata"]) if rec["metadata"] else None,
    )


class JobExecutionStore:
    """SQLite-backed lock + audit trail for job executions."""

    def __init__(
        self,
        db_path: Optional[db.PathLike] = None,
        stale_after: timedelta = DEFAULT_STALE_AFTER,
        retention: timedelta = DEFAULT_RETENTION,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db_path = db.get_db_path(db_path)
        self.stale_after = stale_after
        self.retention = retention
        self._clock = clock

    def _connect(self) -> sqlite3.Connection:
        return db.get_connection(self.db_path)

    def initialize(self) -> None:
        db.initialise_database(self.db_path)

    # --------- Lock ---------

    def acquire_lock(self, job_name: str) -> Optional[JobExecution]:
        """
        Try to open a new running execution for `job_name`.

        Returns the new execution when the lock was taken, or None when another
        execution of the same job is still live.
        """
        now = self._clock()
        stale_cutoff = format_ts(now - self.stale_after)
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            reclaimed = conn.execute(
                "UPDATE job_executions SET status = ?, completed_at = ?, error_count = 1, errors = ? "
                "WHERE job_name = ? AND status = ? AND started_at < ?",
                (
                    ExecutionStatus.FAILED,
                    format_ts(now),
                    _dumps([STALE_LOCK_MESSAGE]),
                    job_name,
                    ExecutionStatus.RUNNING,
                    stale_cutoff,
                ),
            ).rowcount
            if reclaimed:
                logger.warning("Reclaimed stale lock for job %s", job_name)

            try:
                cur = conn.execute(
                    "INSERT INTO job_executions (job_name, started_at, status, processed_count, error_count) "
                    "VALUES (?, ?, ?, 0, 0)",
                    (job_name, format_ts(now), ExecutionStatus.RUNNING),
                )
            except sqlite3.IntegrityError:
                # ux_job_executions_running: a live run holds the lock
                conn.rollback()
                return None

            conn.commit()
            row = conn.execute("SELECT * FROM job_executions WHERE id = ?", (cur.lastrowid,)).fetchone()
            return _row_to_execution(row)
        except BaseException:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

    # --------- Terminal transitions ---------

    def mark_completed(
        self,
        execution_id: int,
        processed_count: int,
        error_count: int,
        errors: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        return self._finish(
            execution_id,
            ExecutionStatus.COMPLETED,
            processed_count=processed_count,
            error_count=error_count,
            errors=errors,
            metadata=metadata,
        )

    def mark_failed(self, execution_id: int, error: str) -> bool:
        return self._finish(
            execution_id,
            ExecutionStatus.FAILED,
            processed_count=0,
            error_count=1,
            errors=[error],
            metadata=None,
        )

    def _finish(
        self,
        execution_id: int,
        status: str,
        processed_count: int,
        error_count: int,
        errors: Optional[List[str]],
        metadata: Optional[Dict[str, Any]],
    ) -> bool:
        # Only a row that is still running may transition; a row reclaimed as
        # stale keeps its failed status.
        conn = self._connect()
        try:
            updated = conn.execute(
                "UPDATE job_executions SET status = ?, completed_at = ?, processed_count = ?, "
                "error_count = ?, errors = ?, metadata = ? "
                "WHERE id = ? AND status = ?",
                (
                    status,
                    format_ts(self._clock()),
                    processed_count,
                    error_count,
                    _dumps(errors),
                    _dumps(metadata),
                    execution_id,
                    ExecutionStatus.RUNNING,
                ),
            ).rowcount
            conn.commit()
        finally:
            conn.close()

        if not updated:
            logger.error(
                "Execution %s could not be marked %s: no running row with that id",
                execution_id,
                status,
            )
            return False
        return True

    # --------- Queries ---------

    def get_execution(self, execution_id: int) -> Optional[JobExecution]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM job_executions WHERE id = ?", (execution_id,)).fetchone()
        finally:
            conn.close()
        return _row_to_execution(row) if row else None

    def get_last_execution(self, job_name: str) -> Optional[JobExecution]:
        """Most recent finished (completed or failed) execution."""
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM job_executions WHERE job_name = ? AND status IN (?, ?) "
                "ORDER BY started_at DESC, id DESC LIMIT 1",
                (job_name, ExecutionStatus.COMPLETED, ExecutionStatus.FAILED),
            ).fetchone()
        finally:
            conn.close()
        return _row_to_execution(row) if row else None

    def get_recent_executions(self, job_name: str, limit: int = 10) -> List[JobExecution]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM job_executions WHERE job_name = ? "
                "ORDER BY started_at DESC, id DESC LIMIT ?",
                (job_name, limit),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_execution(r) for r in rows]

    # --------- Retention ---------

    def purge_expired(self) -> int:
        """Delete executions that started before the retention window."""
        cutoff = format_ts(self._clock() - self.retention)
        conn = self._connect()
        try:
            deleted = conn.execute(
                "DELETE FROM job_executions WHERE started_at < ?",
                (cutoff,),
            ).rowcount
            conn.commit()
        finally:
            conn.close()
        if deleted:
            logger.info("Purged %s job executions older than %s", deleted, cutoff)
        return deleted
