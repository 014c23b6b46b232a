"""Nudge users about active goals whose target date has passed."""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from ... import db
from ...schemas.scheduler import JobResult
from ...services.notification_service import NotificationService
from ..types import JobHandler

logger = logging.getLogger(__name__)


def percent_complete(current: float, target: float) -> int:
    if target <= 0:
        return 0
    return min(100, round(current / target * 100))


def load_overdue_goals(db_path: Optional[db.PathLike], day: str) -> List[Dict[str, Any]]:
    conn = db.get_connection(db_path)
    try:
        rows = conn.execute(
            "SELECT g.*, u.name AS user_name FROM goals g LEFT JOIN users u ON u.id = g.user_id "
            "WHERE g.status = 'active' AND g.target_date < ?",
            (day,),
        ).fetchall()
    finally:
        conn.close()
    return [dict(r) for r in rows]


def create_overdue_goals_check_job(
    db_path: Optional[db.PathLike] = None,
    notifier: Optional[NotificationService] = None,
    today: Callable[[], date] = date.today,
) -> JobHandler:
    async def run() -> JobResult:
        errors: List[str] = []
        processed = 0

        try:
            goals = await asyncio.to_thread(load_overdue_goals, db_path, today().isoformat())
        except sqlite3.Error as exc:
            logger.exception("Overdue goals check job failed")
            return JobResult(processed_count=0, error_count=1, errors=[f"Job-level error: {exc}"])

        logger.info("Found %s overdue goals", len(goals))
        for goal in goals:
            pct = percent_complete(float(goal["current_amount"] or 0), float(goal["target_amount"]))
            if notifier is None:
                processed += 1
                continue
            sent = await notifier.send(
                goal["user_id"],
                {
                    "type": "goal_progress",
                    "user_name": goal["user_name"] or "",
                    "goal_name": goal["name"],
                    "current_amount": goal["current_amount"],
                    "target_amount": goal["target_amount"],
                    "percent_complete": pct,
                    "target_date": goal["target_date"],
                },
                dedupe_key=f"overdue_goal:{goal['id']}",
            )
            if not sent:
                errors.append(f"Failed overdue notification for goal {goal['id']}")
                continue
            processed += 1
            logger.info("Overdue goal notification sent: goal=%s user=%s %s%%", goal["id"], goal["user_id"], pct)

        return JobResult(processed_count=processed, error_count=len(errors), errors=errors or None)

    return run
