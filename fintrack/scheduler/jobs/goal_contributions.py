"""
Apply scheduled goal contributions.

For every active goal with a contribution frequency and a positive amount,
a contribution is due one interval after `last_contribution_date` (or the
goal's `created_at` if it never received one). The amount is added, capped at
the target; a goal that reaches its target is marked completed. Crossing a
25/50/75/100 % milestone sends one goal_progress notification.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from ... import db
from ...schemas.scheduler import JobResult
from ...services.notification_service import NotificationService
from ..types import JobHandler
from .recurring_transactions import parse_date

logger = logging.getLogger(__name__)

MILESTONES = (25, 50, 75, 100)


def next_contribution_date(last: date, frequency: Optional[str]) -> date:
    if frequency == "daily":
        return last + timedelta(days=1)
    if frequency == "weekly":
        return last + timedelta(weeks=1)
    if frequency == "biweekly":
        return last + timedelta(weeks=2)
    return last + relativedelta(months=1)


def crossed_milestone(previous: float, new: float, target: float) -> Optional[int]:
    """Lowest milestone crossed moving from `previous` to `new`, if any."""
    if target <= 0:
        return None
    prev_pct = previous / target * 100
    new_pct = new / target * 100
    for threshold in MILESTONES:
        if prev_pct < threshold <= new_pct:
            return threshold
    return None


def apply_contributions(db_path: Optional[db.PathLike], run_date: date) -> Tuple[int, List[str], List[Dict[str, Any]]]:
    """
    Apply every due contribution, committing goal by goal.

    Returns (applied_count, per-goal error messages, milestone payloads to notify).
    """
    errors: List[str] = []
    milestones: List[Dict[str, Any]] = []
    processed = 0

    conn = db.get_connection(db_path)
    try:
        goals = conn.execute(
            "SELECT g.*, u.name AS user_name FROM goals g LEFT JOIN users u ON u.id = g.user_id "
            "WHERE g.status = 'active' AND g.contribution_frequency IS NOT NULL "
            "AND g.contribution_amount > 0"
        ).fetchall()
        logger.info("Found %s goals with recurring contributions", len(goals))

        for row in goals:
            goal = dict(row)
            try:
                last = parse_date(goal["last_contribution_date"] or goal["created_at"][:10])
                if next_contribution_date(last, goal["contribution_frequency"]) > run_date:
                    continue

                previous = float(goal["current_amount"] or 0)
                target = float(goal["target_amount"])
                new_amount = round(min(target, previous + float(goal["contribution_amount"])), 2)
                completed = new_amount >= target

                conn.execute(
                    "UPDATE goals SET current_amount = ?, last_contribution_date = ?, status = ? WHERE id = ?",
                    (new_amount, run_date.isoformat(), "completed" if completed else goal["status"], goal["id"]),
                )
                conn.commit()
                processed += 1
                logger.info(
                    "Goal %s: contributed %s, total %s%s",
                    goal["id"], goal["contribution_amount"], new_amount, " (completed)" if completed else "",
                )
            except (sqlite3.Error, ValueError, TypeError) as exc:
                conn.rollback()
                msg = f"Failed to process goal {goal['id']}: {exc}"
                logger.error(msg)
                errors.append(msg)
                continue

            milestone = crossed_milestone(previous, new_amount, target)
            if milestone is not None:
                milestones.append({
                    "goal_id": goal["id"],
                    "user_id": goal["user_id"],
                    "milestone": milestone,
                    "payload": {
                        "type": "goal_progress",
                        "user_name": goal.get("user_name") or "",
                        "goal_name": goal["name"],
                        "current_amount": new_amount,
                        "target_amount": target,
                        "percent_complete": min(100, round(new_amount / target * 100)),
                    },
                })
    finally:
        conn.close()
    return processed, errors, milestones


def create_goal_contributions_job(
    db_path: Optional[db.PathLike] = None,
    notifier: Optional[NotificationService] = None,
    today: Callable[[], date] = date.today,
) -> JobHandler:
    async def run() -> JobResult:
        try:
            processed, errors, milestones = await asyncio.to_thread(apply_contributions, db_path, today())
        except sqlite3.Error as exc:
            logger.exception("Goal contributions job failed")
            processed, errors, milestones = 0, [f"Job-level error: {exc}"], []

        if notifier is not None:
            for item in milestones:
                sent = await notifier.send(
                    item["user_id"],
                    item["payload"],
                    dedupe_key=f"goal_milestone:{item['goal_id']}:{item['milestone']}",
                )
                if not sent:
                    logger.warning("Milestone notification for goal %s not delivered", item["goal_id"])

        return JobResult(processed_count=processed, error_count=len(errors), errors=errors or None)

    return run
