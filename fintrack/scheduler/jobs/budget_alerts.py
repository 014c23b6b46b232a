"""
Budget overspend alerts.

For every budget active today, each category line's spend is computed from
the expense transactions inside the budget window. When spend reaches 80 %
or 100 % of the allocation, the highest crossed threshold is notified, at
most once per 24 hours per (budget, category, threshold).
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from ... import db
from ...schemas.scheduler import JobResult
from ...services.notification_service import NotificationService
from ..types import JobHandler

logger = logging.getLogger(__name__)

THRESHOLDS = (100, 80)  # highest first
COOLDOWN = timedelta(hours=24)


def load_budget_lines(db_path: Optional[db.PathLike], day: str) -> List[Dict[str, Any]]:
    """Allocation lines of every budget active on `day`, with spend so far."""
    conn = db.get_connection(db_path)
    try:
        rows = conn.execute(
            """
            SELECT b.id AS budget_id, b.user_id, b.name AS budget_name,
                   bc.category_id, COALESCE(c.name, 'Uncategorized') AS category_name, bc.allocated,
                   (SELECT COALESCE(SUM(-t.amount), 0) FROM transactions t
                     WHERE t.user_id = b.user_id AND t.category_id = bc.category_id
                       AND t.amount < 0 AND t.date BETWEEN b.start_date AND b.end_date) AS spent
            FROM budgets b
            JOIN budget_categories bc ON bc.budget_id = b.id
            LEFT JOIN categories c ON c.id = bc.category_id
            WHERE b.start_date <= ? AND b.end_date >= ?
            """,
            (day, day),
        ).fetchall()
    finally:
        conn.close()
    return [dict(r) for r in rows]


def create_budget_alerts_job(
    db_path: Optional[db.PathLike] = None,
    notifier: Optional[NotificationService] = None,
    today: Callable[[], date] = date.today,
) -> JobHandler:
    async def run() -> JobResult:
        errors: List[str] = []
        processed = 0
        since = datetime.now(timezone.utc) - COOLDOWN

        try:
            lines = await asyncio.to_thread(load_budget_lines, db_path, today().isoformat())
        except sqlite3.Error as exc:
            logger.exception("Budget alerts job failed")
            return JobResult(processed_count=0, error_count=1, errors=[f"Job-level error: {exc}"])
        logger.info("Scanning %s budget lines for alerts", len(lines))

        for line in lines:
            if not line["allocated"] or line["allocated"] <= 0:
                continue
            percent_used = round(float(line["spent"]) / float(line["allocated"]) * 100)
            threshold = next((t for t in THRESHOLDS if percent_used >= t), None)
            if threshold is None:
                continue

            dedupe_key = f"budget_alert:{line['budget_id']}:{line['category_id']}:{threshold}"
            try:
                if notifier is None or await asyncio.to_thread(
                    notifier.has_recent, line["user_id"], "budget_alert", dedupe_key, since
                ):
                    continue
                sent = await notifier.send(
                    line["user_id"],
                    {
                        "type": "budget_alert",
                        "budget_name": line["budget_name"] or "Budget",
                        "category_name": line["category_name"],
                        "spent": round(float(line["spent"]), 2),
                        "allocated": round(float(line["allocated"]), 2),
                        "percent_used": percent_used,
                        "threshold": threshold,
                    },
                    dedupe_key=dedupe_key,
                )
            except sqlite3.Error as exc:
                msg = f"Failed alert for budget {line['budget_id']} category {line['category_id']}: {exc}"
                logger.error(msg)
                errors.append(msg)
                continue

            if not sent:
                errors.append(f"Budget alert {dedupe_key} was not delivered")
                continue
            processed += 1
            logger.info(
                "Budget alert sent: user=%s budget=%s category=%s used=%s%%",
                line["user_id"], line["budget_id"], line["category_id"], percent_used,
            )

        return JobResult(processed_count=processed, error_count=len(errors), errors=errors or None)

    return run
