"""
Monthly financial summary, sent on the 1st for the previous calendar month.

For each user with transactions in that month: total income, total expenses,
net savings, the five largest expense categories and how much of the budgets
overlapping the month was used.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from ... import db
from ...schemas.scheduler import JobResult
from ...services.notification_service import NotificationService
from ..types import JobHandler

logger = logging.getLogger(__name__)

TOP_CATEGORIES = 5


def previous_month_range(today: date) -> Tuple[date, date]:
    start = today.replace(day=1) - relativedelta(months=1)
    end = today.replace(day=1) - relativedelta(days=1)
    return start, end


def build_user_report(conn: sqlite3.Connection, user_id: int, start: date, end: date) -> Optional[Dict[str, Any]]:
    totals = conn.execute(
        """
        SELECT COUNT(*) AS n,
               COALESCE(SUM(CASE WHEN amount > 0 THEN amount ELSE 0 END), 0) AS income,
               COALESCE(SUM(CASE WHEN amount < 0 THEN -amount ELSE 0 END), 0) AS expenses
        FROM transactions
        WHERE user_id = ? AND date BETWEEN ? AND ?
        """,
        (user_id, start.isoformat(), end.isoformat()),
    ).fetchone()
    if not totals["n"]:
        return None

    top_rows = conn.execute(
        """
        SELECT COALESCE(c.name, 'Uncategorized') AS name, SUM(-t.amount) AS amount
        FROM transactions t
        LEFT JOIN categories c ON c.id = t.category_id
        WHERE t.user_id = ? AND t.amount < 0 AND t.date BETWEEN ? AND ?
        GROUP BY t.category_id
        ORDER BY amount DESC
        LIMIT ?
        """,
        (user_id, start.isoformat(), end.isoformat(), TOP_CATEGORIES),
    ).fetchall()

    income = float(totals["income"])
    expenses = float(totals["expenses"])
    return {
        "total_income": round(income, 2),
        "total_expenses": round(expenses, 2),
        "net_savings": round(income - expenses, 2),
        "top_categories": [{"name": r["name"], "amount": round(float(r["amount"]), 2)} for r in top_rows],
        "budget_utilization": budget_utilization(conn, user_id, start, end),
    }


def budget_utilization(conn: sqlite3.Connection, user_id: int, start: date, end: date) -> int:
    """Percent of allocated budget spent across budgets overlapping [start, end]."""
    row = conn.execute(
        """
        SELECT COALESCE(SUM(bc.allocated), 0) AS allocated,
               COALESCE(SUM((
                   SELECT COALESCE(SUM(-t.amount), 0) FROM transactions t
                   WHERE t.user_id = b.user_id AND t.category_id = bc.category_id
                     AND t.amount < 0 AND t.date BETWEEN b.start_date AND b.end_date
               )), 0) AS spent
        FROM budgets b
        JOIN budget_categories bc ON bc.budget_id = b.id
        WHERE b.user_id = ? AND b.start_date <= ? AND b.end_date >= ?
        """,
        (user_id, end.isoformat(), start.isoformat()),
    ).fetchone()
    allocated = float(row["allocated"])
    return round(float(row["spent"]) / allocated * 100) if allocated > 0 else 0


def collect_reports(
    db_path: Optional[db.PathLike], start: date, end: date
) -> Tuple[List[Tuple[int, str, Dict[str, Any]]], List[str]]:
    """Build (user_id, user_name, report) for every user active in [start, end]."""
    reports: List[Tuple[int, str, Dict[str, Any]]] = []
    errors: List[str] = []

    conn = db.get_connection(db_path)
    try:
        users = conn.execute(
            "SELECT DISTINCT t.user_id, u.name FROM transactions t LEFT JOIN users u ON u.id = t.user_id "
            "WHERE t.date BETWEEN ? AND ?",
            (start.isoformat(), end.isoformat()),
        ).fetchall()
        logger.info("Generating %s monthly reports for %s", len(users), start.strftime("%B %Y"))

        for user in users:
            user_id = user["user_id"]
            try:
                report = build_user_report(conn, user_id, start, end)
            except sqlite3.Error as exc:
                msg = f"Failed to generate report for user {user_id}: {exc}"
                logger.error(msg)
                errors.append(msg)
                continue
            if report is not None:
                reports.append((user_id, user["name"] or "", report))
    finally:
        conn.close()
    return reports, errors


def create_monthly_reports_job(
    db_path: Optional[db.PathLike] = None,
    notifier: Optional[NotificationService] = None,
    today: Callable[[], date] = date.today,
) -> JobHandler:
    async def run() -> JobResult:
        processed = 0
        start, end = previous_month_range(today())
        month_label = start.strftime("%B %Y")

        try:
            reports, errors = await asyncio.to_thread(collect_reports, db_path, start, end)
        except sqlite3.Error as exc:
            logger.exception("Monthly reports job failed")
            reports, errors = [], [f"Job-level error: {exc}"]

        for user_id, user_name, report in reports:
            if notifier is not None:
                sent = await notifier.send(
                    user_id,
                    {"type": "monthly_report", "user_name": user_name, "month": month_label, **report},
                    dedupe_key=f"monthly_report:{start.strftime('%Y-%m')}",
                )
                if not sent:
                    errors.append(f"Monthly report for user {user_id} was not delivered")
                    continue
            processed += 1
            logger.info(
                "Monthly report for user %s: income=%s expenses=%s net=%s",
                user_id, report["total_income"], report["total_expenses"], report["net_savings"],
            )

        return JobResult(
            processed_count=processed,
            error_count=len(errors),
            errors=errors or None,
            metadata={"month": month_label},
        )

    return run
