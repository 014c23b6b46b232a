"""
Materialize due recurring transactions.

Each active recurrence carries a `next_charge_date`. While that date is today
or earlier, a transaction is inserted for it and the date advances by one
interval, so a missed day (app down, job disabled) is caught up on the next
run. Idempotency comes from the `(recurrence_id, period_key)` unique
constraint on `transactions`; periods listed in `recurrence_skips` are
advanced past without inserting.
"""
from __future__ import annotations

import asyncio
import calendar
import logging
import sqlite3
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Tuple

from ... import db
from ...schemas.scheduler import JobResult
from ..types import JobHandler

logger = logging.getLogger(__name__)

FREQUENCIES = ("daily", "weekly", "biweekly", "monthly", "yearly")

# --------- Helpers: dates ---------

def parse_date(ds: str) -> date:
    return datetime.strptime(ds, "%Y-%m-%d").date()

def _clamp_day(year: int, month: int, day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    if day < 1:
        day = 1
    if day > last_day:
        day = last_day
    return date(year, month, day)

def _add_months_keep_dom(current: date, months: int, desired_day: Optional[int]) -> date:
    total_months = current.year * 12 + current.month - 1 + months
    y = total_months // 12
    m = total_months % 12 + 1
    day = int(desired_day) if desired_day is not None else current.day
    return _clamp_day(y, m, day)

def compute_next_charge_date(current_due: date, freq: Optional[str], day_of_month: Optional[int]) -> date:
    if freq == "daily":
        return current_due + timedelta(days=1)
    if freq == "weekly":
        return current_due + timedelta(days=7)
    if freq == "biweekly":
        return current_due + timedelta(days=14)
    if freq == "yearly":
        try:
            return current_due.replace(year=current_due.year + 1)
        except ValueError:
            # Feb 29th case => move to Feb 28th next year
            return current_due.replace(month=2, day=28, year=current_due.year + 1)
    # monthly, and the fallback for unknown frequencies
    return _add_months_keep_dom(current_due, 1, day_of_month)

# --------- Core ---------

def _apply_one(conn: sqlite3.Connection, rec: dict, today: date) -> int:
    due = parse_date(rec["next_charge_date"])
    inserted = 0

    # Loop while overdue (catch up if the job did not run)
    while due <= today:
        period_key = due.isoformat()

        skipped = conn.execute(
            "SELECT 1 FROM recurrence_skips WHERE recurrence_id = ? AND period_key = ? LIMIT 1",
            (rec["id"], period_key),
        ).fetchone()
        if not skipped:
            cur = conn.execute(
                "INSERT OR IGNORE INTO transactions (date, amount, category_id, user_id, account_id, notes, tags, recurrence_id, period_key) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    due.isoformat(),
                    -abs(rec["amount"]),
                    rec["category_id"],
                    rec["user_id"],
                    rec.get("account_id"),
                    "Auto-recurring transaction",
                    None,
                    rec["id"],
                    period_key,
                ),
            )
            inserted += cur.rowcount

        next_due = compute_next_charge_date(due, rec.get("frequency"), rec.get("day_of_month"))
        conn.execute(
            "UPDATE recurrences SET next_charge_date = ? WHERE id = ?",
            (next_due.isoformat(), rec["id"]),
        )
        due = next_due

    return inserted


def apply_recurring(db_path: Optional[db.PathLike] = None, today: Optional[date] = None) -> Tuple[int, List[str]]:
    """
    Materialize due recurring transactions using `next_charge_date`.

    Returns (inserted_count, per-recurrence error messages). Each recurrence
    is committed on its own so one bad row does not block the others.
    """
    if today is None:
        today = date.today()

    count_inserted = 0
    errors: List[str] = []
    conn = db.get_connection(db_path)
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        rows = conn.execute(
            "SELECT * FROM recurrences WHERE active = 1 AND next_charge_date IS NOT NULL"
        ).fetchall()
        logger.info("Found %s active recurrences", len(rows))

        for row in rows:
            rec = dict(row)
            try:
                inserted = _apply_one(conn, rec, today)
                conn.commit()
            except (sqlite3.Error, ValueError, TypeError) as exc:
                conn.rollback()
                msg = f"Failed to process recurrence {rec['id']}: {exc}"
                logger.error(msg)
                errors.append(msg)
                continue
            if inserted:
                logger.info("Recurrence %s: inserted %s transactions", rec["id"], inserted)
            count_inserted += inserted
    finally:
        conn.close()
    return count_inserted, errors


def create_recurring_transactions_job(
    db_path: Optional[db.PathLike] = None,
    today: Callable[[], date] = date.today,
) -> JobHandler:
    async def run() -> JobResult:
        try:
            inserted, errors = await asyncio.to_thread(apply_recurring, db_path, today())
        except sqlite3.Error as exc:
            logger.exception("Recurring transactions job failed")
            inserted, errors = 0, [f"Job-level error: {exc}"]
        return JobResult(
            processed_count=inserted,
            error_count=len(errors),
            errors=errors or None,
        )

    return run
