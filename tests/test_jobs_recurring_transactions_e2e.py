import asyncio
from datetime import date

import pytest

from fintrack.scheduler.jobs.recurring_transactions import (
    compute_next_charge_date,
    create_recurring_transactions_job,
)

TODAY = date(2026, 3, 15)


def _add_recurrence(db_conn, user_id, category_id, next_charge_date, frequency="monthly", day_of_month=1, amount=49.9):
    cur = db_conn.execute(
        "INSERT INTO recurrences (name, amount, category_id, user_id, frequency, day_of_month, next_charge_date, active) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, 1)",
        ("pytest-rec", amount, category_id, user_id, frequency, day_of_month, next_charge_date),
    )
    db_conn.commit()
    return cur.lastrowid


@pytest.mark.parametrize(
    "due,freq,dom,expected",
    [
        (date(2026, 1, 31), "monthly", 31, date(2026, 2, 28)),
        (date(2026, 2, 28), "monthly", 31, date(2026, 3, 31)),
        (date(2026, 3, 1), "weekly", None, date(2026, 3, 8)),
        (date(2026, 3, 1), "biweekly", None, date(2026, 3, 15)),
        (date(2026, 3, 1), "daily", None, date(2026, 3, 2)),
        (date(2024, 2, 29), "yearly", None, date(2025, 2, 28)),
    ],
)
def test_compute_next_charge_date(due, freq, dom, expected):
    assert compute_next_charge_date(due, freq, dom) == expected


def test_catches_up_missed_periods(db_path, db_conn, user_id, category_ids):
    rec_id = _add_recurrence(db_conn, user_id, category_ids["Rent"], "2026-01-01")
    job = create_recurring_transactions_job(db_path, today=lambda: TODAY)

    result = asyncio.run(job())
    assert result.processed_count == 3
    assert result.error_count == 0 and result.errors is None

    rows = db_conn.execute(
        "SELECT date, amount, notes FROM transactions WHERE recurrence_id = ? ORDER BY date", (rec_id,)
    ).fetchall()
    assert [r["date"] for r in rows] == ["2026-01-01", "2026-02-01", "2026-03-01"]
    assert all(r["amount"] == -49.9 for r in rows)
    assert rows[0]["notes"] == "Auto-recurring transaction"

    nxt = db_conn.execute("SELECT next_charge_date FROM recurrences WHERE id = ?", (rec_id,)).fetchone()[0]
    assert nxt == "2026-04-01"


def test_second_run_is_idempotent(db_path, db_conn, user_id, category_ids):
    _add_recurrence(db_conn, user_id, category_ids["Rent"], "2026-03-01")
    job = create_recurring_transactions_job(db_path, today=lambda: TODAY)

    assert asyncio.run(job()).processed_count == 1
    assert asyncio.run(job()).processed_count == 0
    assert db_conn.execute("SELECT COUNT(*) FROM transactions").fetchone()[0] == 1


def test_skipped_periods_are_not_recreated(db_path, db_conn, user_id, category_ids):
    rec_id = _add_recurrence(db_conn, user_id, category_ids["Rent"], "2026-01-01")
    db_conn.execute("INSERT INTO recurrence_skips (recurrence_id, period_key) VALUES (?, ?)", (rec_id, "2026-02-01"))
    db_conn.commit()

    result = asyncio.run(create_recurring_transactions_job(db_path, today=lambda: TODAY)())
    assert result.processed_count == 2
    dates = [r[0] for r in db_conn.execute("SELECT date FROM transactions ORDER BY date")]
    assert dates == ["2026-01-01", "2026-03-01"]


def test_bad_recurrence_does_not_block_others(db_path, db_conn, user_id, category_ids):
    bad_id = _add_recurrence(db_conn, user_id, category_ids["Rent"], "not-a-date")
    _add_recurrence(db_conn, user_id, category_ids["Fun"], "2026-03-10", frequency="weekly")

    result = asyncio.run(create_recurring_transactions_job(db_path, today=lambda: TODAY)())
    assert result.processed_count == 1
    assert result.error_count == 1
    assert f"recurrence {bad_id}" in result.errors[0]


def test_inactive_and_future_recurrences_are_ignored(db_path, db_conn, user_id, category_ids):
    _add_recurrence(db_conn, user_id, category_ids["Rent"], "2026-04-01")
    rec_id = _add_recurrence(db_conn, user_id, category_ids["Fun"], "2026-03-01")
    db_conn.execute("UPDATE recurrences SET active = 0 WHERE id = ?", (rec_id,))
    db_conn.commit()

    result = asyncio.run(create_recurring_transactions_job(db_path, today=lambda: TODAY)())
    assert result.processed_count == 0
    assert result.error_count == 0


def test_event_loop_keeps_running_while_job_works(db_path, monkeypatch):
    import time

    from fintrack.scheduler.jobs import recurring_transactions

    def slow_apply(path, run_date):
        time.sleep(0.3)
        return 0, []

    monkeypatch.setattr(recurring_transactions, "apply_recurring", slow_apply)
    job = create_recurring_transactions_job(db_path, today=lambda: TODAY)

    async def run_with_ticker():
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        task = asyncio.create_task(ticker())
        result = await job()
        task.cancel()
        return result, ticks

    result, ticks = asyncio.run(run_with_ticker())
    assert result.processed_count == 0
    assert ticks >= 5
