# fintrack/db.py
"""
Database connection and initialization helpers.
This file is the single source of truth for opening the SQLite connection.
"""

import sqlite3
from pathlib import Path
from typing import Optional, Union

from .core import config

PathLike = Union[str, Path]


def get_db_path(db_path: Optional[PathLike] = None) -> str:
    """Get the database file path (explicit override or configured default)."""
    return str(db_path) if db_path is not None else str(config.DB_PATH)


def get_connection(db_path: Optional[PathLike] = None) -> sqlite3.Connection:
    path = Path(get_db_path(db_path))
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        str(path),
        check_same_thread=False,
        timeout=30,
    )
    conn.row_factory = sqlite3.Row
    return conn


def initialise_database(db_path: Optional[PathLike] = None) -> None:
    """Create database tables if they don't exist."""
    conn = get_connection(db_path)
    cur = conn.cursor()

    cur.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS categories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS accounts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE
        )
    """)

    # Negative amount = expense, positive amount = income
    cur.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            date TEXT NOT NULL,
            amount REAL NOT NULL,
            category_id INTEGER,
            user_id INTEGER NOT NULL,
            account_id INTEGER,
            notes TEXT,
            tags TEXT,
            recurrence_id INTEGER,
            period_key TEXT,
            FOREIGN KEY (category_id) REFERENCES categories (id),
            FOREIGN KEY (user_id) REFERENCES users (id),
            FOREIGN KEY (account_id) REFERENCES accounts (id),
            FOREIGN KEY (recurrence_id) REFERENCES recurrences (id),
            UNIQUE (recurrence_id, period_key)
        )
    """)
    cur.execute(
        "CREATE INDEX IF NOT EXISTS ix_transactions_user_date ON transactions (user_id, date)"
    )

    cur.execute("""
        CREATE TABLE IF NOT EXISTS recurrences (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            amount REAL NOT NULL,
            category_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            account_id INTEGER,
            frequency TEXT NOT NULL,
            day_of_month INTEGER,
            weekday INTEGER,
            next_charge_date TEXT NOT NULL,
            active BOOLEAN DEFAULT 1,
            FOREIGN KEY (category_id) REFERENCES categories (id),
            FOREIGN KEY (user_id) REFERENCES users (id)
        )
    """)

    # Track skipped recurring occurrences so they won't be recreated
    cur.execute("""
        CREATE TABLE IF NOT EXISTS recurrence_skips (
            recurrence_id INTEGER NOT NULL,
            period_key TEXT NOT NULL,
            skipped_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (recurrence_id, period_key),
            FOREIGN KEY (recurrence_id) REFERENCES recurrences (id)
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS goals (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            target_amount REAL NOT NULL,
            current_amount REAL NOT NULL DEFAULT 0,
            target_date TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'active',
            contribution_frequency TEXT,
            contribution_amount REAL,
            last_contribution_date TEXT,
            created_at TEXT NOT NULL DEFAULT (date('now')),
            FOREIGN KEY (user_id) REFERENCES users (id)
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS budgets (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            start_date TEXT NOT NULL,
            end_date TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users (id)
        )
    """)

    # One allocation line per category inside a budget
    cur.execute("""
        CREATE TABLE IF NOT EXISTS budget_categories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            budget_id INTEGER NOT NULL,
            category_id INTEGER NOT NULL,
            allocated REAL NOT NULL,
            FOREIGN KEY (budget_id) REFERENCES budgets (id),
            FOREIGN KEY (category_id) REFERENCES categories (id),
            UNIQUE (budget_id, category_id)
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            type TEXT NOT NULL,
            status TEXT NOT NULL,
            dedupe_key TEXT,
            payload TEXT,
            error TEXT,
            created_at TEXT NOT NULL
        )
    """)
    cur.execute(
        "CREATE INDEX IF NOT EXISTS ix_notifications_dedupe "
        "ON notifications (user_id, type, dedupe_key, created_at)"
    )

    # Scheduler audit trail. The partial unique index is the per-job lock:
    # at most one 'running' row per job name.
    cur.execute("""
        CREATE TABLE IF NOT EXISTS job_executions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            job_name TEXT NOT NULL,
            started_at TEXT NOT NULL,
            completed_at TEXT,
            status TEXT NOT NULL CHECK (status IN ('running', 'completed', 'failed')),
            processed_count INTEGER NOT NULL DEFAULT 0,
            error_count INTEGER NOT NULL DEFAULT 0,
            errors TEXT,
            metadata TEXT
        )
    """)
    cur.execute(
        "CREATE INDEX IF NOT EXISTS ix_job_executions_name_started "
        "ON job_executions (job_name, started_at)"
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS ix_job_executions_started ON job_executions (started_at)"
    )
    cur.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS ux_job_executions_running "
        "ON job_executions (job_name) WHERE status = 'running'"
    )

    conn.commit()
    conn.close()
