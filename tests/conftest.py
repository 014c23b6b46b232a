import sqlite3
import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path for imports like 'fintrack.db'
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fintrack import db  # noqa: E402
from fintrack.schemas.scheduler import JobResult  # noqa: E402
from fintrack.scheduler.service import SchedulerService  # noqa: E402
from fintrack.scheduler.store import JobExecutionStore  # noqa: E402
from fintrack.scheduler.types import JobDefinition  # noqa: E402
from fintrack.services.notification_service import NotificationService  # noqa: E402


@pytest.fixture(scope="session")
def log_dir(tmp_path_factory) -> Path:
    return tmp_path_factory.mktemp("logs")


@pytest.fixture()
def db_path(tmp_path) -> Path:
    path = tmp_path / "fintrack_test.sqlite3"
    db.initialise_database(path)
    return path


@pytest.fixture()
def db_conn(db_path):
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture()
def user_id(db_conn) -> int:
    cur = db_conn.execute("INSERT INTO users (name) VALUES ('Dana')")
    db_conn.commit()
    return cur.lastrowid


@pytest.fixture()
def category_ids(db_conn) -> dict:
    ids = {}
    for name in ("Groceries", "Rent", "Salary", "Fun"):
        ids[name] = db_conn.execute("INSERT INTO categories (name) VALUES (?)", (name,)).lastrowid
    db_conn.commit()
    return ids


@pytest.fixture()
def store(db_path) -> JobExecutionStore:
    return JobExecutionStore(db_path)


@pytest.fixture()
def notifier(db_path) -> NotificationService:
    # empty webhook url: in-app only, never falls back to the environment
    return NotificationService(db_path, webhook_url="")


@pytest.fixture()
def service(db_path) -> SchedulerService:
    svc = SchedulerService(db_path)
    svc.initialize()
    return svc


def make_definition(name="daily_cleanup", schedule="0 3 * * *", result=None, exc=None, delay=0.0, calls=None):
    """Build a JobDefinition whose handler returns `result` or raises `exc`."""
    import asyncio

    async def handler():
        if calls is not None:
            calls.append(name)
        if delay:
            await asyncio.sleep(delay)
        if exc is not None:
            raise exc
        return result if result is not None else JobResult(processed_count=0, error_count=0)

    return JobDefinition(name=name, schedule=schedule, handler=handler, description=f"test job {name}")


@pytest.fixture()
def definition_factory():
    return make_definition


@pytest.fixture()
def app_client(db_path, log_dir):
    from fastapi.testclient import TestClient
    from fintrack.main import create_app

    app = create_app(db_path=db_path, start_scheduler=False, log_dir=log_dir)
    with TestClient(app) as client:
        yield client
