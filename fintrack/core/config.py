from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


def _project_root() -> Path:
    # core/config.py -> core -> fintrack -> project root
    return Path(__file__).resolve().parents[2]


def _env_flag(name: str, default: str) -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "on"}


PROJECT_ROOT: Path = _project_root()

# Data directory (SQLite DB)
DATA_DIR: Path = Path(os.getenv("DATA_DIR", str(PROJECT_ROOT / "data")))
DB_PATH: Path = Path(os.getenv("FINTRACK_DB_PATH", str(DATA_DIR / "fintrack.db")))

LOG_DIR: Path = Path(os.getenv("LOG_DIR", str(PROJECT_ROOT / "logs")))
IS_PRODUCTION: bool = (
    os.getenv("RAILWAY_ENVIRONMENT") is not None or os.getenv("ENVIRONMENT") == "production"
)

# Scheduler
SCHEDULER_ENABLED: bool = _env_flag("SCHEDULER_ENABLED", "1")
SCHEDULER_TIMEZONE: Optional[str] = os.getenv("SCHEDULER_TIMEZONE") or None
STALE_LOCK_MINUTES: int = int(os.getenv("STALE_LOCK_MINUTES", "30"))
JOB_RETENTION_DAYS: int = int(os.getenv("JOB_RETENTION_DAYS", "90"))
HISTORY_MAX_LIMIT: int = int(os.getenv("HISTORY_MAX_LIMIT", "100"))

# Notifications
NOTIFY_WEBHOOK_URL: Optional[str] = os.getenv("NOTIFY_WEBHOOK_URL") or None
NOTIFY_TIMEOUT_SECONDS: float = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "10"))
