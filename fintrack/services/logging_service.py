from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Logger trees that also get their own scheduler.log
SCHEDULER_LOGGERS = ("fintrack.scheduler", "fintrack.services.cron_service")

_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5


def _has_file_handler(logger: logging.Logger, path: Path) -> bool:
    return any(
        getattr(h, "baseFilename", None) == str(path)
        for h in logger.handlers
        if isinstance(h, logging.FileHandler)
    )


def _file_handler(path: Path, level: int, formatter: logging.Formatter, production: bool) -> logging.FileHandler:
    if production:
        handler: logging.FileHandler = RotatingFileHandler(
            str(path), maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT
        )
    else:
        handler = logging.FileHandler(str(path))
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def configure_logging(log_dir: Path, production: bool = False) -> None:
    """Configure application logging (file + console) and attach to uvicorn loggers.

    Idempotent: safe to call multiple times. In production files rotate
    (10MB x 5) and errors are also copied to errors.log.
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    server_log_path = log_dir / "server.log"
    scheduler_log_path = log_dir / "scheduler.log"
    error_log_path = log_dir / "errors.log"

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    detailed_formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [%(filename)s:%(lineno)d] %(funcName)s(): %(message)s"
    )

    server_handler = _file_handler(server_log_path, logging.INFO if production else logging.DEBUG, formatter, production)
    scheduler_handler = _file_handler(scheduler_log_path, logging.DEBUG, detailed_formatter, production)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.WARNING if production else logging.INFO)
    stream_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    if not _has_file_handler(root_logger, server_log_path):
        root_logger.addHandler(server_handler)

    if not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root_logger.handlers
    ):
        root_logger.addHandler(stream_handler)

    if production and not _has_file_handler(root_logger, error_log_path):
        root_logger.addHandler(_file_handler(error_log_path, logging.ERROR, detailed_formatter, production))

    for name in SCHEDULER_LOGGERS:
        lg = logging.getLogger(name)
        lg.setLevel(logging.DEBUG)
        if not _has_file_handler(lg, scheduler_log_path):
            lg.addHandler(scheduler_handler)

    # APScheduler's own chatter is only useful when debugging timers
    logging.getLogger("apscheduler").setLevel(logging.INFO if not production else logging.WARNING)

    for uv_logger_name in ("uvicorn.error", "uvicorn.access", "uvicorn"):
        lg = logging.getLogger(uv_logger_name)
        lg.setLevel(logging.INFO if production else logging.DEBUG)
        if not _has_file_handler(lg, server_log_path):
            lg.addHandler(server_handler)

    if production:
        startup_logger = logging.getLogger("fintrack.startup")
        startup_logger.info("Production logging configured")
        startup_logger.info("Log files location: %s", log_dir)
        startup_logger.info("Python %s on %s, cwd=%s", sys.version.split()[0], sys.platform, os.getcwd())
