from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI

from . import db
from .api.scheduler import router as scheduler_router
from .core import config
from .scheduler.jobs import build_default_jobs
from .scheduler.service import SchedulerService
from .services.logging_service import configure_logging
from .services.notification_service import NotificationService

logger = logging.getLogger(__name__)


def create_app(
    db_path: Optional[db.PathLike] = None,
    start_scheduler: Optional[bool] = None,
    log_dir: Optional[Path] = None,
) -> FastAPI:
    app = FastAPI(title="FinTrack Scheduler", version="0.3.0")
    app.include_router(scheduler_router)

    if start_scheduler is None:
        start_scheduler = config.SCHEDULER_ENABLED

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # --- lifecycle: init DB, register jobs, start/stop timers ---
    @app.on_event("startup")
    async def _on_startup() -> None:
        configure_logging(log_dir or config.LOG_DIR, production=config.IS_PRODUCTION)
        db.initialise_database(db_path)

        notifier = NotificationService(db_path)
        scheduler = SchedulerService(db_path)
        scheduler.initialize(build_default_jobs(db_path, notifier))
        app.state.scheduler = scheduler

        if start_scheduler:
            try:
                scheduler.start()
            except Exception:
                logger.exception("Scheduler failed to start")
        else:
            logger.info("Scheduler timers disabled; admin API only")

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        scheduler = getattr(app.state, "scheduler", None)
        if scheduler is not None:
            try:
                scheduler.stop()
            except Exception:
                logger.exception("Scheduler shutdown error")

    return app


app = create_app()
