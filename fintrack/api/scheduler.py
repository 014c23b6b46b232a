from typing import List

from fastapi import APIRouter, HTTPException, Query, Request

from ..core import config
from ..scheduler.service import SchedulerService
from ..scheduler.types import UnknownJobError
from ..schemas.scheduler import JobExecution, JobResult, JobToggleResult, SchedulerStatus

router = APIRouter(prefix="/api/admin/scheduler", tags=["scheduler"])


def _service(request: Request) -> SchedulerService:
    service = getattr(request.app.state, "scheduler", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialized")
    return service


def _invalid_job(exc: UnknownJobError) -> HTTPException:
    return HTTPException(status_code=400, detail=f"Invalid job name: {exc.name}")


@router.get("/status", response_model=SchedulerStatus)
async def api_scheduler_status(request: Request) -> SchedulerStatus:
    """All registered jobs with schedule, enabled state and last run."""
    return _service(request).get_status()


@router.get("/jobs/{name}/history", response_model=List[JobExecution])
async def api_job_history(
    name: str,
    request: Request,
    limit: int = Query(10, ge=1, le=config.HISTORY_MAX_LIMIT),
) -> List[JobExecution]:
    try:
        return _service(request).get_job_history(name, limit)
    except UnknownJobError as exc:
        raise _invalid_job(exc)


@router.post("/jobs/{name}/trigger", response_model=JobResult)
async def api_trigger_job(name: str, request: Request) -> JobResult:
    """Run a job now, out of band. Lock contention shows up as metadata.skipped."""
    try:
        return await _service(request).trigger_job(name)
    except UnknownJobError as exc:
        raise _invalid_job(exc)


@router.post("/jobs/{name}/enable", response_model=JobToggleResult)
async def api_enable_job(name: str, request: Request) -> JobToggleResult:
    try:
        return _service(request).enable_job(name)
    except UnknownJobError as exc:
        raise _invalid_job(exc)


@router.post("/jobs/{name}/disable", response_model=JobToggleResult)
async def api_disable_job(name: str, request: Request) -> JobToggleResult:
    try:
        return _service(request).disable_job(name)
    except UnknownJobError as exc:
        raise _invalid_job(exc)
