from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

StatusLiteral = Literal["running", "completed", "failed"]


class JobResult(BaseModel):
    """What a job handler reports back after one run."""
    model_config = ConfigDict(extra="forbid")

    processed_count: int = 0
    error_count: int = 0
    errors: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None


class JobExecution(BaseModel):
    id: int
    job_name: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: StatusLiteral
    processed_count: int = 0
    error_count: int = 0
    errors: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None


class JobDefinitionInfo(BaseModel):
    name: str
    schedule: str
    enabled: bool
    description: str


class JobStatus(JobDefinitionInfo):
    scheduled: bool = False
    next_run_time: Optional[datetime] = None
    last_run: Optional[JobExecution] = None


class SchedulerStatus(BaseModel):
    running: bool
    jobs: List[JobStatus] = Field(default_factory=list)


class JobToggleResult(BaseModel):
    name: str
    enabled: bool
    scheduled: bool
