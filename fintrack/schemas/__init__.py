from .scheduler import (
    JobResult,
    JobExecution,
    JobDefinitionInfo,
    JobStatus,
    SchedulerStatus,
    JobToggleResult,
)
