from .registry import JobRegistry
from .store import JobExecutionStore
from .types import JobDefinition, JobName, UnknownJobError

__all__ = [
    "JobDefinition",
    "JobExecutionStore",
    "JobName",
    "JobRegistry",
    "UnknownJobError",
]
