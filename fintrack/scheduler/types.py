"""
Core scheduler types: job names, execution statuses and job definitions.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from ..schemas.scheduler import JobResult

JobHandler = Callable[[], Awaitable[JobResult]]


class JobName(str, Enum):
    """Jobs registered by the application at startup."""

    RECURRING_TRANSACTIONS = "recurring_transactions"
    GOAL_CONTRIBUTIONS = "goal_contributions"
    MONTHLY_REPORTS = "monthly_reports"
    BUDGET_ALERTS = "budget_alerts"
    OVERDUE_GOALS_CHECK = "overdue_goals_check"


class ExecutionStatus:
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class UnknownJobError(LookupError):
    """Raised when a job name is not in the registry."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown job: {name}")
        self.name = name


@dataclass
class JobDefinition:
    name: str
    schedule: str  # cron expression, 5 fields
    handler: JobHandler
    enabled: bool = True
    description: str = ""
