from __future__ import annotations

from datetime import date
from typing import Callable, List, Optional

from ... import db
from ...services.notification_service import NotificationService
from ..types import JobDefinition, JobName
from .budget_alerts import create_budget_alerts_job
from .goal_contributions import create_goal_contributions_job
from .monthly_reports import create_monthly_reports_job
from .overdue_goals_check import create_overdue_goals_check_job
from .recurring_transactions import create_recurring_transactions_job

__all__ = [
    "build_default_jobs",
    "create_budget_alerts_job",
    "create_goal_contributions_job",
    "create_monthly_reports_job",
    "create_overdue_goals_check_job",
    "create_recurring_transactions_job",
]


def build_default_jobs(
    db_path: Optional[db.PathLike] = None,
    notifier: Optional[NotificationService] = None,
    today: Callable[[], date] = date.today,
) -> List[JobDefinition]:
    """The application's production jobs, in registration order."""
    #  minute hour day-of-month month day-of-week
    return [
        JobDefinition(
            name=JobName.RECURRING_TRANSACTIONS.value,
            schedule="0 1 * * *",  # daily 01:00
            handler=create_recurring_transactions_job(db_path, today=today),
            description="Creates new transaction instances from recurring templates",
        ),
        JobDefinition(
            name=JobName.GOAL_CONTRIBUTIONS.value,
            schedule="0 2 * * *",  # daily 02:00
            handler=create_goal_contributions_job(db_path, notifier, today=today),
            description="Auto-increments goal current_amount based on contribution frequency",
        ),
        JobDefinition(
            name=JobName.MONTHLY_REPORTS.value,
            schedule="0 6 1 * *",  # 1st of month 06:00
            handler=create_monthly_reports_job(db_path, notifier, today=today),
            description="Generates and sends monthly financial summaries to all users",
        ),
        JobDefinition(
            name=JobName.BUDGET_ALERTS.value,
            schedule="0 8 * * *",  # daily 08:00
            handler=create_budget_alerts_job(db_path, notifier, today=today),
            description="Scans active budgets for category overspend (80% / 100% thresholds)",
        ),
        JobDefinition(
            name=JobName.OVERDUE_GOALS_CHECK.value,
            schedule="0 9 * * *",  # daily 09:00
            handler=create_overdue_goals_check_job(db_path, notifier, today=today),
            description="Notifies users about active goals past their target date",
        ),
    ]
