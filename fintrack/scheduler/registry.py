from __future__ import annotations

import logging
from typing import Dict, List, Optional

from apscheduler.triggers.cron import CronTrigger

from .types import JobDefinition, UnknownJobError

logger = logging.getLogger(__name__)


def validate_schedule(schedule: str, timezone: Optional[str] = None) -> bool:
    """True when `schedule` is a valid 5-field crontab expression."""
    try:
        CronTrigger.from_crontab(schedule, timezone=timezone)
    except (ValueError, TypeError):
        return False
    return True


class JobRegistry:
    """In-memory catalog of job definitions, keyed by job name."""

    def __init__(self, timezone: Optional[str] = None) -> None:
        self.timezone = timezone
        self._jobs: Dict[str, JobDefinition] = {}

    def register(self, definition: JobDefinition) -> bool:
        """Store `definition`, replacing any previous one with the same name.

        A definition with an invalid cron expression is logged and dropped.
        """
        if not validate_schedule(definition.schedule, self.timezone):
            logger.error(
                "Invalid cron expression for job %s: %r", definition.name, definition.schedule
            )
            return False
        if definition.name in self._jobs:
            logger.info("Replacing existing definition for job %s", definition.name)
        self._jobs[definition.name] = definition
        return True

    def list(self) -> List[JobDefinition]:
        return list(self._jobs.values())

    def names(self) -> List[str]:
        return list(self._jobs.keys())

    def get(self, name: str) -> JobDefinition:
        try:
            return self._jobs[name]
        except KeyError:
            raise UnknownJobError(name) from None

    def set_enabled(self, name: str, enabled: bool) -> JobDefinition:
        definition = self.get(name)
        definition.enabled = enabled
        return definition

    def __contains__(self, name: object) -> bool:
        return name in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)
