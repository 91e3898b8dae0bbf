from dataclasses import dataclass
from datetime import datetime

from contentflow.common.job import Job


@dataclass
class RetryDecision:
    available_at: datetime
    reason: str = ""


@dataclass
class ArchiveDecision:
    reason: str = ""


class ElectOutcomeContext:
    """What to do with a failed job. Filters may replace ``candidate``."""

    def __init__(self, job: Job, error: BaseException, now: datetime):
        self.job = job
        self.error = error
        self.now = now
        self.candidate = ArchiveDecision(reason="No retry policy applied")
