# contentflow/filters/builtin.py
import logging
from datetime import timedelta
from typing import Tuple, Type

from contentflow.common.exceptions import UnknownJobType
from contentflow.filters.base import JobFilter
from contentflow.server.context import ArchiveDecision, ElectOutcomeContext, RetryDecision

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = timedelta(minutes=5)


class RetryFilter(JobFilter):
    """Requeue failed jobs after a flat delay until ``max_attempts`` is reached."""

    def __init__(self, max_attempts: int = 3, retry_delay: timedelta = DEFAULT_RETRY_DELAY):
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    def on_failure(self, elect_outcome_context: ElectOutcomeContext):
        job = elect_outcome_context.job
        logger.debug(
            f"RetryFilter: Job {job.id} failed. Attempts: {job.attempts}, Max attempts: {self.max_attempts}"
        )

        if job.attempts < self.max_attempts:
            elect_outcome_context.candidate = RetryDecision(
                available_at=elect_outcome_context.now + self.retry_delay,
                reason=f"Retrying job... Attempt {job.attempts} of {self.max_attempts}",
            )
        else:
            logger.debug(f"RetryFilter: Job {job.id} attempts exhausted. Archiving.")
            elect_outcome_context.candidate = ArchiveDecision(
                reason=f"Job failed after {job.attempts} attempts"
            )


class PermanentFailureFilter(JobFilter):
    """Archive immediately on errors that no retry can fix."""

    def __init__(self, permanent: Tuple[Type[BaseException], ...] = (UnknownJobType,)):
        self.permanent = permanent

    def on_failure(self, elect_outcome_context: ElectOutcomeContext):
        error = elect_outcome_context.error
        if isinstance(error, self.permanent):
            elect_outcome_context.candidate = ArchiveDecision(
                reason=f"Permanent failure: {type(error).__name__}"
            )
