# contentflow/server/processor.py
import logging
from datetime import datetime
from typing import Callable, List, Optional

from contentflow.common.exceptions import StorageError
from contentflow.common.job import Job
from contentflow.execution.performer import perform_job
from contentflow.execution.registry import HandlerRegistry
from contentflow.filters.base import JobFilter
from contentflow.storage.base import JobStore
from .context import ArchiveDecision, ElectOutcomeContext, RetryDecision

SUCCEEDED = "succeeded"
RETRIED = "retried"
ARCHIVED = "archived"
ERRORED = "error"


class JobProcessor:
    """Runs one reserved job and settles it in the store."""

    def __init__(
        self,
        job: Job,
        store: JobStore,
        handlers: HandlerRegistry,
        filters: List[JobFilter],
        clock: Callable[[], datetime],
        job_timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.job = job
        self.store = store
        self.handlers = handlers
        self.filters = filters
        self.clock = clock
        self.job_timeout = job_timeout
        self.logger = logger or logging.getLogger(__name__)

    def process(self) -> str:
        extra = {"job_id": self.job.id, "job_type": self.job.job_type}
        try:
            # 1. Resolve and perform
            handler = self.handlers.resolve(self.job.job_type)
            perform_job(handler, self.job.payload, timeout=self.job_timeout)
        except Exception as e:
            self.logger.error(
                f"Job processing failed: {self.job.job_type} (job {self.job.id}): {e}",
                exc_info=True,
                extra=extra,
            )
            return self._settle_failure(e)

        # 2. Acknowledge
        try:
            self.store.complete(self.job.id)
        except StorageError:
            self.logger.error(
                f"Job {self.job.id} succeeded but could not be completed",
                exc_info=True,
                extra=extra,
            )
            return ERRORED
        self.logger.info(
            f"Job processed successfully: {self.job.job_type}", extra=extra
        )
        return SUCCEEDED

    def _settle_failure(self, error: BaseException) -> str:
        context = ElectOutcomeContext(job=self.job, error=error, now=self.clock())
        for f in self.filters:
            f.on_failure(context)

        decision = context.candidate
        self.logger.debug(f"Job {self.job.id}: elected {decision!r}")
        try:
            if isinstance(decision, RetryDecision):
                self.store.release_for_retry(
                    self.job.id, decision.available_at, error=str(error)
                )
                return RETRIED
            if isinstance(decision, ArchiveDecision):
                self.store.archive_failure(self.job, error)
                self.logger.warning(
                    f"Job {self.job.id} moved to failure log: {decision.reason}",
                    extra={"job_id": self.job.id, "job_type": self.job.job_type},
                )
                return ARCHIVED
        except StorageError:
            # The lease stays in place; stuck-job recovery will pick it up.
            self.logger.error(
                f"Could not record failure of job {self.job.id}", exc_info=True
            )
            return ERRORED
        raise TypeError(f"Unsupported failure decision: {decision!r}")
