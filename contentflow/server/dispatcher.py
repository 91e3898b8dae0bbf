# contentflow/server/dispatcher.py
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import Callable, Dict, List, Optional, Union

from contentflow.common.exceptions import StorageError
from contentflow.common.job import Job
from contentflow.execution.registry import HandlerRegistry
from contentflow.filters.base import JobFilter
from contentflow.filters.builtin import (
    DEFAULT_RETRY_DELAY,
    PermanentFailureFilter,
    RetryFilter,
)
from contentflow.storage.base import JobStore, as_timedelta
from .processor import ARCHIVED, RETRIED, SUCCEEDED, ERRORED, JobProcessor

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BATCH_SIZE = 50
DEFAULT_JOB_TIMEOUT = 300.0


@dataclass
class DispatchReport:
    reserved: int = 0
    succeeded: int = 0
    retried: int = 0
    archived: int = 0
    errors: int = 0
    outcomes: Dict[int, str] = field(default_factory=dict)

    def add(self, job_id: int, outcome: str) -> None:
        self.outcomes[job_id] = outcome
        if outcome == SUCCEEDED:
            self.succeeded += 1
        elif outcome == RETRIED:
            self.retried += 1
        elif outcome == ARCHIVED:
            self.archived += 1
        else:
            self.errors += 1


class Dispatcher:
    """
    Drains one batch of the queue per ``tick``.

    Reservation is atomic in the store, so several dispatchers may share one
    store. Each job is settled on its own; one failing job never aborts the
    rest of the batch.
    """

    def __init__(
        self,
        store: JobStore,
        handlers: HandlerRegistry,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retry_delay: Union[int, float, timedelta] = DEFAULT_RETRY_DELAY,
        job_timeout: Optional[float] = DEFAULT_JOB_TIMEOUT,
        max_workers: int = 1,
        filters: Optional[List[JobFilter]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.handlers = handlers
        self.max_attempts = max_attempts
        self.batch_size = batch_size
        self.job_timeout = job_timeout
        self.max_workers = max(1, max_workers)
        self.clock = clock or (lambda: datetime.now(UTC))
        self.logger = logger or logging.getLogger(__name__)
        if filters is None:
            filters = [
                RetryFilter(max_attempts=max_attempts, retry_delay=as_timedelta(retry_delay)),
                PermanentFailureFilter(),
            ]
        self.filters = filters

    def _process(self, job: Job) -> str:
        processor = JobProcessor(
            job,
            self.store,
            self.handlers,
            self.filters,
            clock=self.clock,
            job_timeout=self.job_timeout,
            logger=self.logger,
        )
        try:
            return processor.process()
        except Exception:
            self.logger.error(f"Unexpected error settling job {job.id}", exc_info=True)
            return ERRORED

    def tick(self) -> DispatchReport:
        report = DispatchReport()
        try:
            jobs = self.store.reserve_batch(self.max_attempts, self.batch_size)
        except StorageError:
            self.logger.error("Could not reserve jobs from the queue", exc_info=True)
            report.errors += 1
            return report

        report.reserved = len(jobs)
        if not jobs:
            return report
        self.logger.debug(f"Reserved {len(jobs)} jobs")

        if self.max_workers == 1 or len(jobs) == 1:
            for job in jobs:
                report.add(job.id, self._process(job))
        else:
            with ThreadPoolExecutor(
                max_workers=min(self.max_workers, len(jobs)),
                thread_name_prefix="contentflow-dispatch",
            ) as executor:
                for job, outcome in zip(jobs, executor.map(self._process, jobs)):
                    report.add(job.id, outcome)

        self.logger.info(
            f"Queue tick finished: {report.succeeded} succeeded, {report.retried} retried, "
            f"{report.archived} archived, {report.errors} errors"
        )
        return report

