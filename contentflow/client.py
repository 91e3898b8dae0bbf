# contentflow/client.py
import logging
from datetime import datetime, timedelta, UTC
from typing import Any, Callable, Dict, List, Optional, Union

from .common.job import FailedJob, Job, QueueStats
from .storage.base import DEFAULT_STUCK_THRESHOLD, JobStore, as_timedelta

logger = logging.getLogger(__name__)


class QueueClient:
    """
    Producer side of the queue: enqueuing jobs and inspecting the queue and
    the failure log.
    """

    def __init__(
        self,
        store: JobStore,
        stuck_threshold: timedelta = DEFAULT_STUCK_THRESHOLD,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.stuck_threshold = stuck_threshold
        self._clock = clock or (lambda: datetime.now(UTC))

    def push(
        self,
        job_type: str,
        payload: Optional[Dict[str, Any]] = None,
        priority: int = 0,
        delay: Union[int, float, timedelta] = 0,
        unique: bool = False,
    ) -> int:
        """Creates a job. With ``unique`` an identical live job's id is returned instead."""
        if not job_type:
            raise ValueError("job_type must be a non-empty string")
        return self.store.push(
            job_type, payload or {}, priority=priority, delay=delay, unique=unique
        )

    def get_job(self, job_id: int) -> Optional[Job]:
        return self.store.get_job(job_id)

    def stats(self) -> QueueStats:
        return self.store.stats(self.stuck_threshold)

    # --- Failure log ---

    def get_failed_jobs(self, page: int = 1, page_size: int = 20) -> List[FailedJob]:
        start = (max(page, 1) - 1) * page_size
        return self.store.list_failures(start, page_size)

    def get_failed_job(self, failure_id: int) -> Optional[FailedJob]:
        return self.store.get_failure(failure_id)

    def count_failed_jobs(self) -> int:
        return self.store.count_failures()

    def retry_failed(self, failure_id: int, priority: int = 0) -> Optional[int]:
        """Pushes an archived job again as a new job. The failure record is kept."""
        failure = self.store.get_failure(failure_id)
        if failure is None:
            return None
        job_id = self.store.push(failure.job_type, failure.payload, priority=priority)
        logger.info(
            f"Failed job {failure.job_id} re-queued as job {job_id}",
            extra={"failure_id": failure_id, "job_type": failure.job_type},
        )
        return job_id

    def purge_failures(self, older_than: Union[int, float, timedelta]) -> int:
        cutoff = self._clock() - as_timedelta(older_than)
        return self.store.purge_failures(cutoff)
