# contentflow/storage/base.py
import traceback
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple, Union

from contentflow.common.job import FailedJob, Job, QueueStats, ScheduleState

DEFAULT_STUCK_THRESHOLD = timedelta(hours=1)


def describe_error(error: Union[BaseException, str]) -> Tuple[str, str, str]:
    """Split an error into (type name, message, formatted traceback)."""
    if isinstance(error, BaseException):
        details = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
        return type(error).__name__, str(error), details
    return "Error", str(error), ""


def as_timedelta(delay: Union[int, float, timedelta]) -> timedelta:
    if isinstance(delay, timedelta):
        return delay
    return timedelta(seconds=delay)


class JobStore(ABC):
    """
    Durable table of jobs plus the failure log, job history and schedule state.

    Every mutation of a job row goes through one of these operations, and each
    operation is atomic on its own.
    """

    # --- Queue ---

    @abstractmethod
    def push(
        self,
        job_type: str,
        payload: Dict[str, Any],
        priority: int = 0,
        delay: Union[int, float, timedelta] = 0,
        unique: bool = False,
    ) -> int: ...

    @abstractmethod
    def reserve_batch(self, max_attempts: int, batch_size: int) -> List[Job]: ...

    @abstractmethod
    def complete(self, job_id: int) -> bool: ...

    @abstractmethod
    def release_for_retry(
        self, job_id: int, next_available_at: datetime, error: Optional[str] = None
    ) -> bool: ...

    @abstractmethod
    def archive_failure(self, job: Job, error: Union[BaseException, str]) -> int: ...

    @abstractmethod
    def stats(self, stuck_threshold: timedelta = DEFAULT_STUCK_THRESHOLD) -> QueueStats: ...

    @abstractmethod
    def get_job(self, job_id: int) -> Optional[Job]: ...

    @abstractmethod
    def find_stuck(self, older_than: timedelta, limit: int = 100) -> List[Job]: ...

    # --- Failure log ---

    @abstractmethod
    def list_failures(self, start: int = 0, count: int = 20) -> List[FailedJob]: ...

    @abstractmethod
    def get_failure(self, failure_id: int) -> Optional[FailedJob]: ...

    @abstractmethod
    def count_failures(self, since: Optional[datetime] = None) -> int: ...

    @abstractmethod
    def purge_failures(self, before: datetime) -> int: ...

    # --- History ---

    @abstractmethod
    def outcome_counts(
        self, job_type: Optional[str] = None, since: Optional[datetime] = None
    ) -> Dict[str, int]: ...

    @abstractmethod
    def purge_history(self, before: datetime) -> int: ...

    # --- Schedules ---

    @abstractmethod
    def get_schedule(self, name: str) -> Optional[ScheduleState]: ...

    @abstractmethod
    def arm_schedule(self, name: str, next_run_at: datetime) -> bool: ...

    @abstractmethod
    def advance_schedule(
        self,
        name: str,
        expected_next_run_at: datetime,
        next_run_at: datetime,
        last_run_at: Optional[datetime] = None,
    ) -> bool: ...

    @abstractmethod
    def disarm_schedule(self, name: str) -> None: ...
