# contentflow/common/job.py
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Optional, Dict, Any


@dataclass
class Job:
    """
    A unit of deferred work as it lives in the queue.

    Rows are created by ``JobStore.push`` and only ever mutated through the
    store's atomic operations. ``payload`` is the decoded document handed to
    the handler verbatim.
    """

    job_type: str
    payload: Dict[str, Any]

    id: Optional[int] = None
    priority: int = 0
    attempts: int = 0
    reserved_at: Optional[datetime] = None
    available_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def is_eligible(self, now: datetime, max_attempts: int) -> bool:
        return (
            self.reserved_at is None
            and self.available_at <= now
            and self.attempts < max_attempts
        )


@dataclass
class FailedJob:
    """An entry in the append-only failure log."""

    job_id: int
    job_type: str
    payload: Dict[str, Any]
    error_type: str
    error_message: str
    stack_trace: str
    attempts: int
    created_at: datetime
    failed_at: datetime
    id: Optional[int] = None


@dataclass
class QueueStats:
    total: int = 0
    pending: int = 0
    reserved: int = 0
    stuck_count: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "pending": self.pending,
            "reserved": self.reserved,
            "stuck_count": self.stuck_count,
            "by_type": dict(self.by_type),
        }


@dataclass
class ScheduleState:
    name: str
    next_run_at: datetime
    last_run_at: Optional[datetime] = None


# Outcomes recorded in the job history
OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_RETRIED = "retried"
OUTCOME_FAILED = "failed"

ALL_OUTCOMES = [OUTCOME_SUCCEEDED, OUTCOME_RETRIED, OUTCOME_FAILED]
