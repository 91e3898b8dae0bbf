# contentflow/common/exceptions.py


class ContentFlowError(Exception):
    """Base exception for the ContentFlow library."""

    pass


class StorageError(ContentFlowError):
    """Raised when the job store is unreachable or a write fails."""

    pass


class HandlerError(ContentFlowError):
    """Raised when a job handler fails. Consumes one attempt."""

    pass


class JobTimeoutError(HandlerError):
    """Raised when a handler runs past the per-job timeout."""

    pass


class LeaseExpired(HandlerError):
    """Recorded for jobs whose reservation went stale and had no attempts left."""

    pass


class UnknownJobType(ContentFlowError):
    """Raised when no handler is bound to a job type. Never retried."""

    def __init__(self, job_type: str):
        super().__init__(f"Unknown job type: {job_type}")
        self.job_type = job_type


class ReservationConflict(ContentFlowError):
    """Raised when another worker claimed a job first."""

    def __init__(self, job_id):
        super().__init__(f"Job {job_id} was reserved by another worker")
        self.job_id = job_id


class ScheduleConfigError(ContentFlowError):
    """Raised when a recurrence spec or cron expression is malformed."""

    pass
