from .client import QueueClient
from .common.exceptions import (
    ContentFlowError,
    HandlerError,
    JobTimeoutError,
    LeaseExpired,
    ReservationConflict,
    ScheduleConfigError,
    StorageError,
    UnknownJobType,
)
from .common.job import FailedJob, Job, QueueStats
from .config import QueueConfig
from .execution.registry import FunctionHandler, HandlerRegistry, JobHandler
from .runtime import ContentFlow, build_store
from .server.dispatcher import Dispatcher, DispatchReport
from .server.worker import Worker

__all__ = [
    "ContentFlow",
    "ContentFlowError",
    "DispatchReport",
    "Dispatcher",
    "FailedJob",
    "FunctionHandler",
    "HandlerError",
    "HandlerRegistry",
    "Job",
    "JobHandler",
    "JobTimeoutError",
    "LeaseExpired",
    "QueueClient",
    "QueueConfig",
    "QueueStats",
    "ReservationConflict",
    "ScheduleConfigError",
    "StorageError",
    "UnknownJobType",
    "Worker",
    "build_store",
]
