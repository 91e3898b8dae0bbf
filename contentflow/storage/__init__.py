from .base import JobStore
from .memory_storage import MemoryJobStore
from .sql_storage import SqlJobStore

__all__ = ["JobStore", "MemoryJobStore", "SqlJobStore"]
