# contentflow/execution/registry.py
import logging
from abc import ABC, abstractmethod
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Union

from contentflow.common.exceptions import UnknownJobType

logger = logging.getLogger(__name__)


class JobHandler(ABC):
    """A handler for one job type. Plain callables are wrapped in FunctionHandler."""

    @abstractmethod
    def handle(self, payload: Dict[str, Any]) -> Any: ...


class FunctionHandler(JobHandler):
    def __init__(self, func: Callable[[Dict[str, Any]], Any]):
        self.func = func

    def handle(self, payload: Dict[str, Any]) -> Any:
        return self.func(payload)

    def __repr__(self) -> str:
        return f"FunctionHandler({getattr(self.func, '__qualname__', self.func)!r})"


HandlerLike = Union[JobHandler, Callable[[Dict[str, Any]], Any]]
Resolver = Callable[[str], Optional[HandlerLike]]


def as_handler(handler: HandlerLike) -> JobHandler:
    if isinstance(handler, JobHandler):
        return handler
    if callable(handler):
        return FunctionHandler(handler)
    raise TypeError(f"Handler must be callable or a JobHandler, got {handler!r}")


class HandlerRegistry:
    """
    Maps job types to handlers.

    Job types with no registered handler are offered to the resolvers in
    registration order; the first non-None answer wins. If nobody claims the
    type, ``resolve`` raises ``UnknownJobType``.
    """

    def __init__(self):
        self._handlers: Dict[str, JobHandler] = {}
        self._resolvers: List[Resolver] = []
        self._lock = RLock()

    def register(self, job_type: str, handler: HandlerLike) -> None:
        with self._lock:
            if job_type in self._handlers:
                logger.warning(f"Replacing handler for job type {job_type}")
            self._handlers[job_type] = as_handler(handler)

    def handler(self, job_type: str):
        """Decorator form of ``register``."""

        def decorator(func):
            self.register(job_type, func)
            return func

        return decorator

    def unregister(self, job_type: str) -> None:
        with self._lock:
            self._handlers.pop(job_type, None)

    def add_resolver(self, resolver: Resolver) -> None:
        with self._lock:
            self._resolvers.append(resolver)

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers

    @property
    def job_types(self) -> List[str]:
        return sorted(self._handlers)

    def resolve(self, job_type: str) -> JobHandler:
        with self._lock:
            handler = self._handlers.get(job_type)
            resolvers = list(self._resolvers)
        if handler is not None:
            return handler
        for resolver in resolvers:
            found = resolver(job_type)
            if found is not None:
                logger.debug(f"Job type {job_type} resolved by {resolver!r}")
                return as_handler(found)
        raise UnknownJobType(job_type)
