# contentflow/execution/performer.py
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Dict, Optional

from contentflow.common.exceptions import HandlerError, JobTimeoutError
from contentflow.execution.registry import JobHandler


def perform_job(
    handler: JobHandler, payload: Dict[str, Any], timeout: Optional[float] = None
) -> Any:
    """Run a handler, enforcing the per-job timeout.

    A handler returning ``False`` reports failure and raises ``HandlerError``.
    On timeout the handler thread is abandoned, not interrupted.
    """
    if timeout is None:
        result = handler.handle(payload)
    else:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="contentflow-job")
        future = executor.submit(handler.handle, payload)
        try:
            result = future.result(timeout=timeout)
        except FutureTimeout:
            if future.done():
                # The handler itself raised TimeoutError.
                raise
            raise JobTimeoutError(f"Handler exceeded timeout of {timeout}s") from None
        finally:
            executor.shutdown(wait=False)

    if result is False:
        raise HandlerError("Handler reported failure")
    return result
