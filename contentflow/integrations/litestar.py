"""Litestar integration helpers for ContentFlow."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

try:
    from litestar import Litestar
    from litestar.datastructures import State
    from litestar.di import Provide
except ImportError as exc:  # pragma: no cover - optional dependency
    raise ImportError(
        "Litestar integration requires 'litestar'. Install with `pip install contentflow[litestar]`."
    ) from exc

from contentflow.client import QueueClient
from contentflow.runtime import ContentFlow
from contentflow.server.worker import Worker


def get_contentflow_client(state: State) -> QueueClient:
    return state.contentflow_client


def contentflow_dependency() -> Provide:
    return Provide(get_contentflow_client, sync_to_thread=False)


def configure_contentflow(app: Litestar, flow: ContentFlow) -> QueueClient:
    app.state.contentflow = flow
    app.state.contentflow_client = flow.client
    return flow.client


def contentflow_app_options(
    flow: ContentFlow, run_worker: bool = True, **worker_options
) -> Dict[str, Any]:
    """
    Keyword arguments for ``Litestar(...)`` that expose the client as the
    ``contentflow_client`` dependency and tie the worker to the app lifecycle.
    """
    worker: Optional[Worker] = flow.worker(**worker_options) if run_worker else None

    def on_startup(app: Litestar) -> None:
        configure_contentflow(app, flow)
        if worker:
            worker.start()

    def on_shutdown(app: Litestar) -> None:
        if worker:
            worker.stop(timeout=10)

    startup: List[Any] = [on_startup]
    shutdown: List[Any] = [on_shutdown]
    return {
        "on_startup": startup,
        "on_shutdown": shutdown,
        "dependencies": {"contentflow_client": contentflow_dependency()},
    }
