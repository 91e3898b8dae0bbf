"""FastAPI integration helpers for ContentFlow."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

try:
    from fastapi import FastAPI, Request
except ImportError as exc:  # pragma: no cover - optional dependency
    raise ImportError(
        "FastAPI integration requires 'fastapi'. Install with `pip install contentflow[fastapi]`."
    ) from exc

from contentflow.client import QueueClient
from contentflow.runtime import ContentFlow
from contentflow.server.worker import Worker


class ContentFlowFastAPIPlugin:
    def __init__(self, app: FastAPI, flow: ContentFlow):
        self.app = app
        self.flow = flow
        self.worker: Optional[Worker] = None

        app.state.contentflow = flow
        app.state.contentflow_client = flow.client

    def get_client(self) -> QueueClient:
        return self.flow.client

    def run_worker_in_background(self, **worker_options) -> "ContentFlowFastAPIPlugin":
        self.worker = self.flow.worker(**worker_options)
        return self

    def startup(self) -> None:
        if self.worker:
            self.worker.start()

    def shutdown(self) -> None:
        if self.worker:
            self.worker.stop(timeout=10)

    @asynccontextmanager
    async def lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        self.startup()
        try:
            yield
        finally:
            self.shutdown()


def add_contentflow_to_fastapi(app: FastAPI, flow: ContentFlow) -> ContentFlowFastAPIPlugin:
    return ContentFlowFastAPIPlugin(app, flow)


def get_contentflow_client(request: Request) -> QueueClient:
    """Dependency: ``client: QueueClient = Depends(get_contentflow_client)``."""
    return request.app.state.contentflow_client
