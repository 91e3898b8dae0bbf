import pytest

from contentflow import ContentFlow, QueueConfig
from contentflow.storage.memory_storage import MemoryJobStore


def make_flow():
    return ContentFlow(QueueConfig(poll_interval=0.01), store=MemoryJobStore(), probes=[])


def test_fastapi_lifespan_runs_worker():
    fastapi = pytest.importorskip("fastapi")
    from fastapi import Depends
    from fastapi.testclient import TestClient

    from contentflow.client import QueueClient
    from contentflow.integrations.fastapi import (
        add_contentflow_to_fastapi,
        get_contentflow_client,
    )

    flow = make_flow()
    plugin_holder = {}

    def lifespan(app):
        return plugin_holder["plugin"].lifespan(app)

    app = fastapi.FastAPI(lifespan=lifespan)
    plugin = add_contentflow_to_fastapi(app, flow).run_worker_in_background()
    plugin_holder["plugin"] = plugin

    @app.post("/jobs")
    def create_job(client: QueueClient = Depends(get_contentflow_client)):
        return {"id": client.push("generate_content", {"topic": "x"})}

    with TestClient(app) as http:
        assert plugin.worker.running
        response = http.post("/jobs")
        assert response.status_code == 200
        job_id = response.json()["id"]

    assert not plugin.worker.running
    assert flow.client.get_job(job_id) is not None


def test_litestar_app_options():
    pytest.importorskip("litestar")
    from litestar import Litestar, get
    from litestar.testing import TestClient

    from contentflow.client import QueueClient
    from contentflow.integrations.litestar import contentflow_app_options

    flow = make_flow()

    @get("/stats", sync_to_thread=False)
    def stats(contentflow_client: QueueClient) -> dict:
        contentflow_client.push("generate_content", {"topic": "x"})
        return contentflow_client.stats().to_dict()

    app = Litestar(route_handlers=[stats], **contentflow_app_options(flow))

    with TestClient(app=app) as http:
        assert app.state.contentflow is flow
        response = http.get("/stats")
        assert response.status_code == 200
        assert response.json()["total"] == 1
