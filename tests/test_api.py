"""Tests for the HTTP control surface.

The app runs on an aiohttp TestServer with a JobManager wired to the fake
web from conftest; no outbound requests are made.
"""

from __future__ import annotations

import pytest
from aiohttp.test_utils import TestClient, TestServer

from crawljobs.api.server import JOB_MANAGER_KEY, create_app
from crawljobs.crawler.job_manager import JobManager
from crawljobs.utils.config import Config, CrawlerConfig
from crawljobs.utils.monitoring import CrawlerMetrics


def job_body(job_id="j1", **overrides) -> dict:
    config = {
        "seed_urls": ["https://a.test/"],
        "max_pages": 5,
        "max_depth": 1,
        "rate_per_second": 1000,
    }
    config.update(overrides)
    return {"job_id": job_id, "config": config}


async def make_client(web, metrics_enabled=True) -> TestClient:
    metrics = CrawlerMetrics(enabled=metrics_enabled)
    manager = JobManager(CrawlerConfig(), fetcher_factory=web.factory, metrics=metrics)
    app = create_app(Config(), job_manager=manager, metrics_collector=metrics)
    client = TestClient(TestServer(app))
    await client.start_server()
    return client


@pytest.fixture()
async def client(web):
    web.add("https://a.test/", ["https://a.test/b"])
    web.add("https://a.test/b")
    test_client = await make_client(web)
    yield test_client
    await test_client.close()


async def finished(client, job_id):
    return await client.app[JOB_MANAGER_KEY].wait(job_id, timeout=5)


class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/api/v1/health")

        assert resp.status == 200
        assert await resp.json() == {"status": "ok"}


class TestCreateJob:
    async def test_accepted(self, client):
        resp = await client.post("/api/v1/jobs", json=job_body())

        assert resp.status == 202
        assert await resp.json() == {"job_id": "j1", "status": "queued"}

    async def test_duplicate_id_conflicts(self, client):
        await client.post("/api/v1/jobs", json=job_body())
        resp = await client.post("/api/v1/jobs", json=job_body())

        assert resp.status == 409
        assert (await resp.json())["error"] == "duplicate_job_id"

    @pytest.mark.parametrize("overrides", [
        {"max_pages": 0},
        {"seed_urls": []},
        {"rate_per_second": 0},
    ])
    async def test_invalid_config(self, client, overrides):
        resp = await client.post("/api/v1/jobs", json=job_body(**overrides))

        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid_config"

    async def test_malformed_json(self, client):
        resp = await client.post("/api/v1/jobs", data="{not json",
                                 headers={"Content-Type": "application/json"})

        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid_request"

    @pytest.mark.parametrize("body", [[], {"job_id": "x"}, {"job_id": 7, "config": {}}])
    async def test_malformed_body(self, client, body):
        resp = await client.post("/api/v1/jobs", json=body)

        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid_request"

    async def test_job_id_is_generated_when_omitted(self, client):
        body = job_body()
        del body["job_id"]

        resp = await client.post("/api/v1/jobs", json=body)

        assert resp.status == 202
        assert (await resp.json())["job_id"]


class TestStatus:
    async def test_unknown_job(self, client):
        resp = await client.get("/api/v1/jobs/missing/status")

        assert resp.status == 404
        assert (await resp.json())["error"] == "job_not_found"

    async def test_completed_job_reports_stats(self, client):
        await client.post("/api/v1/jobs", json=job_body())
        await finished(client, "j1")

        resp = await client.get("/api/v1/jobs/j1/status")
        data = await resp.json()

        assert resp.status == 200
        assert data["job_id"] == "j1"
        assert data["status"] == "completed"
        assert data["stats"]["pages_fetched"] == 2
        assert data["stats"]["links_discovered"] == 1
        assert data["stats"]["errors"] == 0
        assert data["stats"]["started_at"]
        assert data["stats"]["finished_at"]

    async def test_unfinished_job_has_no_finished_at(self, client, web):
        web.delay = 0.2
        await client.post("/api/v1/jobs", json=job_body())

        resp = await client.get("/api/v1/jobs/j1/status")
        data = await resp.json()

        assert data["status"] in ("pending", "running")
        assert "finished_at" not in data["stats"]


class TestCancel:
    async def test_cancel_running_job(self, client, web):
        web.delay = 0.2
        await client.post("/api/v1/jobs", json=job_body())

        resp = await client.post("/api/v1/jobs/j1/cancel")

        assert resp.status == 200
        assert await resp.json() == {"job_id": "j1", "status": "cancelled"}
        assert (await finished(client, "j1")).status.value == "cancelled"

    async def test_cancel_unknown_job(self, client):
        resp = await client.post("/api/v1/jobs/missing/cancel")

        assert resp.status == 404
        assert (await resp.json())["error"] == "job_not_found"

    async def test_cancel_finished_job_keeps_its_status(self, client):
        await client.post("/api/v1/jobs", json=job_body())
        await finished(client, "j1")

        resp = await client.post("/api/v1/jobs/j1/cancel")

        assert resp.status == 200
        assert await resp.json() == {"job_id": "j1", "status": "completed"}


class TestMetrics:
    async def test_metrics_exposed(self, client):
        await client.post("/api/v1/jobs", json=job_body())
        await finished(client, "j1")

        resp = await client.get("/metrics")
        text = await resp.text()

        assert resp.status == 200
        assert 'crawler_jobs_total{status="completed"} 1.0' in text
        assert "crawler_active_jobs 0.0" in text

    async def test_metrics_disabled(self, web):
        test_client = await make_client(web, metrics_enabled=False)
        try:
            resp = await test_client.get("/metrics")
            assert resp.status == 404
        finally:
            await test_client.close()
