"""Admin endpoints exercised through the ASGI app against an in-memory pipeline."""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest

from launchpad.config import Settings, get_settings
from launchpad.main import app
from launchpad.pipeline import Pipeline, build_pipeline
from launchpad.storage.journey_repo import InMemoryJourneyRepository

HEADERS = {"X-Launchpad-Admin-Secret": "test-admin-secret"}


@pytest.fixture
async def pipeline(anyio_backend, settings: Settings, journey: InMemoryJourneyRepository) -> AsyncIterator[Pipeline]:
  # The queue is left stopped so enqueued jobs stay QUEUED.
  built = await build_pipeline(settings, journey=journey)
  yield built
  await built.shutdown()


@pytest.fixture
async def client(pipeline: Pipeline, settings: Settings) -> AsyncIterator[httpx.AsyncClient]:
  app.state.pipeline = pipeline
  app.dependency_overrides[get_settings] = lambda: settings
  transport = httpx.ASGITransport(app=app)
  async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
    yield http_client
  app.dependency_overrides.clear()
  app.state.pipeline = None


@pytest.mark.anyio
async def test_health_needs_no_secret(client: httpx.AsyncClient) -> None:
  response = await client.get("/health")
  assert response.status_code == 200
  assert response.json()["status"] == "ok"


@pytest.mark.anyio
async def test_admin_routes_require_secret(client: httpx.AsyncClient) -> None:
  assert (await client.get("/admin/jobs")).status_code == 403
  assert (await client.get("/admin/jobs", headers={"X-Launchpad-Admin-Secret": "wrong"})).status_code == 403


@pytest.mark.anyio
async def test_enqueue_get_and_cancel_job(client: httpx.AsyncClient) -> None:
  response = await client.post("/admin/jobs", json={"job_type": "GENERATE_BUSINESS_PLAN", "payload": {"clientId": "client-1"}, "priority": 3, "idempotency_key": "business-plan:client-1"}, headers=HEADERS)
  assert response.status_code == 202
  job_id = response.json()["job_id"]

  duplicate = await client.post("/admin/jobs", json={"job_type": "GENERATE_BUSINESS_PLAN", "payload": {"clientId": "client-1"}, "idempotency_key": "business-plan:client-1"}, headers=HEADERS)
  assert duplicate.json()["job_id"] == job_id

  job = (await client.get(f"/admin/jobs/{job_id}", headers=HEADERS)).json()
  assert job["status"] == "QUEUED"
  assert job["lane"] == "generation"
  assert job["priority"] == 3

  listed = (await client.get("/admin/jobs", params={"status": "QUEUED"}, headers=HEADERS)).json()
  assert listed["total"] == 1

  cancelled = await client.post(f"/admin/jobs/{job_id}/cancel", headers=HEADERS)
  assert cancelled.status_code == 200
  assert cancelled.json()["status"] == "CANCELLED"

  retried = await client.post(f"/admin/jobs/{job_id}/retry", headers=HEADERS)
  assert retried.json()["status"] == "QUEUED"
  assert retried.json()["attempts"] == 0


@pytest.mark.anyio
async def test_job_errors_map_to_status_codes(client: httpx.AsyncClient) -> None:
  missing = await client.get("/admin/jobs/does-not-exist", headers=HEADERS)
  assert missing.status_code == 404
  assert missing.json()["errorCode"] == "job_not_found"

  job_id = (await client.post("/admin/jobs", json={"job_type": "CLEANUP_CACHE"}, headers=HEADERS)).json()["job_id"]
  conflict = await client.post(f"/admin/jobs/{job_id}/retry", headers=HEADERS)
  assert conflict.status_code == 409
  assert conflict.json()["errorCode"] == "invalid_transition"

  invalid = await client.post("/admin/jobs", json={"job_type": "MINE_BITCOIN"}, headers=HEADERS)
  assert invalid.status_code == 422
  assert all("input" not in error for error in invalid.json()["detail"])


@pytest.mark.anyio
async def test_queue_metrics_report_backend(client: httpx.AsyncClient) -> None:
  await client.post("/admin/jobs", json={"job_type": "GENERATE_PDF", "payload": {"businessPlanId": "plan-1"}}, headers=HEADERS)

  body = (await client.get("/admin/queue/metrics", headers=HEADERS)).json()

  assert body["backend"] == "memory"
  assert body["lanes"]["rendering"]["waiting"] == 1


@pytest.mark.anyio
async def test_budget_lifecycle(client: httpx.AsyncClient, pipeline: Pipeline) -> None:
  configured = await client.put("/admin/budgets", json={"period": "DAILY", "token_limit": 1000, "auto_pause_at_limit": True}, headers=HEADERS)
  assert configured.status_code == 200
  assert configured.json()["tokenLimit"] == 1000

  await pipeline.budget.record_usage(600, 0.0)
  status = (await client.get("/admin/budgets", headers=HEADERS)).json()
  assert status["allowed"] is True
  assert status["budgets"]["DAILY"]["used"] == 600

  alerts = (await client.get("/admin/budgets/alerts", headers=HEADERS)).json()
  assert [alert["threshold"] for alert in alerts] == [50]

  paused = await client.post("/admin/budgets/DAILY/pause", json={"paused": True}, headers=HEADERS)
  assert paused.json()["isPaused"] is True
  assert (await client.get("/admin/budgets", headers=HEADERS)).json()["allowed"] is False

  reset = (await client.post("/admin/budgets/DAILY/reset", headers=HEADERS)).json()
  assert reset == {"period": "DAILY", "tokensUsed": 0, "isPaused": False}

  assert (await client.post("/admin/budgets/MONTHLY/reset", headers=HEADERS)).status_code == 404
  assert (await client.put("/admin/budgets", json={"period": "DAILY", "token_limit": -1}, headers=HEADERS)).status_code == 422


@pytest.mark.anyio
async def test_schedules_can_be_added_and_removed(client: httpx.AsyncClient) -> None:
  created = await client.post("/admin/schedules", json={"name": "hourly-cache", "pattern": "0 * * * *", "job_type": "CLEANUP_CACHE"}, headers=HEADERS)
  assert created.status_code == 201
  assert created.json() == {"name": "hourly-cache", "registered": True}

  names = [task["name"] for task in (await client.get("/admin/schedules", headers=HEADERS)).json()]
  assert names == ["hourly-cache"]

  rejected = await client.post("/admin/schedules", json={"name": "odd", "pattern": "7 3 * * 2", "job_type": "CLEANUP_CACHE"}, headers=HEADERS)
  assert rejected.status_code == 422
  assert rejected.json()["errorCode"] == "invalid_schedule"

  assert (await client.delete("/admin/schedules/hourly-cache", headers=HEADERS)).status_code == 200
  assert (await client.delete("/admin/schedules/hourly-cache", headers=HEADERS)).status_code == 404


@pytest.mark.anyio
async def test_cache_stats_and_usage(client: httpx.AsyncClient, pipeline: Pipeline) -> None:
  key = pipeline.cache.cache_key("hello", "model-a")
  await pipeline.cache.store(key, "world", model="model-a")

  stats = (await client.get("/admin/cache/stats", headers=HEADERS)).json()
  assert stats["total_entries"] == 1
  assert stats["cache_hit_rate"] == 0.0

  usage = (await client.get("/admin/usage/stats", headers=HEADERS)).json()
  assert usage["totalRequests"] == 0
