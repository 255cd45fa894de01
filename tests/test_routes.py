from uuid import uuid4

import pytest

from opsqueue.config.settings import get_settings
from opsqueue.v1.infra.jobs.models import JobStatus
from opsqueue.v1.infra.runs.tracker import RunTracker


@pytest.fixture
def secured(app, settings):
    """Require a trigger secret for the duration of the test."""
    app.dependency_overrides[get_settings] = lambda: settings.model_copy(
        update={"cron_secret": "s3cret"}
    )
    return {"Authorization": "Bearer s3cret"}


async def enqueue(async_client, *jobs):
    response = await async_client.post("/v1/jobs/batches", json={"jobs": list(jobs)})
    assert response.status_code == 200
    return response.json()["data"]


async def test_healthz(async_client):
    response = await async_client.get("/v1/healthz")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["ok"] is True
    assert data["environment"] == "test"
    assert data["database"]["connected"] is True
    assert data["queue"]["queue_depth"] == 0
    assert data["queue"]["oldest_due_age_seconds"] is None


async def test_enqueue_batch(async_client):
    data = await enqueue(
        async_client,
        {"job_type": "email_scan", "priority": 10},
        {"job_type": "score_ideas", "priority": 8},
    )

    assert len(data["job_ids"]) == 2
    assert data["correlation_id"]

    health = (await async_client.get("/v1/healthz")).json()["data"]
    assert health["queue"]["queue_depth"] == 2


async def test_enqueue_rejects_invalid_batches(async_client):
    empty = await async_client.post("/v1/jobs/batches", json={"jobs": []})
    blank = await async_client.post(
        "/v1/jobs/batches", json={"jobs": [{"job_type": ""}]}
    )

    assert empty.status_code == 422
    assert blank.status_code == 422


async def test_enqueue_preset(async_client):
    response = await async_client.post("/v1/jobs/batches/morning")

    assert response.status_code == 200
    assert len(response.json()["data"]["job_ids"]) == 5


async def test_unknown_preset_is_404(async_client):
    response = await async_client.post("/v1/jobs/batches/midnight")

    assert response.status_code == 404
    body = response.json()
    assert body["ok"] is False
    assert body["error"]["details"]["available"] == ["evening", "morning"]


async def test_worker_run(async_client, registry, recording_handler):
    registry.register("email_scan", recording_handler())
    await enqueue(async_client, {"job_type": "email_scan"}, {"job_type": "missing"})

    response = await async_client.post("/v1/worker/run", json={"batch_size": 10})

    assert response.status_code == 200
    report = response.json()["data"]
    assert report["claimed"] == 2
    assert report["succeeded"] == 1
    assert report["dead"] == 1
    assert report["skipped_budget"] is False
    assert {o["outcome"] for o in report["outcomes"]} == {"succeeded", "dead"}


async def test_worker_run_without_body(async_client):
    response = await async_client.post("/v1/worker/run")

    assert response.status_code == 200
    assert response.json()["data"]["claimed"] == 0


async def test_worker_reap(async_client):
    response = await async_client.post("/v1/worker/reap")

    assert response.status_code == 200
    assert response.json()["data"] == {"requeued": 0, "dead": 0, "job_ids": []}


@pytest.mark.parametrize(
    "path",
    ["/v1/jobs/batches/morning", "/v1/worker/run", "/v1/worker/reap"],
)
async def test_triggers_require_secret(async_client, secured, path):
    missing = await async_client.post(path)
    wrong = await async_client.post(path, headers={"Authorization": "Bearer nope"})

    assert missing.status_code == 401
    assert wrong.status_code == 401


async def test_trigger_accepts_secret(async_client, secured):
    response = await async_client.post("/v1/jobs/batches/evening", headers=secured)

    assert response.status_code == 200


async def test_reads_do_not_require_secret(async_client, secured):
    response = await async_client.get("/v1/jobs")

    assert response.status_code == 200


async def test_list_and_get_jobs(async_client):
    batch = await enqueue(async_client, {"job_type": "a"}, {"job_type": "b"})

    listed = (await async_client.get("/v1/jobs", params={"job_type": "a"})).json()
    assert listed["data"]["total"] == 1

    by_batch = await async_client.get(
        "/v1/jobs", params={"correlation_id": batch["correlation_id"]}
    )
    assert by_batch.json()["data"]["total"] == 2

    job_id = batch["job_ids"][0]
    job = (await async_client.get(f"/v1/jobs/{job_id}")).json()["data"]
    assert job["id"] == job_id
    assert job["status"] == JobStatus.PENDING.value
    assert job["correlation_id"] == batch["correlation_id"]


async def test_get_missing_job_is_404(async_client):
    response = await async_client.get(f"/v1/jobs/{uuid4()}")

    assert response.status_code == 404
    body = response.json()
    assert body["ok"] is False
    assert body["error"]["code"] == 404
    assert body["request_id"] == response.headers["X-Request-ID"]


async def test_unknown_route_uses_error_envelope(async_client):
    response = await async_client.get("/v1/nowhere", headers={"X-Request-ID": "req-1"})

    assert response.status_code == 404
    body = response.json()
    assert body["ok"] is False
    assert body["error"]["message"] == "Not Found"
    assert body["request_id"] == "req-1"
    assert response.headers["X-Request-ID"] == "req-1"


async def test_wrong_method_uses_error_envelope(async_client):
    response = await async_client.delete("/v1/jobs/stats/overview")

    assert response.status_code == 405
    assert response.json()["error"]["code"] == 405


async def test_stats_and_correlation(async_client):
    batch = await enqueue(async_client, {"job_type": "a"}, {"job_type": "a"})

    stats = (await async_client.get("/v1/jobs/stats/overview")).json()["data"]
    assert stats["by_type"] == {"a": 2}
    assert stats["queue_depth"] == 2

    summary = await async_client.get(
        f"/v1/jobs/correlations/{batch['correlation_id']}"
    )
    assert summary.json()["data"]["by_status"] == {"pending": 2}

    missing = await async_client.get(f"/v1/jobs/correlations/{uuid4()}")
    assert missing.status_code == 404


async def test_requeue_via_api(async_client):
    batch = await enqueue(async_client, {"job_type": "missing"})
    job_id = batch["job_ids"][0]
    await async_client.post("/v1/worker/run")

    response = await async_client.post(f"/v1/jobs/{job_id}/requeue")
    assert response.status_code == 200
    assert response.json()["data"]["status"] == JobStatus.PENDING.value

    again = await async_client.post(f"/v1/jobs/{job_id}/requeue")
    assert again.status_code == 422


async def test_runs_endpoints(async_client, database, settings):
    tracker = RunTracker(database, settings)
    handle = await tracker.start("lead_finder")
    handle.record_success("search")
    await handle.finish()

    listed = (await async_client.get("/v1/runs", params={"kind": "lead_finder"})).json()
    assert listed["data"]["total"] == 1
    assert listed["data"]["runs"][0]["status"] == "success"

    run = await async_client.get(f"/v1/runs/{handle.run_id}")
    assert run.json()["data"]["stats"]["steps"]["search"]["succeeded"] == 1

    missing = await async_client.get(f"/v1/runs/{uuid4()}")
    assert missing.status_code == 404


async def test_activity_endpoint(async_client, registry, recording_handler):
    registry.register("x", recording_handler())
    batch = await enqueue(async_client, {"job_type": "x"})
    await async_client.post("/v1/worker/run")

    response = await async_client.get(
        "/v1/activity", params={"action": "batch_enqueued"}
    )
    data = response.json()["data"]
    assert data["count"] == 1
    assert data["entries"][0]["entity_id"] == batch["correlation_id"]

    sweeps = await async_client.get("/v1/activity", params={"entity_type": "worker"})
    assert sweeps.json()["data"]["entries"][0]["action"] == "sweep_completed"
