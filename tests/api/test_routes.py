"""HTTP-level tests for the job, subject, operation, config and system routes."""
import dataclasses

import pytest

from bookrelay import config
from bookrelay.api.jobs.models import JobStatus


async def _create_subject(client, title="诡秘之主"):
    resp = await client.post("/api/subjects", json={"title": title, "auto_search": True})
    assert resp.status_code == 201
    return resp.json()["data"]


@pytest.mark.asyncio
async def test_subject_crud(client):
    subject = await _create_subject(client)
    assert subject["auto_search"] is True

    dup = await client.post("/api/subjects", json={"title": "诡秘之主"})
    assert dup.status_code == 409

    listed = await client.get("/api/subjects")
    assert listed.json()["meta"]["total"] == 1

    detail = await client.get(f"/api/subjects/{subject['id']}")
    body = detail.json()["data"]
    assert body["chapters"] == []
    assert body["chunk_count"] == 0

    missing = await client.get("/api/subjects/999")
    assert missing.status_code == 404
    assert missing.json()["ok"] is False


@pytest.mark.asyncio
async def test_create_and_get_job(client):
    subject = await _create_subject(client)
    resp = await client.post("/api/jobs", json={
        "kind": "discovery",
        "subject_id": subject["id"],
        "payload": {"term": subject["title"]},
    })
    assert resp.status_code == 201
    job = resp.json()["data"]
    assert job["status"] == "queued"
    assert job["payload"]["kind"] == "discovery"

    fetched = await client.get(f"/api/jobs/{job['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["data"]["id"] == job["id"]

    dup = await client.post("/api/jobs", json={
        "kind": "discovery",
        "subject_id": subject["id"],
        "payload": {"term": subject["title"]},
    })
    assert dup.status_code == 409


@pytest.mark.asyncio
async def test_list_jobs_filters(client):
    subject = await _create_subject(client)
    await client.post("/api/jobs", json={"kind": "discovery", "subject_id": subject["id"], "payload": {"term": "a"}})
    await client.post("/api/jobs", json={"kind": "external_sync", "payload": {"job_subtype": "sync_all"}})

    resp = await client.get("/api/jobs", params={"kind": "discovery"})
    data = resp.json()
    assert data["meta"]["total"] == 1
    assert data["data"][0]["kind"] == "discovery"


@pytest.mark.asyncio
async def test_bad_requests(client):
    no_subject = await client.post("/api/jobs", json={"kind": "fetch", "payload": {"items": []}})
    assert no_subject.status_code == 422

    bad_kind = await client.post("/api/jobs", json={"kind": "scrape"})
    assert bad_kind.status_code == 422

    missing = await client.get("/api/jobs/nope")
    assert missing.status_code == 404
    assert "nope" in missing.json()["error"]

    stream_missing = await client.get("/api/jobs/nope/stream")
    assert stream_missing.status_code == 404


@pytest.mark.asyncio
async def test_retry_and_delete(client, store):
    subject = await _create_subject(client)
    job = (await client.post("/api/jobs", json={
        "kind": "discovery", "subject_id": subject["id"], "payload": {"term": "a"},
    })).json()["data"]

    not_failed = await client.post(f"/api/jobs/{job['id']}/retry")
    assert not_failed.status_code == 409

    await store.claim(job["id"])
    await store.update_fields(job["id"], status=JobStatus.failed, error_message="forum unreachable")
    retried = await client.post(f"/api/jobs/{job['id']}/retry")
    assert retried.status_code == 201
    assert retried.json()["data"]["retried_from"] == job["id"]

    deleted = await client.delete(f"/api/jobs/{job['id']}")
    assert deleted.status_code == 200
    assert (await client.get(f"/api/jobs/{job['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_confirm_upload(client, runner, tmp_path):
    upload = tmp_path / "book.txt"
    upload.write_text("第1章 开端\n正文\n", encoding="utf-8")
    job = (await client.post("/api/jobs", json={
        "kind": "manual_ingest",
        "payload": {"file_path": str(upload), "original_name": "book.txt"},
    })).json()["data"]
    assert job["status"] == "waiting_for_input"

    resp = await client.post(f"/api/jobs/{job['id']}/confirm", json={"metadata": {"title": "开端"}})
    assert resp.status_code == 200
    await runner.join()
    done = (await client.get(f"/api/jobs/{job['id']}")).json()["data"]
    assert done["status"] == "completed"


@pytest.mark.asyncio
async def test_operations_snapshot(client, registry):
    registry.register("fetch", "abc", {"total": 4})
    resp = await client.get("/api/operations")
    data = resp.json()["data"]
    assert data["is_active"] is True
    assert data["summary"]["byType"]["fetch"]["active"] == 1
    assert data["operations"][0]["id"] == "abc"
    assert data["discovery_busy"] is False

    summary = await client.get("/api/operations/summary")
    assert summary.json()["data"]["total"] == 1


@pytest.mark.asyncio
async def test_health_and_cleanup(client):
    health = await client.get("/api/health")
    assert health.status_code == 200
    assert health.json()["data"]["status"] == "ok"

    cleanup = await client.post("/api/cleanup")
    assert cleanup.json()["data"]["total"] == 0


@pytest.mark.asyncio
async def test_auto_discovery_trigger(client, monkeypatch):
    monkeypatch.setattr(config, "AUTO_DISCOVERY_ENABLED", False)
    resp = await client.post("/api/auto-discovery/check")
    assert resp.json()["data"] == {"created": [], "count": 0}


@pytest.mark.asyncio
async def test_config_get_and_patch(client, monkeypatch):
    monkeypatch.setattr(config, "JOB_RETENTION_DAYS", 14)

    current = await client.get("/api/config")
    assert current.json()["data"]["JOB_RETENTION_DAYS"] == 14

    patched = await client.patch("/api/config", json={"JOB_RETENTION_DAYS": "30"})
    assert patched.status_code == 200
    assert patched.json()["data"]["JOB_RETENTION_DAYS"] == 30

    unknown = await client.patch("/api/config", json={"CHUNK_SIZE_LINES": 10})
    assert unknown.status_code == 422
    out_of_range = await client.patch("/api/config", json={"JOB_RETENTION_DAYS": 0})
    assert out_of_range.status_code == 422
    assert config.JOB_RETENTION_DAYS == 30

    validation = await client.get("/api/config/validate")
    assert validation.json()["data"]["errors"] == 0


@pytest.fixture
async def secured_client(services):
    from httpx import ASGITransport, AsyncClient

    from bookrelay.api.main import create_app

    settings = services.settings.model_copy(update={"auth_enabled": True, "api_token": "s3cret"})
    app = create_app(services=dataclasses.replace(services, settings=settings))
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


@pytest.mark.asyncio
async def test_mutations_require_token(secured_client):
    denied = await secured_client.post("/api/subjects", json={"title": "甲"})
    assert denied.status_code == 401

    wrong = await secured_client.post(
        "/api/subjects", json={"title": "甲"}, headers={"Authorization": "Bearer nope"},
    )
    assert wrong.status_code == 401

    allowed = await secured_client.post(
        "/api/subjects", json={"title": "甲"}, headers={"Authorization": "Bearer s3cret"},
    )
    assert allowed.status_code == 201

    via_key = await secured_client.post(
        "/api/subjects", json={"title": "乙"}, headers={"X-API-Key": "s3cret"},
    )
    assert via_key.status_code == 201

    assert (await secured_client.get("/api/subjects")).status_code == 200
