"""Tests for the serialized discovery queue and the discovery executor."""
import asyncio

import pytest

from bookrelay.api.errors import NetworkError
from bookrelay.api.jobs.models import JobKind, JobStatus
from bookrelay.api.jobs.scheduler import DiscoveryQueueProcessor


@pytest.mark.asyncio
async def test_overlapping_ticks_run_one_job(runner, store, collaborators):
    collaborators.discovery.delay = 0.05
    a = await store.create(JobKind.discovery, None, {"term": "a"})
    b = await store.create(JobKind.discovery, None, {"term": "b"})
    proc = DiscoveryQueueProcessor(runner)

    first, second = await asyncio.gather(proc.tick(), proc.tick())

    assert first.id == a.id
    assert first.status == JobStatus.completed
    assert second is None
    assert (await store.get(b.id)).status == JobStatus.queued
    assert not proc.busy

    third = await proc.tick()
    assert third.id == b.id
    assert collaborators.discovery.calls == [("a", 3), ("b", 3)]


@pytest.mark.asyncio
async def test_empty_backlog(runner):
    proc = DiscoveryQueueProcessor(runner)
    assert await proc.tick() is None
    assert not proc.busy


@pytest.mark.asyncio
async def test_failed_search_marks_job_failed(runner, store, collaborators):
    collaborators.discovery.error = NetworkError("forum unreachable")
    rec = await store.create(JobKind.discovery, None, {"term": "a"})
    proc = DiscoveryQueueProcessor(runner)

    done = await proc.tick()
    assert done.status == JobStatus.failed
    assert done.error_message == "forum unreachable"
    assert not proc.busy
    assert (await store.get(rec.id)).completed_at is not None


@pytest.mark.asyncio
async def test_candidates_exclude_confirmed_and_duplicates(runner, store, library, subject, collaborators):
    await library.upsert_chapter(subject.id, "https://forum.example/t/1", number=1, title="第1章", content="x")
    collaborators.discovery.items = [
        {"url": "https://forum.example/t/1", "title": "第1章"},
        {"url": "https://forum.example/t/2", "title": "第2章"},
        {"url": "https://forum.example/t/2", "title": "第2章 重复"},
        {"url": "https://forum.example/t/3", "title": "第3章"},
    ]
    collaborators.discovery.pages = 2
    await store.create(JobKind.discovery, subject.id, {"term": subject.title, "page_limit": 5})

    done = await DiscoveryQueueProcessor(runner).tick()

    assert done.status == JobStatus.completed
    assert [c["url"] for c in done.result["candidates"]] == [
        "https://forum.example/t/2",
        "https://forum.example/t/3",
    ]
    assert done.result["total_found"] == 3
    assert done.result["new_count"] == 2
    assert done.result["pages_fetched"] == 2
    assert (await library.get_subject(subject.id)).last_searched_at is not None


@pytest.mark.asyncio
async def test_background_loop_drains_queue(runner, store, wait_for_status):
    proc = DiscoveryQueueProcessor(runner, interval=0.01)
    proc.start()
    assert proc.running
    try:
        rec = await store.create(JobKind.discovery, None, {"term": "a"})
        done = await wait_for_status(rec.id)
        assert done.status == JobStatus.completed
    finally:
        await proc.stop()
    assert not proc.running


@pytest.mark.asyncio
async def test_loop_survives_tick_errors(runner, monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) >= 2:
            proc._stopping = True

    proc = DiscoveryQueueProcessor(runner, interval=0.5, sleep=fake_sleep)

    async def broken_tick():
        raise RuntimeError("database is locked")

    monkeypatch.setattr(proc, "tick", broken_tick)
    await proc._loop()
    assert sleeps == [0.5, 0.5]
