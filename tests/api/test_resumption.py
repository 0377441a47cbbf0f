"""Tests for startup recovery of interrupted jobs."""
import pytest

from bookrelay.api.jobs.models import JobKind, JobStatus
from bookrelay.api.jobs.resumption import ResumptionService


async def _interrupted_fetch(store, subject_id, items, **extra):
    rec = await store.create(JobKind.fetch, subject_id, {"items": items, **extra})
    await store.claim(rec.id)
    await store.update_fields(rec.id, progress={"completed_count": 3})
    return rec


async def _confirm(library, subject_id, items):
    for item in items:
        await library.upsert_chapter(subject_id, item["url"], number=item["number"], title=item["title"], content="x")


@pytest.mark.asyncio
async def test_fetch_with_nothing_confirmed_retries_all(runner, store, subject, collaborators, make_items):
    items = make_items(10)
    rec = await _interrupted_fetch(store, subject.id, items)

    summary = await ResumptionService(runner).run()
    assert summary["resumed"] == [rec.id]

    resumed = await store.get(rec.id)
    assert len(resumed.payload.items) == 10
    assert resumed.progress.total_count == 10

    await runner.join()
    done = await store.get(rec.id)
    assert done.status == JobStatus.completed
    assert done.result["completed"] == 10
    assert len(collaborators.fetcher.calls) == 10


@pytest.mark.asyncio
async def test_fetch_resumes_only_remaining_chapters(runner, store, library, subject, collaborators, make_items):
    items = make_items(10)
    await _confirm(library, subject.id, items[:6])
    rec = await _interrupted_fetch(store, subject.id, items)

    await ResumptionService(runner).run()

    resumed = await store.get(rec.id)
    assert [i.url for i in resumed.payload.items] == [i["url"] for i in items[6:]]
    assert resumed.progress.total_count == 4

    await runner.join()
    done = await store.get(rec.id)
    assert done.status == JobStatus.completed
    assert done.result["total"] == 4
    assert sorted(collaborators.fetcher.calls) == sorted(i["url"] for i in items[6:])


@pytest.mark.asyncio
async def test_fully_confirmed_fetch_completes_without_downloading(runner, store, library, subject, collaborators, make_items):
    items = make_items(10)
    await _confirm(library, subject.id, items)
    rec = await _interrupted_fetch(store, subject.id, items)

    summary = await ResumptionService(runner).run()

    assert summary["completed"] == [rec.id]
    assert runner.pending_count == 0
    done = await store.get(rec.id)
    assert done.status == JobStatus.completed
    assert done.result["resumed"] is True
    assert (done.progress.completed_count, done.progress.failed_count, done.progress.total_count) == (10, 0, 10)
    assert collaborators.fetcher.calls == []


@pytest.mark.asyncio
async def test_fetch_with_missing_source_file_fails(runner, store, subject, tmp_path, make_items):
    rec = await _interrupted_fetch(store, subject.id, make_items(3), source_file=str(tmp_path / "gone.json"))

    summary = await ResumptionService(runner).run()

    assert summary["failed"] == [rec.id]
    done = await store.get(rec.id)
    assert done.status == JobStatus.failed
    assert "gone.json" in done.error_message


@pytest.mark.asyncio
async def test_discovery_is_requeued_for_the_queue(runner, store):
    rec = await store.create(JobKind.discovery, None, {"term": "x"})
    await store.claim(rec.id)

    summary = await ResumptionService(runner).run()

    assert summary["resumed"] == [rec.id]
    requeued = await store.get(rec.id)
    assert requeued.status == JobStatus.queued
    assert requeued.started_at is None
    assert runner.pending_count == 0


@pytest.mark.asyncio
async def test_queued_dispatch_jobs_are_started(runner, store, subject, make_items):
    rec = await store.create(JobKind.fetch, subject.id, {"items": make_items(2)})

    summary = await ResumptionService(runner).run()
    assert rec.id in summary["resumed"]

    await runner.join()
    assert (await store.get(rec.id)).status == JobStatus.completed


@pytest.mark.asyncio
async def test_ingest_with_missing_upload_fails(runner, store, tmp_path):
    processing = await store.create(JobKind.manual_ingest, None, {
        "file_path": str(tmp_path / "a.txt"),
        "original_name": "a.txt",
        "metadata": {"title": "A"},
    })
    await store.claim(processing.id)
    waiting = await store.create(
        JobKind.manual_ingest, None, {"file_path": str(tmp_path / "b.txt"), "original_name": "b.txt"},
        status=JobStatus.waiting_for_input,
    )

    summary = await ResumptionService(runner).run()

    assert sorted(summary["failed"]) == sorted([processing.id, waiting.id])
    assert (await store.get(processing.id)).status == JobStatus.failed
    assert "b.txt" in (await store.get(waiting.id)).error_message


@pytest.mark.asyncio
async def test_rechunk_restarts_from_scratch(runner, store, library, subject):
    await library.upsert_chapter(subject.id, "u1", number=1, title="第1章", content="一\n二")
    rec = await store.create(JobKind.rechunk, subject.id, {"chunk_size": 2})
    await store.claim(rec.id)

    await ResumptionService(runner).run()
    await runner.join()

    done = await store.get(rec.id)
    assert done.status == JobStatus.completed
    assert done.result["total_chunks"] == len(await library.list_chunks(subject.id))


def _record_dispatches(runner, monkeypatch):
    dispatched = []
    real = runner.dispatch

    def _dispatch(job):
        dispatched.append(job)
        return real(job)

    monkeypatch.setattr(runner, "dispatch", _dispatch)
    return dispatched


async def _chunked_subject(library, runner, store, title, *, sync_enabled=True):
    subject = await library.create_subject(title, sync_enabled=sync_enabled)
    await library.upsert_chapter(subject.id, f"{title}-1", number=1, title="第1章", content="一\n二\n三")
    await runner.run((await store.create(JobKind.rechunk, subject.id, {"chunk_size": 2})).id)
    return subject


@pytest.mark.asyncio
async def test_interrupted_sync_jobs_rerun_by_subtype(runner, store, library, collaborators, monkeypatch):
    first = await _chunked_subject(library, runner, store, "甲")
    second = await _chunked_subject(library, runner, store, "乙")
    sync_all = await store.create(JobKind.external_sync, None, {"job_subtype": "sync_all"})
    recreate = await store.create(JobKind.external_sync, first.id, {"job_subtype": "recreate_subject"})
    for rec in (sync_all, recreate):
        await store.claim(rec.id)
    dispatched = _record_dispatches(runner, monkeypatch)

    summary = await ResumptionService(runner).run()

    assert sorted(summary["resumed"]) == sorted([sync_all.id, recreate.id])
    assert {job.id for job in dispatched} == {sync_all.id, recreate.id}
    for job in dispatched:
        assert job.status == JobStatus.queued
        assert job.started_at is None

    await runner.join()
    all_done = await store.get(sync_all.id)
    assert all_done.status == JobStatus.completed
    assert all_done.started_at is not None
    assert all_done.result["job_subtype"] == "sync_all"
    assert all_done.result["synced"] == 2
    recreated = await store.get(recreate.id)
    assert recreated.status == JobStatus.completed
    assert recreated.result["job_subtype"] == "recreate_subject"

    assert collaborators.sync.removed == [first.id]
    assert sorted(collaborators.sync.calls) == sorted([first.id, first.id, second.id])


@pytest.mark.asyncio
async def test_interrupted_ingest_with_upload_present_is_rerun(runner, store, library, tmp_path, monkeypatch):
    upload = tmp_path / "book.txt"
    upload.write_text("第1章 开端\n正文一\n第2章 继续\n正文二\n", encoding="utf-8")
    rec = await store.create(JobKind.manual_ingest, None, {
        "file_path": str(upload),
        "original_name": "book.txt",
        "metadata": {"title": "开端之书"},
    })
    await store.claim(rec.id)
    await store.update_fields(rec.id, progress={"total_count": 2, "completed_count": 1})
    dispatched = _record_dispatches(runner, monkeypatch)

    summary = await ResumptionService(runner).run()

    assert summary["resumed"] == [rec.id]
    assert summary["failed"] == []
    assert [job.id for job in dispatched] == [rec.id]
    assert dispatched[0].started_at is None
    assert dispatched[0].progress.completed_count == 0

    await runner.join()
    done = await store.get(rec.id)
    assert done.status == JobStatus.completed
    assert done.started_at is not None
    assert done.result["chapters"] == 2
    assert (done.progress.completed_count, done.progress.total_count) == (2, 2)
    assert len(await library.list_chapters(done.subject_id)) == 2


@pytest.mark.asyncio
async def test_rerun_rechunk_reuses_pending_sync_job(jobs, runner, store, library, subject):
    await library.upsert_chapter(subject.id, "u1", number=1, title="第1章", content="一\n二")
    pending = await store.create(JobKind.external_sync, subject.id, {})
    rec = await store.create(JobKind.rechunk, subject.id, {"sync_after": True})
    await store.claim(rec.id)

    done = await runner.run(rec.id)

    assert done.status == JobStatus.completed
    assert done.result["sync_job_id"] == pending.id
    assert [j.id for j in await store.list_jobs(kind=JobKind.external_sync)] == [pending.id]
