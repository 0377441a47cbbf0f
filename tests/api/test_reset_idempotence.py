"""Re-running a job from scratch must not duplicate or change its output."""
import pytest

from bookrelay.api.jobs.models import JobKind, JobStatus

_BOOK = """简介：旧日之书

第一章 绯红
克莱恩醒来。
窗外是绯红的月亮。

第二章 笔记
他翻开了那本笔记。
"""


def _chunk_view(chunks):
    return [(c.position, c.title, c.content) for c in chunks]


@pytest.mark.asyncio
async def test_rechunk_twice_gives_identical_chunks(runner, store, library, subject):
    for n in range(1, 4):
        await library.upsert_chapter(subject.id, f"u{n}", number=n, title=f"第{n}章", content=f"第{n}章正文\n结尾")

    first = await runner.run((await store.create(JobKind.rechunk, subject.id, {"chunk_size": 4})).id)
    after_first = _chunk_view(await library.list_chunks(subject.id))
    second = await runner.run((await store.create(JobKind.rechunk, subject.id, {"chunk_size": 4})).id)
    after_second = _chunk_view(await library.list_chunks(subject.id))

    assert first.status == second.status == JobStatus.completed
    assert after_first == after_second
    assert first.result["total_chunks"] == second.result["total_chunks"] == len(after_first)


@pytest.mark.asyncio
async def test_manual_ingest_twice_merges_into_same_subject(runner, store, library, tmp_path):
    upload = tmp_path / "book.txt"
    upload.write_text(_BOOK, encoding="utf-8")
    payload = {"file_path": str(upload), "original_name": "book.txt", "metadata": {"title": "旧日之书"}}

    first = await runner.run((await store.create(JobKind.manual_ingest, None, payload)).id)
    chapters_first = await library.list_chapters(first.subject_id)
    chunks_first = _chunk_view(await library.list_chunks(first.subject_id))

    second = await runner.run((await store.create(JobKind.manual_ingest, None, payload)).id)

    assert first.status == second.status == JobStatus.completed
    assert second.subject_id == first.subject_id
    assert len(await library.list_chapters(first.subject_id)) == len(chapters_first) == 3
    assert _chunk_view(await library.list_chunks(first.subject_id)) == chunks_first
    assert first.result == second.result


@pytest.mark.asyncio
async def test_sync_twice_skips_existing_notes(runner, store, library, subject, collaborators):
    await library.upsert_chapter(subject.id, "u1", number=1, title="第1章", content="a\nb\nc")
    await runner.run((await store.create(JobKind.rechunk, subject.id, {"chunk_size": 2})).id)

    first = await runner.run((await store.create(JobKind.external_sync, subject.id, {})).id)
    second = await runner.run((await store.create(JobKind.external_sync, subject.id, {})).id)

    assert first.result["created"] > 0
    assert second.result["created"] == 0
    assert second.result["skipped"] == first.result["created"]
