"""Manual-ingest job executor: import an uploaded text file as a subject."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict

from ..collaborators import ChapterDraft, ChunkDraft
from ..errors import InvalidTransitionError, MissingInputError
from .base import BaseExecutor
from .models import JobKind, JobProgress, JobRecord
from .rechunk_job import subject_metadata, to_chunks


def read_text(path: Path) -> str:
    """Read *path* as UTF-8, falling back to GB18030 for legacy Chinese files."""
    raw = path.read_bytes()
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("gb18030", errors="replace")


class ManualIngestExecutor(BaseExecutor):
    kind = JobKind.manual_ingest

    async def execute(self, job: JobRecord) -> Dict[str, Any]:
        payload = job.payload
        path = Path(payload.file_path)
        if not path.exists():
            raise MissingInputError(f"Uploaded file {payload.original_name or path.name} no longer exists")
        if payload.metadata is None:
            raise InvalidTransitionError(f"Manual-ingest job {job.id} has no confirmed metadata")

        library = self.ctx.library
        transformer = self.ctx.collaborators.transformer
        meta = payload.metadata

        text = await asyncio.to_thread(read_text, path)
        if job.subject_id is not None:
            subject = await library.get_subject(job.subject_id)
        else:
            subject = await library.ensure_subject(meta.title, meta.author, meta.description)
            await self.ctx.store.update_fields(job.id, subject_id=subject.id)

        chapters = [ChapterDraft.model_validate(c) for c in transformer.split_chapters(text, subject.title)]
        progress = JobProgress(total_count=len(chapters))
        await self.report(job, progress, f"Importing {len(chapters)} chapters")

        file_key = path.name
        for n, chapter in enumerate(chapters):
            await library.upsert_chapter(
                subject.id, f"{file_key}#{n}",
                number=chapter.number,
                title=chapter.title,
                content=chapter.content,
            )
            progress.completed_count += 1
            await self.report(job, progress.model_copy(), chapter.title)

        built = transformer.build_chunks(chapters, subject.title, payload.chunk_size, subject_metadata(subject))
        stored = await library.replace_chunks(
            subject.id, to_chunks(subject.id, [ChunkDraft.model_validate(c) for c in built], job.id), job_id=job.id
        )
        return {"subject_id": subject.id, "chapters": len(chapters), "chunks": stored}
