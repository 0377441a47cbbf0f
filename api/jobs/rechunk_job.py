"""Rechunk job executor: rebuild a subject's chunks from its chapters."""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from ..collaborators import ChapterDraft, ChunkDraft
from ..errors import SubjectNotFoundError
from ..library.models import ChapterStatus, Chunk, Subject
from .base import BaseExecutor
from .models import JobKind, JobProgress, JobRecord, SyncSubtype

logger = logging.getLogger(__name__)


def subject_metadata(subject: Subject) -> Dict[str, Any]:
    return {"author": subject.author, "description": subject.description}


def to_chunks(subject_id: int, drafts: List[ChunkDraft], job_id: str) -> List[Chunk]:
    return [
        Chunk(subject_id=subject_id, position=d.position, title=d.title, content=d.content, job_id=job_id)
        for d in drafts
    ]


class RechunkExecutor(BaseExecutor):
    kind = JobKind.rechunk

    async def execute(self, job: JobRecord) -> Dict[str, Any]:
        if job.subject_id is None:
            raise SubjectNotFoundError(f"Rechunk job {job.id} has no subject")
        library = self.ctx.library
        subject = await library.get_subject(job.subject_id)
        chapters = await library.list_chapters(subject.id, status=ChapterStatus.confirmed)
        if not chapters:
            raise ValueError(f"Subject {subject.id} has no confirmed chapters to chunk")

        drafts = [
            ChapterDraft(number=c.number, title=c.title, content=c.content or "")
            for c in chapters
        ]
        built = self.ctx.collaborators.transformer.build_chunks(
            drafts, subject.title, job.payload.chunk_size, subject_metadata(subject)
        )
        chunks = to_chunks(subject.id, [ChunkDraft.model_validate(c) for c in built], job.id)

        progress = JobProgress(total_count=len(chunks))
        await self.report(job, progress, f"Writing {len(chunks)} chunks")
        stored = await library.replace_chunks(subject.id, chunks, job_id=job.id)
        progress.completed_count = stored
        await self.report(job, progress)

        result: Dict[str, Any] = {
            "subject_id": subject.id,
            "chapters": len(chapters),
            "total_chunks": stored,
            "chunk_size": job.payload.chunk_size,
        }
        if job.payload.sync_after and self.ctx.submit is not None:
            follow_up = await self.ctx.store.find_active(JobKind.external_sync, subject.id)
            if follow_up is None:
                follow_up = await self.ctx.submit(
                    JobKind.external_sync, subject.id, {"job_subtype": SyncSubtype.sync_subject.value}
                )
                logger.info("Rechunk job %s queued sync job %s", job.id, follow_up.id)
            else:
                logger.info("Rechunk job %s reusing pending sync job %s", job.id, follow_up.id)
            result["sync_job_id"] = follow_up.id
        return result
