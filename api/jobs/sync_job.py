"""External-sync job executor: push chunks to the note service.

Routes on ``payload.job_subtype``.  The sync collaborator skips notes that
already exist, so a job that is re-run after a crash does not duplicate
anything it had already pushed.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from ..collaborators import SyncResult
from ..errors import CollaboratorUnavailableError, SubjectNotFoundError
from ..library.models import Subject
from .base import BaseExecutor
from .models import JobKind, JobProgress, JobRecord, SyncSubtype

logger = logging.getLogger(__name__)


class ExternalSyncExecutor(BaseExecutor):
    kind = JobKind.external_sync

    async def execute(self, job: JobRecord) -> Dict[str, Any]:
        subtype = SyncSubtype(job.payload.job_subtype)
        if subtype == SyncSubtype.sync_all:
            return await self._sync_all(job)
        if job.subject_id is None:
            raise SubjectNotFoundError(f"{subtype.value} job {job.id} has no subject")
        subject = await self.ctx.library.get_subject(job.subject_id)
        if subtype == SyncSubtype.recreate_subject:
            await self.ctx.collaborators.sync.remove_subject(subject)
        progress = JobProgress(total_count=1)
        await self.report(job, progress, subject.title)
        outcome = await self._sync_one(subject)
        progress.completed_count = 1
        await self.report(job, progress)
        return {"job_subtype": subtype.value, "subject_id": subject.id, **outcome.model_dump()}

    async def _sync_one(self, subject: Subject) -> SyncResult:
        chunks = await self.ctx.library.list_chunks(subject.id)
        if not chunks:
            raise ValueError(f"Subject {subject.id} has no chunks to sync")
        raw = await self.ctx.collaborators.sync.sync_chunks(subject, chunks)
        return SyncResult.model_validate(raw)

    async def _sync_all(self, job: JobRecord) -> Dict[str, Any]:
        subjects = await self.ctx.library.list_subjects(sync_enabled=True)
        progress = JobProgress(total_count=len(subjects))
        await self.report(job, progress, f"Syncing {len(subjects)} subjects")

        totals = SyncResult()
        errors: List[Dict[str, Any]] = []
        for subject in subjects:
            try:
                outcome = await self._sync_one(subject)
            except CollaboratorUnavailableError:
                raise
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                logger.warning("Sync of subject %s failed: %s", subject.id, message,
                               extra={"job_id": job.id, "kind": self.kind.value})
                errors.append({"subject_id": subject.id, "error": message})
                progress.failed_count += 1
            else:
                totals.created += outcome.created
                totals.updated += outcome.updated
                totals.skipped += outcome.skipped
                progress.completed_count += 1
            await self.report(job, progress.model_copy(), subject.title)

        return {
            "job_subtype": SyncSubtype.sync_all.value,
            "subjects": len(subjects),
            "synced": progress.completed_count,
            "errors": errors,
            **totals.model_dump(),
        }
