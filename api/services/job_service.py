"""Job lifecycle operations behind the HTTP layer."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from ..errors import (
    DuplicateJobError,
    InvalidPayloadError,
    InvalidTransitionError,
    MissingInputError,
    RetryNotNeededError,
)
from ..jobs.base import record_failure
from ..jobs.models import (
    IngestMetadata,
    JobKind,
    JobRecord,
    JobStatus,
    SyncSubtype,
    parse_payload,
)
from ..jobs.runner import DISPATCH_KINDS, JobRunner

logger = logging.getLogger(__name__)

# Kinds where a second queued/processing job for the same subject is refused.
_SINGLE_PER_SUBJECT = frozenset({JobKind.discovery, JobKind.fetch, JobKind.rechunk})


class JobService:
    """Creates, retries, confirms and deletes jobs.

    Newly created dispatch-kind jobs start immediately; discovery jobs wait
    for the serialized queue.
    """

    def __init__(self, runner: JobRunner) -> None:
        self.runner = runner
        self.ctx = runner.ctx
        self.ctx.submit = self.create

    async def create(
        self,
        kind: JobKind | str,
        subject_id: Optional[int],
        payload: Dict[str, Any] | BaseModel | None = None,
    ) -> JobRecord:
        """Validate, persist and start a job.

        Raises
        ------
        InvalidPayloadError
            If the payload does not match the kind.
        SubjectNotFoundError
            If ``subject_id`` names no subject.
        DuplicateJobError
            If the subject already has an unfinished job of this kind.
        MissingInputError
            If a manual-ingest upload is not on disk.
        """
        kind = JobKind(kind)
        try:
            body = parse_payload(kind, payload)
        except (ValidationError, ValueError) as exc:
            raise InvalidPayloadError(str(exc)) from exc

        if subject_id is not None:
            await self.ctx.library.get_subject(subject_id)
        elif kind in (JobKind.fetch, JobKind.rechunk) or (
            kind == JobKind.external_sync and body.job_subtype != SyncSubtype.sync_all
        ):
            raise InvalidPayloadError(f"{kind.value} jobs need a subject_id")

        if kind in _SINGLE_PER_SUBJECT and subject_id is not None:
            existing = await self.ctx.store.find_active(kind, subject_id)
            if existing is not None:
                raise DuplicateJobError(
                    f"Subject {subject_id} already has {kind.value} job {existing.id} ({existing.status.value})"
                )

        status = JobStatus.queued
        if kind == JobKind.manual_ingest:
            if not Path(body.file_path).exists():
                raise MissingInputError(f"Uploaded file {body.original_name or body.file_path} does not exist")
            if body.metadata is None:
                status = JobStatus.waiting_for_input

        job = await self.ctx.store.create(kind, subject_id, body, status=status)
        logger.info("Created %s job %s (%s)", kind.value, job.id, job.status.value,
                    extra={"job_id": job.id, "kind": kind.value})
        if job.status == JobStatus.queued and kind in DISPATCH_KINDS:
            self.runner.dispatch(job)
        return job

    async def get(self, job_id: str) -> JobRecord:
        return await self.ctx.store.get(job_id)

    async def list_jobs(
        self,
        kind: Optional[JobKind] = None,
        status: Optional[JobStatus] = None,
        subject_id: Optional[int] = None,
        limit: int = 50,
    ) -> List[JobRecord]:
        return await self.ctx.store.list_jobs(kind=kind, status=status, subject_id=subject_id, limit=limit)

    async def retry(self, job_id: str) -> JobRecord:
        """Create a fresh job from a finished one; the old row is untouched.

        Failed jobs of any kind can be retried, as can fetch jobs that
        completed with failed chapters.  A fetch retry only carries the
        chapters that are still not confirmed.
        """
        job = await self.ctx.store.get(job_id)
        partial_fetch = (
            job.kind == JobKind.fetch
            and job.status == JobStatus.completed
            and job.progress.failed_count > 0
        )
        if job.status != JobStatus.failed and not partial_fetch:
            raise RetryNotNeededError(f"Job '{job_id}' is {job.status.value}; only failed jobs can be retried")

        payload = job.payload
        if job.kind == JobKind.fetch and job.subject_id is not None:
            confirmed = await self.ctx.library.confirmed_keys(job.subject_id)
            remaining = [item for item in payload.items if item.url not in confirmed]
            if not remaining:
                raise RetryNotNeededError(f"Job '{job_id}' has no failed chapters to retry")
            payload = payload.model_copy(update={"items": remaining})

        retried = await self.create(job.kind, job.subject_id, payload)
        logger.info("Job %s retried as %s", job_id, retried.id, extra={"job_id": retried.id})
        return retried

    async def confirm_ingest(
        self,
        job_id: str,
        metadata: IngestMetadata,
        subject_id: Optional[int] = None,
    ) -> JobRecord:
        """Attach metadata to a waiting manual-ingest job and start it."""
        job = await self.ctx.store.get(job_id)
        if job.kind != JobKind.manual_ingest or job.status != JobStatus.waiting_for_input:
            raise InvalidTransitionError(
                f"Job '{job_id}' is a {job.status.value} {job.kind.value} job, not an upload awaiting input"
            )
        if not Path(job.payload.file_path).exists():
            await record_failure(self.ctx, job, f"Uploaded file {job.payload.original_name} no longer exists")
            raise MissingInputError(f"Uploaded file {job.payload.original_name} no longer exists")
        if subject_id is not None:
            await self.ctx.library.get_subject(subject_id)

        fields: Dict[str, Any] = {
            "payload": job.payload.model_copy(update={"metadata": metadata}),
            "status": JobStatus.queued,
        }
        if subject_id is not None:
            fields["subject_id"] = subject_id
        await self.ctx.store.update_fields(job_id, **fields)
        job = await self.ctx.store.get(job_id)
        self.runner.dispatch(job)
        return job

    async def delete(self, job_id: str) -> None:
        """Delete a job that is not currently running."""
        job = await self.ctx.store.get(job_id)
        if job.status == JobStatus.processing:
            raise InvalidTransitionError(f"Job '{job_id}' is processing and cannot be deleted")
        await self.ctx.store.delete(job_id)
        self.ctx.registry.remove(job.kind.value, job_id)
