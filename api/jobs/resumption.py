"""Startup recovery of jobs interrupted by a crash.

Runs once, before the discovery queue starts.  Any row still marked
``processing`` belonged to the previous process:

- discovery, rechunk, manual-ingest and external-sync jobs restart from
  scratch (their executors overwrite partial output);
- fetch jobs keep what was already downloaded and retry only the rest.

Dispatch-kind jobs left ``queued`` (created but never started) are
dispatched again as they are.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

from ..errors import MissingInputError, SubjectNotFoundError
from .base import record_failure
from .models import JobKind, JobProgress, JobRecord, JobStatus
from .runner import DISPATCH_KINDS, JobRunner

logger = logging.getLogger(__name__)


class ResumptionService:
    def __init__(self, runner: JobRunner) -> None:
        self._runner = runner
        self._ctx = runner.ctx
        self._pending: List[JobRecord] = []

    async def run(self) -> Dict[str, List[str]]:
        """Reconcile every interrupted job.

        Returns ``{"resumed": [...], "completed": [...], "failed": [...]}``
        with job ids.  A job that cannot be reconciled is logged and
        counted as failed; the pass always finishes.
        """
        summary: Dict[str, List[str]] = {"resumed": [], "completed": [], "failed": []}
        store = self._ctx.store
        # Nothing is dispatched until every row has been examined, so no
        # executor can claim a row this pass has yet to look at.
        self._pending = []

        for kind in DISPATCH_KINDS:
            for job in await store.list_by_status(kind, JobStatus.queued):
                self._pending.append(job)
                summary["resumed"].append(job.id)

        for job in await store.list_by_status(JobKind.manual_ingest, JobStatus.waiting_for_input):
            if not Path(job.payload.file_path).exists():
                await self._fail(job, MissingInputError(
                    f"Uploaded file {job.payload.original_name or job.payload.file_path} no longer exists"
                ))
                summary["failed"].append(job.id)

        for kind in JobKind:
            for job in await store.list_by_status(kind, JobStatus.processing):
                try:
                    outcome = await self._resume(job)
                except Exception as exc:
                    logger.exception("Could not resume job %s", job.id, extra={"job_id": job.id})
                    await self._fail(job, exc)
                    outcome = "failed"
                summary[outcome].append(job.id)

        for job in self._pending:
            self._runner.dispatch(job)
        self._pending = []

        if any(summary.values()):
            logger.info(
                "Resumption: %d resumed, %d completed, %d failed",
                len(summary["resumed"]), len(summary["completed"]), len(summary["failed"]),
            )
        return summary

    async def _resume(self, job: JobRecord) -> str:
        if job.kind == JobKind.fetch:
            return await self._resume_fetch(job)

        if job.kind == JobKind.manual_ingest and not Path(job.payload.file_path).exists():
            await self._fail(job, MissingInputError(
                f"Uploaded file {job.payload.original_name or job.payload.file_path} no longer exists after restart"
            ))
            return "failed"

        requeued = await self._ctx.store.requeue(job.id)
        logger.info("Job %s (%s) reset to queued", job.id, job.kind.value, extra={"job_id": job.id})
        if job.kind in DISPATCH_KINDS:
            self._pending.append(requeued)
        return "resumed"

    async def _resume_fetch(self, job: JobRecord) -> str:
        payload = job.payload
        if payload.source_file and not Path(payload.source_file).exists():
            await self._fail(job, MissingInputError(
                f"Chapter list file {payload.source_file} no longer exists after restart"
            ))
            return "failed"
        if job.subject_id is None:
            await self._fail(job, SubjectNotFoundError(f"Fetch job {job.id} has no subject"))
            return "failed"
        if not payload.items:
            await self._fail(job, ValueError("No chapter data to resume"))
            return "failed"

        confirmed = await self._ctx.library.confirmed_keys(job.subject_id)
        remaining = [item for item in payload.items if item.url not in confirmed]

        if not remaining:
            total = max(len(payload.items), job.progress.total_count)
            failed = job.progress.failed_count
            await self._ctx.store.update_fields(
                job.id,
                status=JobStatus.completed,
                progress=JobProgress(completed_count=total - failed, failed_count=failed, total_count=total),
                result={"subject_id": job.subject_id, "completed": total - failed, "failed": failed,
                        "total": total, "resumed": True},
            )
            logger.info("Fetch job %s already had all %d chapters; completed", job.id, total,
                        extra={"job_id": job.id})
            return "completed"

        requeued = await self._ctx.store.requeue(
            job.id,
            payload=payload.model_copy(update={"items": remaining}),
            progress=JobProgress(completed_count=0, failed_count=0, total_count=len(remaining)),
        )
        logger.info("Fetch job %s resumed with %d of %d chapters remaining",
                    job.id, len(remaining), len(payload.items), extra={"job_id": job.id})
        self._pending.append(requeued)
        return "resumed"

    async def _fail(self, job: JobRecord, exc: Exception) -> None:
        await record_failure(self._ctx, job, str(exc) or type(exc).__name__)
