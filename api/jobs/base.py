"""Shared executor lifecycle.

Every executor claims its job, registers an operation, does its work and
finalizes the ledger row.  Exceptions raised by ``execute`` become a
``failed`` row with the exception message; they are never re-raised.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..collaborators import Collaborators
from ..errors import InvalidTransitionError
from ..library.store import LibraryStore
from . import progress as events
from .models import JobKind, JobProgress, JobRecord, JobStatus
from .progress import ProgressHub
from .registry import OperationRegistry, OperationStatus
from .store import JobStore

logger = logging.getLogger(__name__)

SubmitFn = Callable[[JobKind, Optional[int], Dict[str, Any]], Awaitable[JobRecord]]


@dataclass
class ExecutionContext:
    """Everything an executor may touch."""

    store: JobStore
    library: LibraryStore
    registry: OperationRegistry
    hub: ProgressHub
    collaborators: Collaborators
    # Creates and dispatches a follow-up job; wired by JobService.
    submit: Optional[SubmitFn] = None


async def record_failure(ctx: ExecutionContext, job: JobRecord, message: str) -> None:
    """Mark *job* failed in the ledger and registry and tell subscribers."""
    try:
        await ctx.store.update_fields(job.id, status=JobStatus.failed, error_message=message)
    except InvalidTransitionError:
        current = await ctx.store.get(job.id)
        logger.warning(
            "Job %s already %s; failure %r not recorded", job.id, current.status.value, message
        )
    ctx.registry.update(job.kind.value, job.id, status=OperationStatus.failed, message=message)
    ctx.hub.emit(job.id, {"type": events.JOB_ERROR, "error": message})


class BaseExecutor:
    kind: JobKind

    def __init__(self, ctx: ExecutionContext) -> None:
        self.ctx = ctx

    async def execute(self, job: JobRecord) -> Dict[str, Any]:
        """Do the job's work and return its result payload."""
        raise NotImplementedError

    async def run(self, job_id: str) -> JobRecord:
        """Claim, execute and finalize one job; return the final record."""
        store = self.ctx.store
        job = await store.get(job_id)
        if job.status == JobStatus.queued:
            claimed = await store.claim(job_id)
            if claimed is None:
                logger.info("Job %s was claimed elsewhere; skipping", job_id)
                return await store.get(job_id)
            job = claimed
        elif job.status != JobStatus.processing:
            logger.warning("Job %s is %s; not executing", job_id, job.status.value)
            return job

        self.ctx.registry.register(self.kind.value, job.id, {
            "status": OperationStatus.active,
            "total": job.progress.total_count,
            "subject_id": job.subject_id,
        })
        self.ctx.hub.emit(job.id, {"type": events.JOB_START, "kind": self.kind.value})
        logger.info("Job %s (%s) started", job.id, self.kind.value,
                    extra={"job_id": job.id, "kind": self.kind.value})

        try:
            result = await self.execute(job)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error("Job %s (%s) failed: %s", job.id, self.kind.value, message, exc_info=True,
                         extra={"job_id": job.id, "kind": self.kind.value})
            await record_failure(self.ctx, job, message)
            return await store.get(job.id)

        await store.update_fields(job.id, status=JobStatus.completed, result=result)
        self.ctx.registry.update(self.kind.value, job.id, status=OperationStatus.completed)
        self.ctx.hub.emit(job.id, {"type": events.JOB_COMPLETE, "result": result})
        logger.info("Job %s (%s) completed", job.id, self.kind.value,
                    extra={"job_id": job.id, "kind": self.kind.value})
        return await store.get(job.id)

    async def report(self, job: JobRecord, progress: JobProgress, message: str = "") -> None:
        """Publish counters: registry first, then the ledger."""
        self.ctx.registry.update(
            self.kind.value, job.id,
            completed=progress.completed_count,
            failed=progress.failed_count,
            total=progress.total_count,
            message=message,
        )
        await self.ctx.store.update_fields(job.id, progress=progress)
