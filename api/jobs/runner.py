"""Supervised dispatch of job executors.

Fetch, rechunk, manual-ingest and external-sync jobs run as detached
asyncio tasks as soon as they are dispatched.  Each task is supervised: the
outcome always lands in the ledger before the task handle is dropped, and no
exception escapes to the event loop.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, FrozenSet, List, Optional

from .base import BaseExecutor, ExecutionContext, record_failure
from .discovery_job import DiscoveryExecutor
from .fetch_job import FetchExecutor
from .ingest_job import ManualIngestExecutor
from .models import JobKind, JobRecord
from .rechunk_job import RechunkExecutor
from .sync_job import ExternalSyncExecutor

logger = logging.getLogger(__name__)

DISPATCH_KINDS: FrozenSet[JobKind] = frozenset({
    JobKind.fetch,
    JobKind.rechunk,
    JobKind.manual_ingest,
    JobKind.external_sync,
})


def default_executors(ctx: ExecutionContext) -> Dict[JobKind, BaseExecutor]:
    return {
        JobKind.discovery: DiscoveryExecutor(ctx),
        JobKind.fetch: FetchExecutor(ctx),
        JobKind.rechunk: RechunkExecutor(ctx),
        JobKind.manual_ingest: ManualIngestExecutor(ctx),
        JobKind.external_sync: ExternalSyncExecutor(ctx),
    }


class JobRunner:
    """Runs executors inline or as supervised background tasks."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executors: Optional[Dict[JobKind, BaseExecutor]] = None,
    ) -> None:
        self.ctx = ctx
        self._executors = executors or default_executors(ctx)
        self._active_tasks: Dict[str, asyncio.Task] = {}

    @property
    def pending_count(self) -> int:
        """Number of dispatched jobs still running."""
        return len(self._active_tasks)

    def executor_for(self, kind: JobKind) -> BaseExecutor:
        return self._executors[JobKind(kind)]

    async def run(self, job_id: str) -> JobRecord:
        """Execute a job to completion in the current task."""
        job = await self.ctx.store.get(job_id)
        return await self.executor_for(job.kind).run(job_id)

    # ── Dispatch ─────────────────────────────────────────────────────

    def dispatch(self, job: JobRecord) -> asyncio.Task:
        """Start *job* as a supervised background task.

        Dispatching a job that is already running returns its task.

        Raises
        ------
        ValueError
            For discovery jobs, which only run through the serialized queue.
        """
        if job.kind not in DISPATCH_KINDS:
            raise ValueError(f"{job.kind.value} jobs are not dispatched directly")
        existing = self._active_tasks.get(job.id)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.create_task(self._supervise(job.id), name=f"job-{job.kind.value}-{job.id}")
        self._active_tasks[job.id] = task
        return task

    async def _supervise(self, job_id: str) -> None:
        try:
            await self.run(job_id)
        except asyncio.CancelledError:
            logger.info("Job %s interrupted; it will be resumed on next start", job_id)
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error("Job %s failed outside its executor: %s", job_id, message, exc_info=True,
                         extra={"job_id": job_id})
            try:
                job = await self.ctx.store.get(job_id)
                if not job.is_terminal:
                    await record_failure(self.ctx, job, message)
            except Exception:
                logger.exception("Could not record failure of job %s", job_id)
        finally:
            self._active_tasks.pop(job_id, None)

    async def join(self) -> None:
        """Wait until every dispatched task has finished."""
        while self._active_tasks:
            tasks: List[asyncio.Task] = list(self._active_tasks.values())
            await asyncio.gather(*tasks, return_exceptions=True)
            for job_id, task in list(self._active_tasks.items()):
                if task.done():
                    self._active_tasks.pop(job_id, None)

    async def shutdown(self) -> None:
        """Cancel running tasks; their rows stay ``processing`` for resumption."""
        tasks = list(self._active_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._active_tasks.clear()
