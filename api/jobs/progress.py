"""Per-job progress fan-out for streaming clients.

Executors call ``emit`` with chapter/job events; every client streaming the
job has its own queue.  Between events the stream sends progress snapshots
(registry first, ledger as fallback) and periodic heartbeats.  A client
that goes away only unregisters its queue; the job is unaffected.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

from ... import config as _cfg
from .models import TERMINAL_STATUSES, JobRecord, JobStatus
from .registry import OperationRegistry, OperationStatus
from .store import JobStore

logger = logging.getLogger(__name__)

# Event types executors emit.
JOB_START = "job-start"
CHAPTER_START = "chapter-start"
CHAPTER_COMPLETE = "chapter-complete"
CHAPTER_SKIPPED = "chapter-skipped"
CHAPTER_ERROR = "chapter-error"
JOB_COMPLETE = "job-complete"
JOB_ERROR = "job-error"

_FINAL_EVENTS = (JOB_COMPLETE, JOB_ERROR)
_STREAM_END_STATUSES = TERMINAL_STATUSES | {JobStatus.waiting_for_input}


class ProgressHub:
    """Registry of streaming subscribers, keyed by job id."""

    def __init__(
        self,
        store: JobStore,
        registry: OperationRegistry,
        *,
        heartbeat_seconds: float = _cfg.STREAM_HEARTBEAT_SECONDS,
        progress_seconds: float = _cfg.STREAM_PROGRESS_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._registry = registry
        self._heartbeat = heartbeat_seconds
        self._interval = progress_seconds
        self._monotonic = monotonic
        self._subscribers: Dict[str, List[asyncio.Queue]] = {}

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, []))

    def emit(self, job_id: str, event: Dict[str, Any]) -> None:
        """Push *event* to every subscriber of *job_id*."""
        body = {"jobId": job_id, **event}
        for queue in list(self._subscribers.get(job_id, [])):
            queue.put_nowait(body)

    def _register(self, job_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(job_id, []).append(queue)
        return queue

    def _unregister(self, job_id: str, queue: asyncio.Queue) -> None:
        subs = self._subscribers.get(job_id, [])
        if queue in subs:
            subs.remove(queue)
        if not subs:
            self._subscribers.pop(job_id, None)

    async def snapshot(self, job: JobRecord) -> Dict[str, Any]:
        """Current counters for *job*, preferring the live registry entry."""
        op = self._registry.get(job.kind.value, job.id)
        if op is not None and op.status == OperationStatus.active:
            return {
                "type": "progress",
                "jobId": job.id,
                "status": JobStatus.processing.value,
                "completed": op.completed,
                "failed": op.failed,
                "total": op.total,
            }
        fresh = await self._store.get(job.id)
        return {
            "type": "progress",
            "jobId": fresh.id,
            "status": fresh.status.value,
            "completed": fresh.progress.completed_count,
            "failed": fresh.progress.failed_count,
            "total": fresh.progress.total_count,
        }

    async def stream(self, job_id: str) -> AsyncGenerator[Dict[str, Any], None]:
        """Yield stream events for *job_id* until it finishes.

        The first event is ``{"type": "connected"}``; the last is
        ``{"type": "end"}`` carrying the final counters.  Heartbeats are
        yielded as ``{"type": "heartbeat"}``.

        Raises
        ------
        JobNotFoundError
            Before subscribing, if the job does not exist.
        """
        job = await self._store.get(job_id)
        queue = self._register(job_id)
        try:
            yield {"type": "connected", "jobId": job_id}
            if job.status in _STREAM_END_STATUSES:
                yield await self._end(job)
                return

            last_beat = self._monotonic()
            while True:
                try:
                    event: Optional[Dict[str, Any]] = await asyncio.wait_for(
                        queue.get(), timeout=self._interval
                    )
                except asyncio.TimeoutError:
                    event = None

                if event is not None:
                    yield event
                    if event.get("type") in _FINAL_EVENTS:
                        yield await self._end(job)
                        return
                else:
                    snap = await self.snapshot(job)
                    yield snap
                    if JobStatus(snap["status"]) in _STREAM_END_STATUSES:
                        yield await self._end(job)
                        return

                if self._monotonic() - last_beat >= self._heartbeat:
                    last_beat = self._monotonic()
                    yield {"type": "heartbeat"}
        finally:
            self._unregister(job_id, queue)
            logger.debug("Progress subscriber for %s unregistered", job_id)

    async def _end(self, job: JobRecord) -> Dict[str, Any]:
        fresh = await self._store.get(job.id)
        return {
            "type": "end",
            "jobId": fresh.id,
            "status": fresh.status.value,
            "completed": fresh.progress.completed_count,
            "failed": fresh.progress.failed_count,
            "total": fresh.progress.total_count,
            "error": fresh.error_message,
        }
