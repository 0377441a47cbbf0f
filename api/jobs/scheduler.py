"""Serialized poll-and-claim loop for discovery jobs.

The search collaborator is rate-limited and unsafe for concurrent use, so
discovery jobs run one at a time in ``created_at`` order.  ``tick()`` is the
whole state machine; ``start()`` only calls it on a timer, and tests drive
``tick()`` directly with an injected sleep.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ... import config as _cfg
from .models import JobKind, JobRecord, JobStatus
from .runner import JobRunner

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class DiscoveryQueueProcessor:
    """Single-flight consumer of the ``queued`` discovery backlog."""

    def __init__(
        self,
        runner: JobRunner,
        interval: float = _cfg.DISCOVERY_POLL_SECONDS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._runner = runner
        self._store = runner.ctx.store
        self._interval = interval
        self._sleep = sleep
        self._busy = False
        self._stopping = False
        self._task: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> Optional[JobRecord]:
        """Claim and run the oldest queued discovery job, if idle.

        Returns the finished record, or ``None`` when another tick is in
        flight or the backlog is empty.
        """
        if self._busy:
            return None
        # Set before the first await so an overlapping tick sees it.
        self._busy = True
        try:
            while True:
                backlog = await self._store.list_by_status(JobKind.discovery, JobStatus.queued, limit=1)
                if not backlog:
                    return None
                job = backlog[0]
                if await self._store.claim(job.id) is not None:
                    break
            logger.info("Discovery job %s claimed", job.id, extra={"job_id": job.id, "kind": "discovery"})
            return await self._runner.run(job.id)
        finally:
            self._busy = False

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._loop(), name="discovery-queue")

    async def stop(self) -> None:
        self._stopping = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while not self._stopping:
            try:
                await self.tick()
            except Exception:
                logger.exception("Discovery queue tick failed")
            await self._sleep(self._interval)
