"""Opportunistic discovery scheduling.

Once a minute, if nothing has run for a while, queue a discovery job for
every subject flagged for automatic search whose last search is old enough.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional

from ... import config as _cfg
from ..jobs.models import JobKind
from .job_service import JobService

logger = logging.getLogger(__name__)


class AutoDiscoveryService:
    def __init__(
        self,
        jobs: JobService,
        interval: float = _cfg.AUTO_DISCOVERY_CHECK_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._jobs = jobs
        self._ctx = jobs.ctx
        self._interval = interval
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    async def check(self) -> List[str]:
        """Evaluate the policy once and return the ids of jobs it created."""
        if not _cfg.AUTO_DISCOVERY_ENABLED:
            return []
        registry = self._ctx.registry
        if registry.is_active():
            logger.debug("Auto-discovery skipped: operations are active")
            return []
        idle = registry.idle_duration()
        if idle < timedelta(minutes=_cfg.AUTO_DISCOVERY_IDLE_MINUTES):
            logger.debug("Auto-discovery skipped: idle for only %s", idle)
            return []

        searched_before = self._clock() - timedelta(hours=_cfg.AUTO_DISCOVERY_INTERVAL_HOURS)
        due = await self._ctx.library.subjects_due_for_search(searched_before)
        created: List[str] = []
        for subject in due:
            if await self._ctx.store.find_active(JobKind.discovery, subject.id) is not None:
                continue
            job = await self._jobs.create(JobKind.discovery, subject.id, {
                "term": subject.title,
                "page_limit": _cfg.AUTO_DISCOVERY_PAGES,
                "auto": True,
            })
            created.append(job.id)
            if _cfg.AUTO_DISCOVERY_MAX_JOBS and len(created) >= _cfg.AUTO_DISCOVERY_MAX_JOBS:
                break
        if created:
            logger.info("Auto-discovery queued %d jobs after %s idle", len(created), idle)
        return created

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="auto-discovery")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while True:
            await self._sleep(self._interval)
            try:
                await self.check()
            except Exception:
                logger.exception("Auto-discovery check failed")
