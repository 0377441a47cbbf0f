"""Retention sweep for the job ledger."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from ... import config as _cfg
from .models import JobKind
from .store import JobStore

logger = logging.getLogger(__name__)


class RetentionService:
    """Deletes ledger rows older than the retention window, kind by kind."""

    def __init__(
        self,
        store: JobStore,
        retention_days: Optional[int] = None,
        interval: float = _cfg.CLEANUP_INTERVAL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._retention_days = retention_days
        self._interval = interval
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.last_summary: Optional[Dict[str, Any]] = None

    @property
    def retention_days(self) -> int:
        if self._retention_days is not None:
            return self._retention_days
        return _cfg.JOB_RETENTION_DAYS

    async def sweep(self) -> Dict[str, Any]:
        """Delete expired rows for every kind.

        A failure for one kind is logged and reported under ``errors``;
        the remaining kinds are still swept.
        """
        cutoff = self._clock() - timedelta(days=self.retention_days)
        counts: Dict[str, int] = {}
        errors: Dict[str, str] = {}
        for kind in JobKind:
            try:
                counts[kind.value] = await self._store.delete_older_than(kind, cutoff)
            except Exception as exc:
                logger.error("Retention sweep failed for %s jobs: %s", kind.value, exc, exc_info=True)
                errors[kind.value] = str(exc) or type(exc).__name__
                counts[kind.value] = 0
        total = sum(counts.values())
        if total:
            logger.info("Retention sweep deleted %d jobs older than %s", total, cutoff.isoformat())
        self.last_summary = {
            "cutoff": cutoff.isoformat(),
            "counts": counts,
            "total": total,
            "errors": errors,
        }
        return self.last_summary

    def start(self) -> None:
        """Sweep now, then once per interval."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="job-retention")

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
            try:
                await self.sweep()
            except Exception:
                logger.exception("Retention sweep crashed")
            await self._sleep(self._interval)
