"""Fetch job executor: download a subject's chapters.

Chapters start in payload order with bounded concurrency.  A chapter that
is already confirmed counts as completed without a download, so a job that
is re-run after a crash only fetches what is still missing.  A failing
chapter is stored as failed and counted; the job carries on.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from ... import config as _cfg
from ..collaborators import FetchedContent
from ..errors import CollaboratorUnavailableError, MissingInputError, SubjectNotFoundError
from ..library.models import ChapterStatus
from . import progress as events
from .base import BaseExecutor, ExecutionContext
from .models import FetchItem, JobKind, JobProgress, JobRecord

logger = logging.getLogger(__name__)


class FetchExecutor(BaseExecutor):
    kind = JobKind.fetch

    def __init__(self, ctx: ExecutionContext, max_concurrency: Optional[int] = None) -> None:
        super().__init__(ctx)
        self._max_concurrency = max_concurrency

    async def execute(self, job: JobRecord) -> Dict[str, Any]:
        payload = job.payload
        if payload.source_file and not Path(payload.source_file).exists():
            raise MissingInputError(f"Chapter list file {payload.source_file} no longer exists")
        if job.subject_id is None:
            raise SubjectNotFoundError(f"Fetch job {job.id} has no subject")
        subject = await self.ctx.library.get_subject(job.subject_id)
        if not payload.items:
            raise ValueError(f"Fetch job {job.id} has no chapters to download")

        library = self.ctx.library
        fetcher = self.ctx.collaborators.fetcher
        hub = self.ctx.hub
        confirmed = await library.confirmed_keys(subject.id)

        progress = JobProgress(total_count=max(job.progress.total_count, len(payload.items)))
        skipped = 0
        lock = asyncio.Lock()
        sem = asyncio.Semaphore(self._max_concurrency or _cfg.FETCH_MAX_CONCURRENCY)

        async def _one(index: int, item: FetchItem) -> None:
            nonlocal skipped
            error: Optional[str] = None
            async with sem:
                if item.url in confirmed:
                    event = {"type": events.CHAPTER_SKIPPED}
                else:
                    hub.emit(job.id, {"type": events.CHAPTER_START, "index": index, "url": item.url,
                                      "title": item.title})
                    try:
                        raw = await fetcher.fetch_one(item.url)
                        content = FetchedContent.model_validate(raw)
                        await library.upsert_chapter(
                            subject.id, item.url,
                            number=item.number,
                            title=content.title or item.title,
                            content=content.raw_content,
                        )
                        event = {"type": events.CHAPTER_COMPLETE}
                    except CollaboratorUnavailableError:
                        raise
                    except Exception as exc:
                        error = str(exc) or type(exc).__name__
                        logger.warning("Chapter %s of job %s failed: %s", item.url, job.id, error,
                                       extra={"job_id": job.id, "kind": self.kind.value})
                        await library.upsert_chapter(
                            subject.id, item.url,
                            number=item.number,
                            title=item.title,
                            status=ChapterStatus.failed,
                            error=error,
                        )
                        event = {"type": events.CHAPTER_ERROR, "error": error}

            async with lock:
                if error is not None:
                    progress.failed_count += 1
                else:
                    progress.completed_count += 1
                    if event["type"] == events.CHAPTER_SKIPPED:
                        skipped += 1
                await self.report(job, progress.model_copy(), item.title)
                hub.emit(job.id, {
                    **event,
                    "index": index,
                    "url": item.url,
                    "title": item.title,
                    "completed": progress.completed_count,
                    "failed": progress.failed_count,
                    "total": progress.total_count,
                })

        tasks = [asyncio.ensure_future(_one(i, item)) for i, item in enumerate(payload.items)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        return {
            "subject_id": subject.id,
            "completed": progress.completed_count,
            "failed": progress.failed_count,
            "skipped": skipped,
            "total": progress.total_count,
        }
