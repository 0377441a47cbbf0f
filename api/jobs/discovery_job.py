"""Discovery job executor: search the forum for new chapters of a subject."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Set

from ..collaborators import SearchResult
from .base import BaseExecutor
from .models import JobKind, JobProgress, JobRecord


class DiscoveryExecutor(BaseExecutor):
    kind = JobKind.discovery

    async def execute(self, job: JobRecord) -> Dict[str, Any]:
        payload = job.payload
        library = self.ctx.library

        confirmed: Set[str] = set()
        if job.subject_id is not None:
            await library.get_subject(job.subject_id)
            confirmed = await library.confirmed_keys(job.subject_id)

        progress = JobProgress(total_count=payload.page_limit)
        await self.report(job, progress, f"Searching for {payload.term!r}")

        raw = await self.ctx.collaborators.discovery.search(payload.term, payload.page_limit)
        found = SearchResult.model_validate(raw)

        # Keep first occurrence of each URL, in collaborator order.
        seen: Set[str] = set()
        candidates = []
        for item in found.items:
            if item.url in seen:
                continue
            seen.add(item.url)
            if item.url not in confirmed:
                candidates.append(item.model_dump())

        progress.completed_count = min(found.pages_fetched, payload.page_limit)
        await self.report(job, progress, f"Found {len(candidates)} new of {len(seen)}")

        if job.subject_id is not None:
            await library.mark_searched(job.subject_id, datetime.now(timezone.utc))

        return {
            "term": payload.term,
            "candidates": candidates,
            "total_found": len(seen),
            "new_count": len(candidates),
            "pages_fetched": found.pages_fetched,
            "auto": payload.auto,
        }
