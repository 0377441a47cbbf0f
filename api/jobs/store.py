"""SQLite-backed job ledger.

One polymorphic ``jobs`` table holds every job kind.  Status changes are
validated against the graph in ``models`` and applied with a compare-and-set
on the current status, so two writers racing on the same row cannot both
move it.
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import aiosqlite
from pydantic import BaseModel

from ..errors import InvalidTransitionError, JobNotFoundError
from .models import (
    TERMINAL_STATUSES,
    JobKind,
    JobProgress,
    JobRecord,
    JobStatus,
    can_transition,
    parse_payload,
)

# Fields accepted by ``update_fields``.
_UPDATABLE = frozenset({
    "status",
    "subject_id",
    "payload",
    "progress",
    "result",
    "error_message",
    "started_at",
    "completed_at",
})

# Written once, together with the move to completed or failed.
_OUTCOME_FIELDS = frozenset({"result", "error_message"})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _check_progress(job_id: str, current: JobRecord, merged: JobProgress) -> None:
    """Reject a progress merge that breaks the per-attempt counter rules."""
    before = current.progress
    if merged.completed_count < before.completed_count or merged.failed_count < before.failed_count:
        raise ValueError(
            f"Job '{job_id}': progress counters cannot decrease "
            f"({before.completed_count}/{before.failed_count} -> "
            f"{merged.completed_count}/{merged.failed_count})"
        )
    if current.kind == JobKind.fetch and merged.total_count < before.total_count:
        raise ValueError(
            f"Job '{job_id}': total_count cannot shrink ({before.total_count} -> {merged.total_count})"
        )
    if merged.completed_count + merged.failed_count > merged.total_count:
        raise ValueError(
            f"Job '{job_id}': {merged.completed_count} completed + {merged.failed_count} failed "
            f"exceeds total_count {merged.total_count}"
        )


class JobStore:
    """Async SQLite store for job lifecycle tracking."""

    def __init__(
        self,
        db_path: str = "bookrelay.db",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.db_path = db_path
        self._clock = clock or _utc_now
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Create the jobs table and its indexes if they don't exist."""
        if self._db is not None:
            return
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'queued',
                subject_id INTEGER,
                payload TEXT NOT NULL DEFAULT '{}',
                completed_count INTEGER NOT NULL DEFAULT 0,
                failed_count INTEGER NOT NULL DEFAULT 0,
                total_count INTEGER NOT NULL DEFAULT 0,
                result TEXT,
                error_message TEXT,
                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT
            )
        """)
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_jobs_queue ON jobs (kind, status, created_at)"
        )
        await self._db.execute(
            "CREATE INDEX IF NOT EXISTS idx_jobs_subject ON jobs (subject_id)"
        )
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db

    def _now_iso(self) -> str:
        return self._clock().isoformat()

    # ── CRUD ─────────────────────────────────────────────────────────

    async def create(
        self,
        kind: JobKind | str,
        subject_id: Optional[int],
        payload: Dict[str, Any] | BaseModel | None = None,
        *,
        status: JobStatus = JobStatus.queued,
    ) -> JobRecord:
        """Insert a new job and return its record.

        Jobs start ``queued``.  A manual-ingest job without metadata may
        instead start in ``waiting_for_input``.
        """
        kind = JobKind(kind)
        status = JobStatus(status)
        if status != JobStatus.queued and not (
            kind == JobKind.manual_ingest and status == JobStatus.waiting_for_input
        ):
            raise InvalidTransitionError(f"A {kind.value} job cannot be created as {status.value}")
        body = parse_payload(kind, payload)
        progress = JobProgress()
        if kind == JobKind.fetch:
            progress.total_count = len(body.items)
        rec = JobRecord(
            id=uuid.uuid4().hex[:12],
            kind=kind,
            status=status,
            subject_id=subject_id,
            payload=body,
            progress=progress,
            created_at=self._now_iso(),
        )
        db = await self._conn()
        await db.execute(
            "INSERT INTO jobs (id, kind, status, subject_id, payload, total_count, created_at) "
            "VALUES (?,?,?,?,?,?,?)",
            (
                rec.id,
                rec.kind.value,
                rec.status.value,
                rec.subject_id,
                rec.payload.model_dump_json(),
                rec.progress.total_count,
                rec.created_at,
            ),
        )
        await db.commit()
        return rec

    async def get(self, job_id: str) -> JobRecord:
        """Fetch a single job by ID.

        Raises
        ------
        JobNotFoundError
            If no row has this ID.
        """
        db = await self._conn()
        async with db.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)) as cur:
            row = await cur.fetchone()
            desc = cur.description
        if row is None:
            raise JobNotFoundError(f"Job '{job_id}' not found")
        return self._row_to_record(row, desc)

    async def update_fields(self, job_id: str, **fields: Any) -> int:
        """Merge *fields* into the job row and return the affected row count.

        Only the supplied fields change.  ``progress`` may itself be partial
        (e.g. ``{"completed_count": 3}``) and is merged with the stored
        counters.  Supplying no fields is a no-op returning 0.

        Raises
        ------
        JobNotFoundError
            If the job does not exist.
        InvalidTransitionError
            If ``status`` is not reachable from the current status, the row
            changed status concurrently, the row is already finished, or
            ``result``/``error_message`` arrive without a terminal status.
        ValueError
            If the merged progress would move a counter backwards or count
            more finished items than ``total_count``.
        """
        current = await self.get(job_id)
        if not fields:
            return 0
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        outcome = _OUTCOME_FIELDS & set(fields)
        if current.status in TERMINAL_STATUSES and (outcome or "status" in fields):
            raise InvalidTransitionError(
                f"Job '{job_id}' is already {current.status.value}; its outcome is final"
            )
        if outcome and JobStatus(fields.get("status", current.status)) not in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"Job '{job_id}': {', '.join(sorted(outcome))} may only be set when it completes or fails"
            )

        sets: List[str] = []
        vals: List[Any] = []
        where = "id = ?"
        where_vals: List[Any] = [job_id]

        if "status" in fields:
            target = JobStatus(fields["status"])
            if target != current.status:
                if not can_transition(current.status, target):
                    raise InvalidTransitionError(
                        f"Job '{job_id}' cannot move from {current.status.value} to {target.value}"
                    )
                where += " AND status = ?"
                where_vals.append(current.status.value)
                if target in TERMINAL_STATUSES and "completed_at" not in fields:
                    fields["completed_at"] = self._now_iso()
            sets.append("status = ?")
            vals.append(target.value)

        if "payload" in fields:
            sets.append("payload = ?")
            vals.append(parse_payload(current.kind, fields["payload"]).model_dump_json())

        if "progress" in fields:
            progress = fields["progress"]
            if isinstance(progress, BaseModel):
                progress = progress.model_dump()
            merged = current.progress.model_copy(update=dict(progress))
            _check_progress(job_id, current, merged)
            sets.extend(["completed_count = ?", "failed_count = ?", "total_count = ?"])
            vals.extend([merged.completed_count, merged.failed_count, merged.total_count])

        if "result" in fields:
            sets.append("result = ?")
            vals.append(json.dumps(fields["result"]) if fields["result"] is not None else None)

        for name in ("subject_id", "error_message", "started_at", "completed_at"):
            if name in fields:
                sets.append(f"{name} = ?")
                vals.append(fields[name])

        db = await self._conn()
        cur = await db.execute(f"UPDATE jobs SET {', '.join(sets)} WHERE {where}", vals + where_vals)
        await db.commit()
        if cur.rowcount == 0 and "status" in fields:
            raise InvalidTransitionError(f"Job '{job_id}' changed status concurrently")
        return cur.rowcount

    async def claim(self, job_id: str) -> Optional[JobRecord]:
        """Move a ``queued`` job to ``processing`` and stamp ``started_at``.

        Returns the updated record, or ``None`` when the job is no longer
        queued (another claimer won).
        """
        await self.get(job_id)
        db = await self._conn()
        cur = await db.execute(
            "UPDATE jobs SET status = ?, started_at = ? WHERE id = ? AND status = ?",
            (JobStatus.processing.value, self._now_iso(), job_id, JobStatus.queued.value),
        )
        await db.commit()
        if cur.rowcount == 0:
            return None
        return await self.get(job_id)

    async def requeue(
        self,
        job_id: str,
        *,
        payload: Dict[str, Any] | BaseModel | None = None,
        progress: JobProgress | Dict[str, int] | None = None,
    ) -> JobRecord:
        """Reset a ``processing`` job to ``queued`` for startup recovery.

        Clears ``started_at`` and any terminal fields and starts a new
        attempt: counters restart from zero unless *progress* supplies them.
        Optionally rewrites the payload in the same statement.
        """
        current = await self.get(job_id)
        if current.status != JobStatus.processing:
            raise InvalidTransitionError(
                f"Job '{job_id}' is {current.status.value}; only processing jobs can be requeued"
            )
        sets = [
            "status = ?",
            "started_at = NULL",
            "completed_at = NULL",
            "result = NULL",
            "error_message = NULL",
        ]
        vals: List[Any] = [JobStatus.queued.value]
        if payload is not None:
            sets.append("payload = ?")
            vals.append(parse_payload(current.kind, payload).model_dump_json())
        if isinstance(progress, BaseModel):
            progress = progress.model_dump()
        fresh = JobProgress(**dict(progress or {}))
        sets.extend(["completed_count = ?", "failed_count = ?", "total_count = ?"])
        vals.extend([fresh.completed_count, fresh.failed_count, fresh.total_count])
        db = await self._conn()
        cur = await db.execute(
            f"UPDATE jobs SET {', '.join(sets)} WHERE id = ? AND status = ?",
            vals + [job_id, JobStatus.processing.value],
        )
        await db.commit()
        if cur.rowcount == 0:
            raise InvalidTransitionError(f"Job '{job_id}' changed status concurrently")
        return await self.get(job_id)

    async def delete(self, job_id: str) -> None:
        """Delete a job row.

        Raises
        ------
        JobNotFoundError
            If no row has this ID.
        """
        db = await self._conn()
        cur = await db.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
        await db.commit()
        if cur.rowcount == 0:
            raise JobNotFoundError(f"Job '{job_id}' not found")

    # ── Queries ──────────────────────────────────────────────────────

    async def list_by_status(
        self,
        kind: JobKind | str,
        status: JobStatus | str,
        limit: Optional[int] = None,
    ) -> List[JobRecord]:
        """List jobs of one kind and status, oldest first."""
        sql = "SELECT * FROM jobs WHERE kind = ? AND status = ? ORDER BY created_at ASC, rowid ASC"
        params: List[Any] = [JobKind(kind).value, JobStatus(status).value]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return await self._fetch_all(sql, params)

    async def list_jobs(
        self,
        kind: JobKind | str | None = None,
        status: JobStatus | str | None = None,
        subject_id: Optional[int] = None,
        limit: int = 50,
    ) -> List[JobRecord]:
        """List jobs ordered by creation time (newest first)."""
        clauses: List[str] = []
        params: List[Any] = []
        if kind is not None:
            clauses.append("kind = ?")
            params.append(JobKind(kind).value)
        if status is not None:
            clauses.append("status = ?")
            params.append(JobStatus(status).value)
        if subject_id is not None:
            clauses.append("subject_id = ?")
            params.append(subject_id)
        where = f"WHERE {' AND '.join(clauses)} " if clauses else ""
        params.append(limit)
        return await self._fetch_all(
            f"SELECT * FROM jobs {where}ORDER BY created_at DESC, rowid DESC LIMIT ?", params
        )

    async def find_active(self, kind: JobKind | str, subject_id: int) -> Optional[JobRecord]:
        """Return a queued or processing job of *kind* for *subject_id*, if any."""
        rows = await self._fetch_all(
            "SELECT * FROM jobs WHERE kind = ? AND subject_id = ? AND status IN (?, ?) "
            "ORDER BY created_at ASC LIMIT 1",
            [JobKind(kind).value, subject_id, JobStatus.queued.value, JobStatus.processing.value],
        )
        return rows[0] if rows else None

    async def count_by_status(self) -> Dict[str, Dict[str, int]]:
        """Return ``{kind: {status: n}}`` for every kind and status present."""
        db = await self._conn()
        async with db.execute(
            "SELECT kind, status, COUNT(*) FROM jobs GROUP BY kind, status"
        ) as cur:
            rows = await cur.fetchall()
        out: Dict[str, Dict[str, int]] = {}
        for kind, status, n in rows:
            out.setdefault(kind, {})[status] = n
        return out

    async def delete_older_than(self, kind: JobKind | str, cutoff: datetime) -> int:
        """Delete jobs of *kind* created before *cutoff*; return the count."""
        db = await self._conn()
        cur = await db.execute(
            "DELETE FROM jobs WHERE kind = ? AND created_at < ?",
            (JobKind(kind).value, cutoff.isoformat()),
        )
        await db.commit()
        return cur.rowcount

    # ── Helpers ───────────────────────────────────────────────────────

    async def _fetch_all(self, sql: str, params: List[Any]) -> List[JobRecord]:
        db = await self._conn()
        async with db.execute(sql, params) as cur:
            rows = await cur.fetchall()
            desc = cur.description
        return [self._row_to_record(r, desc) for r in rows]

    @staticmethod
    def _row_to_record(row, description) -> JobRecord:
        cols = [d[0] for d in description]
        d = dict(zip(cols, row))
        d["payload"] = json.loads(d.get("payload") or "{}")
        d["result"] = json.loads(d["result"]) if d.get("result") else None
        d["progress"] = {
            "completed_count": d.pop("completed_count") or 0,
            "failed_count": d.pop("failed_count") or 0,
            "total_count": d.pop("total_count") or 0,
        }
        return JobRecord(**d)
