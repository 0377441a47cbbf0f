"""SQLite-backed store for subjects, chapters and chunks.

Writes that could race (two fetches confirming the same chapter, two
ingests creating the same subject) are upserts on a uniqueness key, so the
loser merges into the winner's row instead of failing.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Set

import aiosqlite

from ..errors import SubjectExistsError, SubjectNotFoundError
from .models import Chapter, ChapterStatus, Chunk, Subject


class LibraryStore:
    """Async SQLite store for library content."""

    def __init__(self, db_path: str = "bookrelay.db") -> None:
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Create the library tables if they don't exist."""
        if self._db is not None:
            return
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.executescript("""
            CREATE TABLE IF NOT EXISTS subjects (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL UNIQUE,
                author TEXT NOT NULL DEFAULT '',
                description TEXT NOT NULL DEFAULT '',
                auto_search INTEGER NOT NULL DEFAULT 0,
                sync_enabled INTEGER NOT NULL DEFAULT 0,
                last_searched_at TEXT,
                created_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS chapters (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                source_key TEXT NOT NULL,
                number INTEGER,
                title TEXT NOT NULL DEFAULT '',
                content TEXT,
                status TEXT NOT NULL DEFAULT 'confirmed',
                error TEXT,
                UNIQUE (subject_id, source_key)
            );
            CREATE TABLE IF NOT EXISTS chunks (
                subject_id INTEGER NOT NULL REFERENCES subjects(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                title TEXT NOT NULL,
                content TEXT NOT NULL,
                job_id TEXT,
                PRIMARY KEY (subject_id, position)
            );
        """)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        return self._db

    # ── Subjects ─────────────────────────────────────────────────────

    async def create_subject(
        self,
        title: str,
        author: str = "",
        description: str = "",
        *,
        auto_search: bool = False,
        sync_enabled: bool = False,
    ) -> Subject:
        db = await self._conn()
        try:
            cur = await db.execute(
                "INSERT INTO subjects (title, author, description, auto_search, sync_enabled, created_at) "
                "VALUES (?,?,?,?,?,?)",
                (title, author, description, int(auto_search), int(sync_enabled),
                 datetime.now(timezone.utc).isoformat()),
            )
        except aiosqlite.IntegrityError as exc:
            raise SubjectExistsError(f"Subject {title!r} already exists") from exc
        await db.commit()
        return await self.get_subject(cur.lastrowid)

    async def ensure_subject(self, title: str, author: str = "", description: str = "") -> Subject:
        """Return the subject titled *title*, creating it if needed."""
        db = await self._conn()
        await db.execute(
            "INSERT INTO subjects (title, author, description, created_at) VALUES (?,?,?,?) "
            "ON CONFLICT(title) DO NOTHING",
            (title, author, description, datetime.now(timezone.utc).isoformat()),
        )
        await db.commit()
        subject = await self.find_subject_by_title(title)
        if subject is None:
            raise SubjectNotFoundError(f"Subject {title!r} vanished after insert")
        return subject

    async def get_subject(self, subject_id: int) -> Subject:
        """Fetch one subject.

        Raises
        ------
        SubjectNotFoundError
            If no subject has this ID.
        """
        rows = await self._fetch("SELECT * FROM subjects WHERE id = ?", [subject_id])
        if not rows:
            raise SubjectNotFoundError(f"Subject {subject_id} not found")
        return Subject(**rows[0])

    async def find_subject_by_title(self, title: str) -> Optional[Subject]:
        rows = await self._fetch("SELECT * FROM subjects WHERE title = ?", [title])
        return Subject(**rows[0]) if rows else None

    async def list_subjects(self, *, sync_enabled: Optional[bool] = None) -> List[Subject]:
        sql = "SELECT * FROM subjects"
        params: List[Any] = []
        if sync_enabled is not None:
            sql += " WHERE sync_enabled = ?"
            params.append(int(sync_enabled))
        rows = await self._fetch(sql + " ORDER BY id", params)
        return [Subject(**r) for r in rows]

    async def subjects_due_for_search(self, searched_before: datetime) -> List[Subject]:
        """Subjects flagged for automatic search that were last searched
        before *searched_before*, or never."""
        rows = await self._fetch(
            "SELECT * FROM subjects WHERE auto_search = 1 "
            "AND (last_searched_at IS NULL OR last_searched_at < ?) "
            "ORDER BY last_searched_at IS NOT NULL, last_searched_at, id",
            [searched_before.isoformat()],
        )
        return [Subject(**r) for r in rows]

    async def mark_searched(self, subject_id: int, when: Optional[datetime] = None) -> None:
        when = when or datetime.now(timezone.utc)
        db = await self._conn()
        await db.execute(
            "UPDATE subjects SET last_searched_at = ? WHERE id = ?",
            (when.isoformat(), subject_id),
        )
        await db.commit()

    # ── Chapters ─────────────────────────────────────────────────────

    async def upsert_chapter(
        self,
        subject_id: int,
        source_key: str,
        *,
        number: Optional[int] = None,
        title: str = "",
        content: Optional[str] = None,
        status: ChapterStatus = ChapterStatus.confirmed,
        error: Optional[str] = None,
    ) -> None:
        """Insert or merge a chapter keyed by ``(subject_id, source_key)``.

        A failed attempt never overwrites a chapter that is already
        confirmed.
        """
        db = await self._conn()
        await db.execute(
            """
            INSERT INTO chapters (subject_id, source_key, number, title, content, status, error)
            VALUES (?,?,?,?,?,?,?)
            ON CONFLICT(subject_id, source_key) DO UPDATE SET
                number = excluded.number,
                title = excluded.title,
                content = excluded.content,
                status = excluded.status,
                error = excluded.error
            WHERE chapters.status != 'confirmed' OR excluded.status = 'confirmed'
            """,
            (subject_id, source_key, number, title, content, ChapterStatus(status).value, error),
        )
        await db.commit()

    async def confirmed_keys(self, subject_id: int) -> Set[str]:
        """Source keys of every confirmed chapter of the subject."""
        rows = await self._fetch(
            "SELECT source_key FROM chapters WHERE subject_id = ? AND status = ?",
            [subject_id, ChapterStatus.confirmed.value],
        )
        return {r["source_key"] for r in rows}

    async def list_chapters(
        self, subject_id: int, status: Optional[ChapterStatus] = None
    ) -> List[Chapter]:
        """Chapters ordered by number; unnumbered chapters go last."""
        sql = "SELECT * FROM chapters WHERE subject_id = ?"
        params: List[Any] = [subject_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(ChapterStatus(status).value)
        rows = await self._fetch(sql + " ORDER BY number IS NULL, number, id", params)
        return [Chapter(**r) for r in rows]

    # ── Chunks ───────────────────────────────────────────────────────

    async def replace_chunks(
        self, subject_id: int, chunks: Iterable[Chunk], job_id: Optional[str] = None
    ) -> int:
        """Atomically replace every chunk of the subject; return the new count."""
        db = await self._conn()
        rows = [
            (subject_id, c.position, c.title, c.content, job_id or c.job_id)
            for c in chunks
        ]
        try:
            await db.execute("DELETE FROM chunks WHERE subject_id = ?", (subject_id,))
            await db.executemany(
                "INSERT INTO chunks (subject_id, position, title, content, job_id) VALUES (?,?,?,?,?)",
                rows,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return len(rows)

    async def list_chunks(self, subject_id: int) -> List[Chunk]:
        rows = await self._fetch(
            "SELECT * FROM chunks WHERE subject_id = ? ORDER BY position", [subject_id]
        )
        return [Chunk(**r) for r in rows]

    # ── Helpers ───────────────────────────────────────────────────────

    async def _fetch(self, sql: str, params: List[Any]) -> List[dict]:
        db = await self._conn()
        async with db.execute(sql, params) as cur:
            rows = await cur.fetchall()
            cols = [d[0] for d in cur.description]
        return [dict(zip(cols, r)) for r in rows]
