"""Library data models."""
from __future__ import annotations

import enum
from typing import Optional

from pydantic import BaseModel


class ChapterStatus(str, enum.Enum):
    confirmed = "confirmed"
    failed = "failed"


class Subject(BaseModel):
    id: int
    title: str
    author: str = ""
    description: str = ""
    auto_search: bool = False
    sync_enabled: bool = False
    last_searched_at: Optional[str] = None
    created_at: Optional[str] = None


class Chapter(BaseModel):
    """One sub-item of a subject.

    ``source_key`` identifies where the chapter came from: the forum URL for
    fetched chapters, ``<file name>#<n>`` for ingested ones.
    """

    id: int
    subject_id: int
    source_key: str
    number: Optional[int] = None
    title: str = ""
    content: Optional[str] = None
    status: ChapterStatus = ChapterStatus.confirmed
    error: Optional[str] = None


class Chunk(BaseModel):
    subject_id: int
    position: int
    title: str
    content: str
    job_id: Optional[str] = None
