"""Contracts for the external collaborators the job executors call.

The orchestration core never scrapes, formats or talks to the note service
itself; it goes through these narrow interfaces.  ``Collaborators`` bundles
one implementation of each, and unconfigured slots raise
``CollaboratorUnavailableError`` so jobs that need them fail cleanly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, Field

from .errors import CollaboratorUnavailableError
from .library.models import Chunk, Subject


# ── Exchange types ───────────────────────────────────────────────────


class SearchCandidate(BaseModel):
    url: str
    title: str = ""
    number: Optional[int] = None


class SearchResult(BaseModel):
    items: List[SearchCandidate] = Field(default_factory=list)
    pages_fetched: int = 0


class FetchedContent(BaseModel):
    title: str = ""
    raw_content: str


class ChapterDraft(BaseModel):
    number: Optional[int] = None
    title: str = ""
    content: str = ""


class ChunkDraft(BaseModel):
    position: int
    title: str
    content: str


class SyncResult(BaseModel):
    created: int = 0
    updated: int = 0
    skipped: int = 0


# ── Protocols ────────────────────────────────────────────────────────


@runtime_checkable
class DiscoverySource(Protocol):
    async def search(self, term: str, page_limit: int) -> SearchResult | Dict[str, Any]:
        """Search the forum; may raise ``NetworkError`` or ``ParseError``."""


@runtime_checkable
class ContentFetcher(Protocol):
    async def fetch_one(self, url: str) -> FetchedContent | Dict[str, Any]:
        """Download one chapter page and return its title and raw text."""


@runtime_checkable
class Transformer(Protocol):
    def build_chunks(
        self,
        items: Sequence[ChapterDraft],
        title: str,
        chunk_size: int,
        metadata: Dict[str, Any],
    ) -> List[ChunkDraft]:
        """Must be deterministic: identical inputs give identical chunks."""

    def split_chapters(self, text: str, title: str) -> List[ChapterDraft]:
        """Split a whole-book text into chapters."""


@runtime_checkable
class NoteSync(Protocol):
    async def sync_chunks(self, subject: Subject, chunks: Sequence[Chunk]) -> SyncResult | Dict[str, Any]:
        """Push chunks to the note service; must skip notes that already exist."""

    async def remove_subject(self, subject: Subject) -> None:
        """Delete everything the note service holds for the subject."""


# ── Unconfigured placeholders ────────────────────────────────────────


class _Unconfigured:
    def __init__(self, role: str) -> None:
        self._role = role

    def _fail(self) -> None:
        raise CollaboratorUnavailableError(f"No {self._role} collaborator is configured")


class UnconfiguredDiscovery(_Unconfigured):
    def __init__(self) -> None:
        super().__init__("discovery")

    async def search(self, term: str, page_limit: int) -> SearchResult:
        self._fail()


class UnconfiguredFetcher(_Unconfigured):
    def __init__(self) -> None:
        super().__init__("fetch")

    async def fetch_one(self, url: str) -> FetchedContent:
        self._fail()


class UnconfiguredSync(_Unconfigured):
    def __init__(self) -> None:
        super().__init__("note sync")

    async def sync_chunks(self, subject: Subject, chunks: Sequence[Chunk]) -> SyncResult:
        self._fail()

    async def remove_subject(self, subject: Subject) -> None:
        self._fail()


def _default_transformer() -> Transformer:
    from .services.chunker import LineChunker

    return LineChunker()


@dataclass
class Collaborators:
    """One implementation per collaborator role."""

    discovery: DiscoverySource = field(default_factory=UnconfiguredDiscovery)
    fetcher: ContentFetcher = field(default_factory=UnconfiguredFetcher)
    transformer: Transformer = field(default_factory=_default_transformer)
    sync: NoteSync = field(default_factory=UnconfiguredSync)
