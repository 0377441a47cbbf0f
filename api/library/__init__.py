"""Subjects (books), their chapters and chunks."""
from .models import Chapter, ChapterStatus, Chunk, Subject
from .store import LibraryStore

__all__ = ["Chapter", "ChapterStatus", "Chunk", "LibraryStore", "Subject"]
