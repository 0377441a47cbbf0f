"""bookrelay: background job orchestration for book ingestion and note sync."""

__version__ = "1.0.0"
