"""Request bodies for job and subject endpoints."""
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..jobs.models import IngestMetadata, JobKind


class CreateJobRequest(BaseModel):
    kind: JobKind
    subject_id: Optional[int] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class ConfirmIngestRequest(BaseModel):
    metadata: IngestMetadata
    subject_id: Optional[int] = None


class CreateSubjectRequest(BaseModel):
    title: str = Field(min_length=1)
    author: str = ""
    description: str = ""
    auto_search: bool = False
    sync_enabled: bool = False
