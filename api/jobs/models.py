"""Job data models.

Payloads are a tagged union keyed by ``kind``: each job kind has its own
payload model, and ``JobPayload`` resolves the right one from the ``kind``
field when a row is loaded from the ledger.
"""
from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from ... import config as _cfg


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobKind(str, enum.Enum):
    discovery = "discovery"
    fetch = "fetch"
    rechunk = "rechunk"
    manual_ingest = "manual_ingest"
    external_sync = "external_sync"


class JobStatus(str, enum.Enum):
    queued = "queued"
    processing = "processing"
    waiting_for_input = "waiting_for_input"
    completed = "completed"
    failed = "failed"


TERMINAL_STATUSES: FrozenSet[JobStatus] = frozenset({JobStatus.completed, JobStatus.failed})

# processing -> queued is deliberately absent; only JobStore.requeue may do it.
_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.queued: frozenset({JobStatus.processing}),
    JobStatus.processing: frozenset({
        JobStatus.completed,
        JobStatus.failed,
        JobStatus.waiting_for_input,
    }),
    JobStatus.waiting_for_input: frozenset({JobStatus.queued, JobStatus.failed}),
    JobStatus.completed: frozenset(),
    JobStatus.failed: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Return True if *current* -> *target* is an edge of the status graph."""
    return target in _TRANSITIONS[JobStatus(current)]


# ── Payload variants ─────────────────────────────────────────────────


class DiscoveryPayload(BaseModel):
    kind: Literal["discovery"] = "discovery"
    term: str = Field(min_length=1)
    page_limit: int = Field(default=_cfg.DISCOVERY_DEFAULT_PAGES, ge=1)
    auto: bool = False


class FetchItem(BaseModel):
    """One chapter to download, in the order chosen by the caller."""

    url: str
    title: str = ""
    number: Optional[int] = None


class FetchPayload(BaseModel):
    kind: Literal["fetch"] = "fetch"
    items: List[FetchItem] = Field(default_factory=list)
    source_file: Optional[str] = None


class RechunkPayload(BaseModel):
    kind: Literal["rechunk"] = "rechunk"
    chunk_size: int = Field(default=_cfg.CHUNK_SIZE_LINES, gt=0)
    sync_after: bool = False


class IngestMetadata(BaseModel):
    title: str = Field(min_length=1)
    author: str = ""
    description: str = ""


class ManualIngestPayload(BaseModel):
    kind: Literal["manual_ingest"] = "manual_ingest"
    file_path: str
    original_name: str = ""
    metadata: Optional[IngestMetadata] = None
    chunk_size: int = Field(default=_cfg.CHUNK_SIZE_LINES, gt=0)


class SyncSubtype(str, enum.Enum):
    sync_subject = "sync_subject"
    sync_all = "sync_all"
    recreate_subject = "recreate_subject"


class ExternalSyncPayload(BaseModel):
    kind: Literal["external_sync"] = "external_sync"
    job_subtype: SyncSubtype = SyncSubtype.sync_subject


JobPayload = Annotated[
    Union[
        DiscoveryPayload,
        FetchPayload,
        RechunkPayload,
        ManualIngestPayload,
        ExternalSyncPayload,
    ],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter = TypeAdapter(JobPayload)


def parse_payload(kind: JobKind | str, data: Dict[str, Any] | BaseModel | None) -> BaseModel:
    """Validate *data* as the payload variant for *kind*.

    Raises ``pydantic.ValidationError`` when the data does not fit, or when
    it names a different kind.
    """
    if isinstance(data, BaseModel):
        data = data.model_dump()
    body = dict(data or {})
    body.setdefault("kind", JobKind(kind).value)
    if body["kind"] != JobKind(kind).value:
        raise ValueError(f"Payload kind {body['kind']!r} does not match job kind {JobKind(kind).value!r}")
    return _payload_adapter.validate_python(body)


# ── Records ──────────────────────────────────────────────────────────


class JobProgress(BaseModel):
    completed_count: int = 0
    failed_count: int = 0
    total_count: int = 0


class JobRecord(BaseModel):
    """Persistent representation of a background job."""

    id: str
    kind: JobKind
    status: JobStatus = JobStatus.queued
    subject_id: Optional[int] = None
    payload: JobPayload
    progress: JobProgress = Field(default_factory=JobProgress)
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
