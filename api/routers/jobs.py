"""Job management endpoints."""
from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse, ServerSentEvent

from ..deps.auth import require_auth
from ..deps.providers import get_job_service, get_progress_hub
from ..errors import JobNotFoundError
from ..jobs.models import JobKind, JobStatus
from ..jobs.progress import ProgressHub
from ..schemas.envelope import ApiResponse
from ..schemas.jobs import ConfirmIngestRequest, CreateJobRequest
from ..services.job_service import JobService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.post("", status_code=201, dependencies=[Depends(require_auth)])
async def create_job(
    body: CreateJobRequest,
    jobs: JobService = Depends(get_job_service),
) -> ApiResponse:
    rec = await jobs.create(body.kind, body.subject_id, body.payload)
    return ApiResponse.success(rec.model_dump(mode="json"))


@router.get("")
async def list_jobs(
    kind: Optional[JobKind] = None,
    status: Optional[JobStatus] = None,
    subject_id: Optional[int] = None,
    limit: int = 50,
    jobs: JobService = Depends(get_job_service),
) -> ApiResponse:
    records = await jobs.list_jobs(kind=kind, status=status, subject_id=subject_id, limit=limit)
    return ApiResponse.success([r.model_dump(mode="json") for r in records], total=len(records))


@router.get("/{job_id}")
async def get_job(
    job_id: str,
    jobs: JobService = Depends(get_job_service),
) -> ApiResponse:
    rec = await jobs.get(job_id)
    return ApiResponse.success(rec.model_dump(mode="json"))


@router.delete("/{job_id}", dependencies=[Depends(require_auth)])
async def delete_job(
    job_id: str,
    jobs: JobService = Depends(get_job_service),
) -> ApiResponse:
    await jobs.delete(job_id)
    return ApiResponse.success({"deleted": job_id})


@router.post("/{job_id}/retry", status_code=201, dependencies=[Depends(require_auth)])
async def retry_job(
    job_id: str,
    jobs: JobService = Depends(get_job_service),
) -> ApiResponse:
    rec = await jobs.retry(job_id)
    return ApiResponse.success({"retried_from": job_id, "job": rec.model_dump(mode="json")})


@router.post("/{job_id}/confirm", dependencies=[Depends(require_auth)])
async def confirm_upload(
    job_id: str,
    body: ConfirmIngestRequest,
    jobs: JobService = Depends(get_job_service),
) -> ApiResponse:
    rec = await jobs.confirm_ingest(job_id, body.metadata, body.subject_id)
    return ApiResponse.success(rec.model_dump(mode="json"))


@router.get("/{job_id}/stream")
async def stream_job(
    job_id: str,
    jobs: JobService = Depends(get_job_service),
    hub: ProgressHub = Depends(get_progress_hub),
):
    """Server-sent progress events; heartbeats arrive as comment lines."""
    await jobs.get(job_id)

    async def _generate():
        try:
            async for event in hub.stream(job_id):
                if event["type"] == "heartbeat":
                    yield ServerSentEvent(comment="heartbeat")
                else:
                    yield ServerSentEvent(data=json.dumps(event, ensure_ascii=False))
        except JobNotFoundError:
            logger.info("Job %s deleted while streaming", job_id)

    return EventSourceResponse(_generate())
