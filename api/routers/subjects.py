"""Subject (book) endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..deps.auth import require_auth
from ..deps.providers import Services, get_services
from ..schemas.envelope import ApiResponse
from ..schemas.jobs import CreateSubjectRequest

router = APIRouter(prefix="/api/subjects", tags=["subjects"])


@router.post("", status_code=201, dependencies=[Depends(require_auth)])
async def create_subject(
    body: CreateSubjectRequest,
    services: Services = Depends(get_services),
) -> ApiResponse:
    subject = await services.library.create_subject(
        body.title, body.author, body.description,
        auto_search=body.auto_search, sync_enabled=body.sync_enabled,
    )
    return ApiResponse.success(subject.model_dump())


@router.get("")
async def list_subjects(services: Services = Depends(get_services)) -> ApiResponse:
    subjects = await services.library.list_subjects()
    return ApiResponse.success([s.model_dump() for s in subjects], total=len(subjects))


@router.get("/{subject_id}")
async def get_subject(subject_id: int, services: Services = Depends(get_services)) -> ApiResponse:
    subject = await services.library.get_subject(subject_id)
    chapters = await services.library.list_chapters(subject_id)
    chunks = await services.library.list_chunks(subject_id)
    return ApiResponse.success({
        **subject.model_dump(),
        "chapters": [c.model_dump(exclude={"content"}) for c in chapters],
        "chunk_count": len(chunks),
    })
