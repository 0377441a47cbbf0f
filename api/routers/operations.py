"""Live operation (bot status) endpoints."""
from __future__ import annotations

import asyncio
import json
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from ... import config as _cfg
from ..deps.providers import Services, get_registry, get_services
from ..jobs.registry import OperationRegistry
from ..schemas.envelope import ApiResponse

router = APIRouter(prefix="/api/operations", tags=["operations"])


async def _status_snapshot(services: Services) -> Dict[str, Any]:
    registry = services.registry
    return {
        "is_active": registry.is_active(),
        "idle_seconds": round(registry.idle_duration().total_seconds(), 1),
        "summary": registry.summary(),
        "operations": [op.to_dict() for op in registry.list_operations()],
        "jobs": await services.store.count_by_status(),
        "discovery_busy": services.discovery.busy,
        "dispatched": services.runner.pending_count,
    }


@router.get("")
async def list_operations(services: Services = Depends(get_services)) -> ApiResponse:
    return ApiResponse.success(await _status_snapshot(services))


@router.get("/summary")
async def operation_summary(registry: OperationRegistry = Depends(get_registry)) -> ApiResponse:
    return ApiResponse.success(registry.summary())


@router.get("/status/stream")
async def status_stream(request: Request, services: Services = Depends(get_services)):
    """Push the status snapshot every few seconds until the client leaves."""

    async def _generate():
        while not await request.is_disconnected():
            yield {"event": "status", "data": json.dumps(await _status_snapshot(services))}
            await asyncio.sleep(_cfg.STATUS_STREAM_SECONDS)

    return EventSourceResponse(_generate())
