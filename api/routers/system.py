"""Health and maintenance endpoints."""
from __future__ import annotations

import time

from fastapi import APIRouter, Depends

from ... import __version__
from ..deps.auth import require_auth
from ..deps.providers import Services, get_services
from ..schemas.envelope import ApiResponse

router = APIRouter(tags=["system"])


@router.get("/api/health")
async def health(services: Services = Depends(get_services)) -> ApiResponse:
    t0 = time.monotonic()
    counts = await services.store.count_by_status()
    data = {
        "status": "ok",
        "version": __version__,
        "jobs": counts,
        "discovery_queue_running": services.discovery.running,
        "operations_active": services.registry.is_active(),
        "last_cleanup": services.retention.last_summary,
    }
    return ApiResponse.success(data, elapsed_ms=(time.monotonic() - t0) * 1000)


@router.post("/api/cleanup", dependencies=[Depends(require_auth)])
async def run_cleanup(services: Services = Depends(get_services)) -> ApiResponse:
    """Run the retention sweep now."""
    return ApiResponse.success(await services.retention.sweep())


@router.post("/api/auto-discovery/check", dependencies=[Depends(require_auth)])
async def run_auto_discovery(services: Services = Depends(get_services)) -> ApiResponse:
    """Evaluate the auto-discovery policy now."""
    created = await services.auto_discovery.check()
    return ApiResponse.success({"created": created, "count": len(created)})
