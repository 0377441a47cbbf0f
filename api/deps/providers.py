"""Service container and dependency providers for FastAPI ``Depends()``.

All long-lived services are built once per application by
``build_services`` and stored on ``app.state.services``; providers read
them from the request, so tests can hand ``create_app`` their own
container.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Request

from ..collaborators import Collaborators
from ..config import ApiSettings, RuntimeConfig
from ..jobs.base import ExecutionContext
from ..jobs.cleanup import RetentionService
from ..jobs.progress import ProgressHub
from ..jobs.registry import OperationRegistry
from ..jobs.resumption import ResumptionService
from ..jobs.runner import JobRunner
from ..jobs.scheduler import DiscoveryQueueProcessor
from ..jobs.store import JobStore
from ..library.store import LibraryStore
from ..services.auto_discovery import AutoDiscoveryService
from ..services.job_service import JobService

logger = logging.getLogger(__name__)


@lru_cache
def get_settings() -> ApiSettings:
    return ApiSettings()


@lru_cache
def get_runtime_config() -> RuntimeConfig:
    return RuntimeConfig()


@dataclass
class Services:
    settings: ApiSettings
    store: JobStore
    library: LibraryStore
    registry: OperationRegistry
    hub: ProgressHub
    runner: JobRunner
    jobs: JobService
    discovery: DiscoveryQueueProcessor
    resumption: ResumptionService
    retention: RetentionService
    auto_discovery: AutoDiscoveryService

    async def startup(self) -> None:
        """Open stores, recover interrupted jobs, then start the loops."""
        await self.store.initialize()
        await self.library.initialize()
        await self.resumption.run()
        if self.settings.background_tasks:
            self.discovery.start()
            self.retention.start()
            self.auto_discovery.start()

    async def shutdown(self) -> None:
        await self.auto_discovery.stop()
        await self.retention.stop()
        await self.discovery.stop()
        await self.runner.shutdown()
        self.registry.shutdown()
        await self.library.close()
        await self.store.close()


def build_services(
    settings: Optional[ApiSettings] = None,
    collaborators: Optional[Collaborators] = None,
) -> Services:
    """Wire every service for one application instance."""
    settings = settings or get_settings()
    store = JobStore(settings.db_path)
    library = LibraryStore(settings.db_path)
    registry = OperationRegistry()
    hub = ProgressHub(store, registry)
    ctx = ExecutionContext(
        store=store,
        library=library,
        registry=registry,
        hub=hub,
        collaborators=collaborators or Collaborators(),
    )
    runner = JobRunner(ctx)
    jobs = JobService(runner)
    return Services(
        settings=settings,
        store=store,
        library=library,
        registry=registry,
        hub=hub,
        runner=runner,
        jobs=jobs,
        discovery=DiscoveryQueueProcessor(runner),
        resumption=ResumptionService(runner),
        retention=RetentionService(store),
        auto_discovery=AutoDiscoveryService(jobs),
    )


# ── Request-scoped accessors ─────────────────────────────────────────


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_job_store(request: Request) -> JobStore:
    return get_services(request).store


def get_job_service(request: Request) -> JobService:
    return get_services(request).jobs


def get_registry(request: Request) -> OperationRegistry:
    return get_services(request).registry


def get_progress_hub(request: Request) -> ProgressHub:
    return get_services(request).hub
