"""Shared test fixtures for the bookrelay test suite."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

import pytest

from bookrelay.api.collaborators import Collaborators, FetchedContent, SyncResult
from bookrelay.api.errors import NetworkError, ParseError
from bookrelay.api.jobs.models import JobStatus


# ── Fakes ────────────────────────────────────────────────────────────


class FakeClock:
    """Settable clock returning aware UTC datetimes."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeDiscovery:
    def __init__(self) -> None:
        self.items: List[Dict[str, Any]] = []
        self.pages = 1
        self.delay = 0.0
        self.error: Optional[Exception] = None
        self.calls: List[tuple] = []

    async def search(self, term: str, page_limit: int) -> Dict[str, Any]:
        self.calls.append((term, page_limit))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return {"items": list(self.items), "pages_fetched": min(self.pages, page_limit)}


class FakeFetcher:
    """Serves every URL unless it is listed in ``fail``.

    When ``gate`` is set, each download waits for it first.
    """

    def __init__(self) -> None:
        self.fail: Set[str] = set()
        self.gate: Optional[asyncio.Event] = None
        self.delay = 0.0
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_one(self, url: str) -> FetchedContent:
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if url in self.fail:
                raise NetworkError(f"timeout fetching {url}")
            return FetchedContent(title="", raw_content=f"正文 {url}\n第二行")
        finally:
            self.in_flight -= 1


class FakeSync:
    """Keeps pushed notes in memory and skips ones it already holds."""

    def __init__(self) -> None:
        self.notes: Dict[int, Set[tuple]] = {}
        self.removed: List[int] = []
        self.broken: Set[int] = set()
        self.calls: List[int] = []

    async def sync_chunks(self, subject, chunks) -> SyncResult:
        self.calls.append(subject.id)
        if subject.id in self.broken:
            raise ParseError(f"note service rejected subject {subject.id}")
        held = self.notes.setdefault(subject.id, set())
        created = skipped = 0
        for chunk in chunks:
            key = (chunk.position, chunk.title, chunk.content)
            if key in held:
                skipped += 1
            else:
                held.add(key)
                created += 1
        return SyncResult(created=created, skipped=skipped)

    async def remove_subject(self, subject) -> None:
        self.removed.append(subject.id)
        self.notes.pop(subject.id, None)


# ── Core fixtures ────────────────────────────────────────────────────


@pytest.fixture
def make_items():
    """Build *n* fetch items with distinct forum URLs."""

    def _make(n: int, prefix: str = "https://forum.example/t") -> List[Dict[str, Any]]:
        return [{"url": f"{prefix}/{i}", "title": f"第{i + 1}章", "number": i + 1} for i in range(n)]

    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def collaborators():
    return Collaborators(discovery=FakeDiscovery(), fetcher=FakeFetcher(), sync=FakeSync())


@pytest.fixture
async def store(tmp_path):
    from bookrelay.api.jobs.store import JobStore

    s = JobStore(str(tmp_path / "jobs.db"))
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
async def library(tmp_path):
    from bookrelay.api.library.store import LibraryStore

    lib = LibraryStore(str(tmp_path / "library.db"))
    await lib.initialize()
    yield lib
    await lib.close()


@pytest.fixture
def registry(clock):
    from bookrelay.api.jobs.registry import OperationRegistry

    reg = OperationRegistry(clock=clock)
    yield reg
    reg.shutdown()


@pytest.fixture
def hub(store, registry):
    from bookrelay.api.jobs.progress import ProgressHub

    return ProgressHub(store, registry, heartbeat_seconds=30.0, progress_seconds=0.02)


@pytest.fixture
def ctx(store, library, registry, hub, collaborators):
    from bookrelay.api.jobs.base import ExecutionContext

    return ExecutionContext(
        store=store,
        library=library,
        registry=registry,
        hub=hub,
        collaborators=collaborators,
    )


@pytest.fixture
async def runner(ctx):
    from bookrelay.api.jobs.runner import JobRunner

    r = JobRunner(ctx)
    yield r
    await r.shutdown()


@pytest.fixture
def jobs(runner):
    from bookrelay.api.services.job_service import JobService

    return JobService(runner)


@pytest.fixture
async def subject(library):
    return await library.create_subject("诡秘之主", "爱潜水的乌贼", "蒸汽与机械的浪潮中")


@pytest.fixture
def wait_for_status(store):
    """Poll the ledger until a job reaches one of *statuses*."""

    async def _wait(job_id: str, *statuses: JobStatus, timeout: float = 2.0):
        wanted = statuses or (JobStatus.completed, JobStatus.failed)
        deadline = asyncio.get_running_loop().time() + timeout
        while True:
            rec = await store.get(job_id)
            if rec.status in wanted:
                return rec
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError(f"job {job_id} stuck in {rec.status.value}")
            await asyncio.sleep(0.01)

    return _wait


# ── API fixtures ─────────────────────────────────────────────────────


def _build_services(settings, store, library, registry, hub, runner, jobs):
    from bookrelay.api.deps.providers import Services
    from bookrelay.api.jobs.cleanup import RetentionService
    from bookrelay.api.jobs.resumption import ResumptionService
    from bookrelay.api.jobs.scheduler import DiscoveryQueueProcessor
    from bookrelay.api.services.auto_discovery import AutoDiscoveryService

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


@pytest.fixture
def services(tmp_path, store, library, registry, hub, runner, jobs):
    from bookrelay.api.config import ApiSettings

    settings = ApiSettings(
        db_path=str(tmp_path / "api.db"),
        auth_enabled=False,
        background_tasks=False,
    )
    return _build_services(settings, store, library, registry, hub, runner, jobs)


@pytest.fixture
def app(services):
    """Test FastAPI app wired to the per-test stores."""
    from bookrelay.api.main import create_app

    yield create_app(services=services)

    from bookrelay.api.deps.providers import get_runtime_config, get_settings

    get_settings.cache_clear()
    get_runtime_config.cache_clear()


@pytest.fixture
async def client(app):
    """Async HTTP client bound to the test app."""
    from httpx import ASGITransport, AsyncClient

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
    ) as ac:
        yield ac

