import asyncio
from collections.abc import AsyncGenerator
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from opsqueue.config.settings import Settings, get_settings
from opsqueue.infra.database import Database, get_database
from opsqueue.main import create_app
from opsqueue.v1.core.registries import JobRegistry
from opsqueue.v1.infra.jobs.models import Job
from opsqueue.v1.infra.jobs.results import JobResult
from opsqueue.v1.infra.jobs.routes import get_job_registry
from opsqueue.v1.infra.jobs.service import JobService
from opsqueue.v1.infra.jobs.store import JobStore
from opsqueue.v1.infra.jobs.worker import JobWorker


class RecordingHandler:
    """Handler returning (or raising) queued outcomes, then succeeding."""

    def __init__(self, outcomes: list[Any] | None = None, delay: float = 0.0):
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    async def execute(self, payload: dict[str, Any]) -> JobResult:
        self.calls.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else JobResult.ok({"ok": True})
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def recording_handler() -> type[RecordingHandler]:
    return RecordingHandler


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'opsqueue.db'}",
        environment="test",
        debug=False,
        cron_secret=None,
        job_concurrency=4,
        job_batch_size=25,
        job_time_budget_s=30.0,
        job_handler_timeout_s=5.0,
    )


@pytest.fixture
async def database(settings: Settings) -> AsyncGenerator[Database, None]:
    db = Database(settings)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    async with database.session() as session:
        yield session


@pytest.fixture
def job_service(settings: Settings) -> JobService:
    return JobService(settings)


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def make_worker(database: Database, settings: Settings):
    def _make(registry: JobRegistry, **kwargs: Any) -> JobWorker:
        return JobWorker(database, registry, settings, **kwargs)

    return _make


@pytest.fixture
def fetch_job(database: Database):
    """Read a job through a fresh session so no cached state leaks in."""

    async def _fetch(job_id) -> Job:
        async with database.session() as session:
            job = await JobStore().get(session, job_id)
            assert job is not None
            return job

    return _fetch


@pytest.fixture
def app(settings: Settings, database: Database, registry: JobRegistry):
    """Create a test FastAPI application bound to the test database."""
    app = create_app()

    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_database] = lambda: database
    app.dependency_overrides[get_job_registry] = lambda: registry

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def update_job(database: Database):
    """Force column values on a job, bypassing the store's conditions."""

    async def _update(job_id, **values: Any) -> None:
        async with database.session() as session:
            await session.execute(
                update(Job).where(Job.id == job_id).values(**values)
            )
            await session.commit()

    return _update
