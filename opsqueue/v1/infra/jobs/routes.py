"""
Job queue API endpoints.

Trigger endpoints (enqueue, dispatch, reap) are what the scheduler calls;
the rest are operator-facing reporting and administration.
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from opsqueue.config.logging import bind_trigger_context
from opsqueue.config.settings import Settings, SettingsDep
from opsqueue.infra.database import Database, DatabaseDep, get_session
from opsqueue.v1.core.exceptions import NotFoundError, create_success_response
from opsqueue.v1.core.registries import JobRegistry
from opsqueue.v1.core.security import TriggerAuthDep
from opsqueue.v1.infra.jobs.models import JobStatus
from opsqueue.v1.infra.jobs.registry_init import load_job_registry
from opsqueue.v1.infra.jobs.schemas import (
    DispatchRequest,
    EnqueueBatchRequest,
    JobActionResponse,
    JobListFilters,
    JobListResponse,
    JobResponse,
)
from opsqueue.v1.infra.jobs.service import JobService
from opsqueue.v1.infra.jobs.worker import JobWorker

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])
worker_router = APIRouter(prefix="/worker", tags=["worker"])


def get_job_registry(
    request: Request,
    settings: Settings = SettingsDep,
    database: Database = DatabaseDep,
) -> JobRegistry:
    """The application's job registry, built on first use."""
    registry = getattr(request.app.state, "job_registry", None)
    if registry is None:
        registry = load_job_registry(settings, database)
        request.app.state.job_registry = registry
    return registry


JobRegistryDep = Depends(get_job_registry)


@router.post("/batches", response_model=dict, dependencies=[TriggerAuthDep])
async def enqueue_batch(
    batch: EnqueueBatchRequest,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Enqueue related jobs as one batch sharing a correlation id."""
    bind_trigger_context("http", operation="enqueue")

    result = await JobService(settings).enqueue_batch(session, batch.jobs)

    logger.info(
        "Batch enqueued via API",
        extra={"correlation_id": str(result.correlation_id), "count": result.count},
    )
    return create_success_response(data=result.model_dump(mode="json"))


@router.post("/batches/{preset}", response_model=dict, dependencies=[TriggerAuthDep])
async def enqueue_preset(
    preset: str,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Enqueue a named scheduled batch (morning, evening)."""
    bind_trigger_context("http", operation="enqueue_preset", preset=preset)

    result = await JobService(settings).enqueue_preset(session, preset)
    return create_success_response(data=result.model_dump(mode="json"))


@router.get("", response_model=dict)
async def list_jobs(
    status: list[JobStatus] | None = Query(
        default=None, description="Filter by status"
    ),
    correlation_id: UUID | None = Query(default=None, description="Filter by batch"),
    job_type: str | None = Query(default=None, description="Filter by job type"),
    since: datetime | None = Query(default=None, description="Created at or after"),
    until: datetime | None = Query(default=None, description="Created before"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """List jobs with filtering and pagination."""
    filters = JobListFilters(
        status=status,
        correlation_id=correlation_id,
        job_type=job_type,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    jobs, total = await JobService(settings).list_jobs(session, filters)

    response_data = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )
    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/stats/overview", response_model=dict)
async def get_job_stats(
    window_hours: int = Query(default=24, ge=1, le=24 * 30),
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get queue statistics."""
    stats = await JobService(settings).get_job_stats(session, window_hours)
    return create_success_response(data=stats.model_dump(mode="json"))


@router.get("/correlations/{correlation_id}", response_model=dict)
async def get_correlation_summary(
    correlation_id: UUID,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Status counts for the jobs of one enqueued batch."""
    summary = await JobService(settings).get_correlation_summary(
        session, correlation_id
    )
    return create_success_response(data=summary.model_dump(mode="json"))


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Get a specific job by ID."""
    job = await JobService(settings).get_job(session, job_id)
    if not job:
        raise NotFoundError("Job not found", details={"job_id": str(job_id)})

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )


@router.post("/{job_id}/requeue", response_model=dict, dependencies=[TriggerAuthDep])
async def requeue_job(
    job_id: UUID,
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Reset a dead job to pending with a fresh attempt budget."""
    job = await JobService(settings).requeue_dead_job(session, job_id)

    logger.info("Job requeued via API", extra={"job_id": str(job_id)})

    response = JobActionResponse(success=True, job_id=job.id, status=job.status)
    return create_success_response(data=response.model_dump(mode="json"))


@worker_router.post("/run", response_model=dict, dependencies=[TriggerAuthDep])
async def run_worker(
    dispatch: DispatchRequest | None = Body(default=None),
    database: Database = DatabaseDep,
    registry: JobRegistry = JobRegistryDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Run one bounded dispatch pass."""
    dispatch = dispatch or DispatchRequest()
    worker = JobWorker(database, registry, settings)
    bind_trigger_context("http", operation="dispatch", worker_id=worker.worker_id)

    report = await worker.run_once(
        batch_size=dispatch.batch_size, time_budget_s=dispatch.time_budget_s
    )
    return create_success_response(data=report.model_dump(mode="json"))


@worker_router.post("/reap", response_model=dict, dependencies=[TriggerAuthDep])
async def reap_stale_jobs(
    database: Database = DatabaseDep,
    registry: JobRegistry = JobRegistryDep,
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Recover jobs whose claim went stale."""
    worker = JobWorker(database, registry, settings)
    bind_trigger_context("http", operation="reap", worker_id=worker.worker_id)

    report = await worker.reap()
    return create_success_response(data=report.model_dump(mode="json"))
