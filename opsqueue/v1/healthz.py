from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from opsqueue.config.settings import Settings, SettingsDep
from opsqueue.infra.database import get_session
from opsqueue.v1.core.exceptions import create_success_response
from opsqueue.v1.infra.jobs.models import Job, JobStatus

router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Queue backlog and stuck-claim indicators."""

    queue_depth: int = 0
    stale_running_count: int = 0
    oldest_due_age_seconds: int | None = None
    dead_count: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Health check with database connectivity and queue status."""

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(session)
    queue_health = None
    if db_health.connected:
        try:
            queue_health = await _check_queue_health(session, settings)
        except SQLAlchemyError:
            # Tables may not exist yet on a fresh database
            await session.rollback()

    health_data = {
        "ok": db_health.connected,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "queue": queue_health.model_dump() if queue_health else None,
    }

    return create_success_response(data=health_data)


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except SQLAlchemyError as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(session: AsyncSession, settings: Settings) -> QueueHealth:
    now = datetime.now(UTC)

    depth_result = await session.execute(
        select(func.count(Job.seq)).where(
            Job.status.in_([JobStatus.PENDING.value, JobStatus.RUNNING.value])
        )
    )
    queue_depth = depth_result.scalar() or 0

    # Running jobs the next reap would recover
    stale_cutoff = now - timedelta(seconds=settings.job_stale_after_s)
    stale_result = await session.execute(
        select(func.count(Job.seq)).where(
            Job.status == JobStatus.RUNNING.value, Job.started_at < stale_cutoff
        )
    )
    stale_running_count = stale_result.scalar() or 0

    oldest_result = await session.execute(
        select(Job.next_run_at)
        .where(Job.status == JobStatus.PENDING.value, Job.next_run_at <= now)
        .order_by(Job.next_run_at.asc())
        .limit(1)
    )
    oldest_due = oldest_result.scalar_one_or_none()
    oldest_due_age_seconds = int((now - oldest_due).total_seconds()) if oldest_due else None

    dead_result = await session.execute(
        select(func.count(Job.seq)).where(Job.status == JobStatus.DEAD.value)
    )
    dead_count = dead_result.scalar() or 0

    return QueueHealth(
        queue_depth=queue_depth,
        stale_running_count=stale_running_count,
        oldest_due_age_seconds=oldest_due_age_seconds,
        dead_count=dead_count,
    )
