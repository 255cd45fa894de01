"""
Job service for enqueueing batches and reporting on the queue.
"""

import logging
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from opsqueue.config.settings import Settings
from opsqueue.infra.database import utcnow
from opsqueue.v1.core.exceptions import NotFoundError, ValidationError
from opsqueue.v1.infra.activity.service import SYSTEM_ACTOR, ActivityLog
from opsqueue.v1.infra.jobs.models import Job, JobStatus
from opsqueue.v1.infra.jobs.schemas import (
    CorrelationSummary,
    EnqueueResult,
    JobListFilters,
    JobSpec,
    JobStatsResponse,
)
from opsqueue.v1.infra.jobs.store import JobStore, store_errors

logger = logging.getLogger(__name__)


# Named batches fired by the scheduled triggers
PRESETS: dict[str, list[JobSpec]] = {
    "morning": [
        JobSpec(job_type="news_scan", priority=10),
        JobSpec(job_type="email_scan", payload={"sources": "all"}, priority=10),
        JobSpec(job_type="bloomberg_scan", priority=9),
        JobSpec(job_type="score_ideas", payload={"limit": 50}, priority=8),
        JobSpec(job_type="select_daily", payload={"count": 6}, priority=7),
    ],
    "evening": [
        JobSpec(job_type="email_scan", payload={"sources": "all"}, priority=10),
        JobSpec(job_type="score_ideas", payload={"limit": 30}, priority=8),
        JobSpec(job_type="select_daily", payload={"count": 2}, priority=7),
    ],
}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class JobService:
    """Service for enqueueing jobs and reading queue state."""

    def __init__(
        self,
        settings: Settings,
        store: JobStore | None = None,
        activity: ActivityLog | None = None,
    ):
        self.settings = settings
        self.store = store or JobStore()
        self.activity = activity or ActivityLog()

    def _build_job(
        self,
        spec: JobSpec,
        correlation_id: UUID,
        parent_run_id: UUID | None,
        now: datetime,
    ) -> Job:
        if spec.run_at is not None:
            next_run_at = _as_utc(spec.run_at)
        elif spec.delay_seconds:
            next_run_at = now + timedelta(seconds=spec.delay_seconds)
        else:
            next_run_at = now

        priority = (
            spec.priority
            if spec.priority is not None
            else self.settings.job_default_priority
        )
        max_attempts = spec.max_attempts or self.settings.job_default_max_attempts

        return Job(
            id=uuid.uuid4(),
            job_type=spec.job_type,
            payload=dict(spec.payload),
            priority=priority,
            status=JobStatus.PENDING.value,
            attempts=0,
            max_attempts=max_attempts,
            next_run_at=next_run_at,
            correlation_id=correlation_id,
            parent_run_id=parent_run_id,
            created_at=now,
            updated_at=now,
        )

    async def enqueue_batch(
        self,
        session: AsyncSession,
        specs: Iterable[JobSpec | dict[str, Any]],
        *,
        parent_run_id: UUID | None = None,
        actor: str = SYSTEM_ACTOR,
    ) -> EnqueueResult:
        """
        Enqueue related jobs as one all-or-nothing batch.

        Args:
            session: Database session
            specs: Job specs; plain dicts are validated into ``JobSpec``
            parent_run_id: Run that owns the batch, if any
            actor: Recorded on the batch activity entry

        Returns:
            Assigned job ids and the shared correlation id

        Raises:
            ValueError: the batch is empty
            pydantic.ValidationError: a spec is invalid
            StoreError: the write failed; no job from the batch is visible
        """
        validated = [
            spec if isinstance(spec, JobSpec) else JobSpec.model_validate(spec)
            for spec in specs
        ]
        if not validated:
            raise ValueError("Nothing to enqueue: batch is empty")

        now = utcnow()
        correlation_id = uuid.uuid4()
        jobs = [
            self._build_job(spec, correlation_id, parent_run_id, now)
            for spec in validated
        ]
        job_ids = [job.id for job in jobs]
        job_types = sorted({job.job_type for job in jobs})

        async with store_errors(session, "enqueue"):
            self.store.add_batch(session, jobs)
            self.activity.record(
                session,
                actor=actor,
                action="batch_enqueued",
                entity_type="job_batch",
                entity_id=correlation_id,
                details={
                    "count": len(jobs),
                    "job_types": job_types,
                    "job_ids": [str(job_id) for job_id in job_ids],
                    "correlation_id": str(correlation_id),
                    "parent_run_id": str(parent_run_id) if parent_run_id else None,
                },
            )
            await session.commit()

        logger.info(
            "Batch enqueued",
            extra={
                "correlation_id": str(correlation_id),
                "job_count": len(jobs),
                "job_types": job_types,
                "parent_run_id": str(parent_run_id) if parent_run_id else None,
            },
        )

        return EnqueueResult(correlation_id=correlation_id, job_ids=job_ids)

    async def enqueue_preset(
        self, session: AsyncSession, name: str, *, actor: str = SYSTEM_ACTOR
    ) -> EnqueueResult:
        """Enqueue one of the named scheduled batches."""
        specs = PRESETS.get(name)
        if specs is None:
            raise NotFoundError(
                f"Unknown batch preset: {name}",
                details={"available": sorted(PRESETS)},
            )
        return await self.enqueue_batch(session, specs, actor=actor)

    async def list_jobs(
        self, session: AsyncSession, filters: JobListFilters
    ) -> tuple[list[Job], int]:
        async with store_errors(session, "list_jobs"):
            return await self.store.query(session, filters)

    async def get_job(self, session: AsyncSession, job_id: UUID) -> Job | None:
        async with store_errors(session, "get_job"):
            return await self.store.get(session, job_id)

    async def get_correlation_summary(
        self, session: AsyncSession, correlation_id: UUID
    ) -> CorrelationSummary:
        """Status counts for the jobs of one enqueue call."""
        async with store_errors(session, "correlation_summary"):
            status_result = await session.execute(
                select(Job.status, func.count(Job.seq))
                .where(Job.correlation_id == correlation_id)
                .group_by(Job.status)
            )
            by_status = dict(status_result.all())

            type_result = await session.execute(
                select(Job.job_type)
                .where(Job.correlation_id == correlation_id)
                .distinct()
                .order_by(Job.job_type)
            )
            job_types = list(type_result.scalars().all())

        total = sum(by_status.values())
        if total == 0:
            raise NotFoundError(
                "No jobs found for correlation id",
                details={"correlation_id": str(correlation_id)},
            )

        return CorrelationSummary(
            correlation_id=correlation_id,
            total=total,
            by_status=by_status,
            job_types=job_types,
        )

    async def get_job_stats(
        self, session: AsyncSession, window_hours: int = 24
    ) -> JobStatsResponse:
        """Queue statistics over jobs created in the last ``window_hours``."""
        cutoff = utcnow() - timedelta(hours=window_hours)
        in_window = Job.created_at >= cutoff

        async with store_errors(session, "job_stats"):
            # Jobs by status
            status_result = await session.execute(
                select(Job.status, func.count(Job.seq))
                .where(in_window)
                .group_by(Job.status)
            )
            by_status = dict(status_result.all())

            # Jobs by type
            type_result = await session.execute(
                select(Job.job_type, func.count(Job.seq))
                .where(in_window)
                .group_by(Job.job_type)
            )
            by_type = dict(type_result.all())

            # Queue depth counts everything outstanding, not just the window
            depth_result = await session.execute(
                select(func.count(Job.seq)).where(
                    Job.status.in_(
                        [JobStatus.PENDING.value, JobStatus.RUNNING.value]
                    )
                )
            )
            queue_depth = depth_result.scalar() or 0

            dead_result = await session.execute(
                select(func.count(Job.seq)).where(
                    and_(
                        Job.status == JobStatus.DEAD.value,
                        Job.ended_at >= cutoff,
                    )
                )
            )
            dead_in_window = dead_result.scalar() or 0

            runtime_result = await session.execute(
                select(Job.started_at, Job.ended_at).where(
                    and_(
                        Job.status == JobStatus.SUCCEEDED.value,
                        Job.ended_at >= cutoff,
                        Job.started_at.is_not(None),
                    )
                )
            )
            runtimes = [
                (ended - started).total_seconds()
                for started, ended in runtime_result.all()
            ]

        avg_runtime = round(sum(runtimes) / len(runtimes), 3) if runtimes else None

        return JobStatsResponse(
            window_hours=window_hours,
            total_jobs=sum(by_status.values()),
            by_status=by_status,
            by_type=by_type,
            queue_depth=queue_depth,
            dead_in_window=dead_in_window,
            avg_runtime_seconds=avg_runtime,
        )

    async def requeue_dead_job(
        self, session: AsyncSession, job_id: UUID, *, actor: str = "operator"
    ) -> Job:
        """Administrative reset of a dead job back to pending."""
        now = utcnow()

        async with store_errors(session, "requeue"):
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JobStatus.DEAD.value)
                .values(
                    status=JobStatus.PENDING.value,
                    attempts=0,
                    next_run_at=now,
                    claimed_by=None,
                    started_at=None,
                    ended_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount != 1:
                await session.rollback()
                job = await self.store.get(session, job_id)
                if job is None:
                    raise NotFoundError(
                        "Job not found", details={"job_id": str(job_id)}
                    )
                raise ValidationError(
                    "Only dead jobs can be requeued",
                    details={"job_id": str(job_id), "status": job.status},
                )

            self.activity.record(
                session,
                actor=actor,
                action="job_requeued",
                entity_type="job",
                entity_id=job_id,
                details={"job_id": str(job_id)},
            )
            await session.commit()

            job = await self.store.get(session, job_id)

        logger.info("Job requeued", extra={"job_id": str(job_id), "actor": actor})
        return job
