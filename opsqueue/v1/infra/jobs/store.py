"""
Job store: every read and write of ``job_queue`` rows goes through here.

Claims and outcome writes are compare-and-set updates. A claim only lands
where the row is still pending and due; an outcome only lands where the row
is still running under the same claimant. Overlapping dispatch passes
coordinate through these conditions alone.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from opsqueue.infra.database import utcnow
from opsqueue.v1.core.exceptions import StoreError
from opsqueue.v1.infra.jobs.models import Job, JobStatus
from opsqueue.v1.infra.jobs.results import ErrorKind
from opsqueue.v1.infra.jobs.schemas import JobListFilters

logger = logging.getLogger(__name__)

# Re-select rounds when concurrent claimants keep winning our candidates
MAX_CLAIM_ROUNDS = 3

CLAIM_ORDER = (Job.priority.desc(), Job.next_run_at.asc(), Job.seq.asc())


@asynccontextmanager
async def store_errors(
    session: AsyncSession, operation: str
) -> AsyncIterator[None]:
    """Roll back and surface database failures as StoreError."""
    try:
        yield
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(
            "Store operation failed",
            extra={"operation": operation, "error": str(e)},
        )
        raise StoreError(
            f"Store unavailable during {operation}",
            details={"operation": operation, "error": str(e)},
        ) from e


class JobStore:
    """Persistence operations over the job table."""

    def add_batch(self, session: AsyncSession, jobs: list[Job]) -> None:
        """Stage rows for insertion; the caller's commit makes them visible."""
        session.add_all(jobs)

    async def claim(
        self,
        session: AsyncSession,
        worker_id: str,
        limit: int,
        now: datetime | None = None,
    ) -> list[Job]:
        """
        Atomically move up to ``limit`` due pending jobs to running.

        Candidates are read in claim order, then each is transitioned with a
        conditional update. A candidate whose update matches no row was taken
        by another claimant and is skipped.
        """
        if limit <= 0:
            return []

        now = now or utcnow()
        claimed: list[UUID] = []

        for _ in range(MAX_CLAIM_ROUNDS):
            wanted = limit - len(claimed)
            candidate_query = (
                select(Job.id)
                .where(Job.status == JobStatus.PENDING.value, Job.next_run_at <= now)
                .order_by(*CLAIM_ORDER)
                .limit(wanted)
                .with_for_update(skip_locked=True)
            )
            candidates = list((await session.execute(candidate_query)).scalars().all())
            if not candidates:
                break

            for job_id in candidates:
                result = await session.execute(
                    update(Job)
                    .where(
                        Job.id == job_id,
                        Job.status == JobStatus.PENDING.value,
                        Job.next_run_at <= now,
                    )
                    .values(
                        status=JobStatus.RUNNING.value,
                        claimed_by=worker_id,
                        started_at=now,
                        ended_at=None,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed.append(job_id)

            await session.commit()

            if len(claimed) >= limit:
                break

        if not claimed:
            return []

        rows = await session.execute(
            select(Job)
            .where(Job.id.in_(claimed))
            .order_by(*CLAIM_ORDER)
            .execution_options(populate_existing=True)
        )
        jobs = list(rows.scalars().all())

        logger.info(
            "Claimed jobs",
            extra={
                "worker_id": worker_id,
                "job_count": len(jobs),
                "job_ids": [str(job.id) for job in jobs],
            },
        )
        return jobs

    async def _finish(
        self,
        session: AsyncSession,
        job: Job,
        worker_id: str,
        values: dict[str, Any],
    ) -> bool:
        """
        Stage an outcome that applies only while ``worker_id`` holds the claim.

        The caller commits, together with any activity entry for the outcome.
        """
        result = await session.execute(
            update(Job)
            .where(
                Job.id == job.id,
                Job.status == JobStatus.RUNNING.value,
                Job.claimed_by == worker_id,
            )
            .values(claimed_by=None, **values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            logger.warning(
                "Outcome discarded, claim no longer held",
                extra={"job_id": str(job.id), "worker_id": worker_id},
            )
            return False
        return True

    async def mark_succeeded(
        self,
        session: AsyncSession,
        job: Job,
        worker_id: str,
        result: dict[str, Any] | None,
        now: datetime,
    ) -> bool:
        return await self._finish(
            session,
            job,
            worker_id,
            {
                "status": JobStatus.SUCCEEDED.value,
                "ended_at": now,
                "result": result or {},
                "error": None,
                "error_kind": None,
                "updated_at": now,
            },
        )

    async def mark_retry(
        self,
        session: AsyncSession,
        job: Job,
        worker_id: str,
        *,
        attempts: int,
        next_run_at: datetime,
        error: str,
        error_kind: str,
        now: datetime,
    ) -> bool:
        return await self._finish(
            session,
            job,
            worker_id,
            {
                "status": JobStatus.PENDING.value,
                "attempts": attempts,
                "next_run_at": next_run_at,
                "ended_at": now,
                "error": error,
                "error_kind": error_kind,
                "updated_at": now,
            },
        )

    async def mark_dead(
        self,
        session: AsyncSession,
        job: Job,
        worker_id: str,
        *,
        attempts: int,
        error: str,
        error_kind: str,
        now: datetime,
    ) -> bool:
        return await self._finish(
            session,
            job,
            worker_id,
            {
                "status": JobStatus.DEAD.value,
                "attempts": attempts,
                "ended_at": now,
                "error": error,
                "error_kind": error_kind,
                "updated_at": now,
            },
        )

    async def release(
        self,
        session: AsyncSession,
        job: Job,
        worker_id: str,
        now: datetime,
    ) -> bool:
        """Return a claimed job to pending with its attempt count unchanged."""
        return await self._finish(
            session,
            job,
            worker_id,
            {
                "status": JobStatus.PENDING.value,
                "next_run_at": now,
                "started_at": None,
                "updated_at": now,
            },
        )

    async def find_stale(self, session: AsyncSession, cutoff: datetime) -> list[Job]:
        """Running jobs whose claim started before ``cutoff``."""
        result = await session.execute(
            select(Job)
            .where(
                Job.status == JobStatus.RUNNING.value,
                Job.started_at < cutoff,
            )
            .order_by(Job.started_at.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def release_stale(
        self,
        session: AsyncSession,
        job: Job,
        *,
        attempts: int,
        dead: bool,
        error: str,
        now: datetime,
    ) -> bool:
        """
        Take a stale job back from its claimant.

        Conditional on the claim observed by ``find_stale`` so a job that
        finished or was re-claimed in the meantime is left alone.
        """
        values: dict[str, Any] = {
            "attempts": attempts,
            "claimed_by": None,
            "error": error,
            "error_kind": ErrorKind.TRANSIENT.value,
            "updated_at": now,
        }
        if dead:
            values.update(status=JobStatus.DEAD.value, ended_at=now)
        else:
            values.update(status=JobStatus.PENDING.value, next_run_at=now)

        claimant_matches = (
            Job.claimed_by.is_(None)
            if job.claimed_by is None
            else Job.claimed_by == job.claimed_by
        )
        result = await session.execute(
            update(Job)
            .where(
                Job.id == job.id,
                Job.status == JobStatus.RUNNING.value,
                Job.started_at == job.started_at,
                claimant_matches,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get(self, session: AsyncSession, job_id: UUID) -> Job | None:
        result = await session.execute(
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def query(
        self, session: AsyncSession, filters: JobListFilters
    ) -> tuple[list[Job], int]:
        """Filtered read for reporting, newest first."""
        conditions = []
        if filters.status:
            conditions.append(Job.status.in_([s.value for s in filters.status]))
        if filters.correlation_id:
            conditions.append(Job.correlation_id == filters.correlation_id)
        if filters.job_type:
            conditions.append(Job.job_type == filters.job_type)
        if filters.since:
            conditions.append(Job.created_at >= filters.since)
        if filters.until:
            conditions.append(Job.created_at < filters.until)

        base_query = select(Job)
        if conditions:
            base_query = base_query.where(and_(*conditions))

        count_query = select(func.count()).select_from(base_query.subquery())
        total = (await session.execute(count_query)).scalar() or 0

        jobs_query = (
            base_query.order_by(Job.created_at.desc(), Job.seq.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        jobs = list((await session.execute(jobs_query)).scalars().all())
        return jobs, total
