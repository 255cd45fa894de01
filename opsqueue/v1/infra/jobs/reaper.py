"""
Stale claim recovery.

A job left ``running`` by an interrupted worker never resolves on its own.
Anything running longer than the staleness threshold is counted as one failed
transient attempt and either requeued for immediate retry or, when that
attempt exhausts the ceiling, moved to ``dead``.
"""

from datetime import datetime, timedelta

from opsqueue.config.logging import get_logger
from opsqueue.config.settings import Settings
from opsqueue.infra.database import Database, utcnow
from opsqueue.v1.infra.activity.service import SYSTEM_ACTOR, ActivityLog
from opsqueue.v1.infra.jobs.results import ErrorKind
from opsqueue.v1.infra.jobs.schemas import ReapReport
from opsqueue.v1.infra.jobs.store import JobStore, store_errors

logger = get_logger(__name__)


class StaleJobReaper:
    def __init__(
        self,
        database: Database,
        settings: Settings,
        store: JobStore | None = None,
        activity: ActivityLog | None = None,
    ):
        self.database = database
        self.settings = settings
        self.store = store or JobStore()
        self.activity = activity or ActivityLog()

    async def reap(
        self,
        *,
        now: datetime | None = None,
        stale_after_s: float | None = None,
        actor: str = SYSTEM_ACTOR,
    ) -> ReapReport:
        now = now or utcnow()
        threshold = stale_after_s or self.settings.job_stale_after_s
        cutoff = now - timedelta(seconds=threshold)
        report = ReapReport()

        async with self.database.session() as session:
            async with store_errors(session, "reap"):
                stale_jobs = await self.store.find_stale(session, cutoff)

                for job in stale_jobs:
                    attempts = min(job.attempts + 1, job.max_attempts)
                    dead = attempts >= job.max_attempts
                    error = (
                        f"Claim by {job.claimed_by or 'unknown worker'} "
                        f"went stale after {threshold:g}s"
                    )

                    released = await self.store.release_stale(
                        session, job, attempts=attempts, dead=dead, error=error, now=now
                    )
                    if not released:
                        continue

                    report.job_ids.append(job.id)
                    if dead:
                        report.dead += 1
                        self.activity.record(
                            session,
                            actor=actor,
                            action="job_dead",
                            entity_type="job",
                            entity_id=job.id,
                            details={
                                "job_type": job.job_type,
                                "attempts": attempts,
                                "error": error,
                                "error_kind": ErrorKind.TRANSIENT.value,
                                "reaped": True,
                            },
                        )
                    else:
                        report.requeued += 1

                await session.commit()

        if report.total:
            logger.warning(
                "Reaped stale jobs",
                requeued=report.requeued,
                dead=report.dead,
                stale_after_s=threshold,
            )
        return report
