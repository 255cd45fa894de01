"""
Trigger-driven job worker.

Each ``run_once`` call wakes, reaps stale claims, drains eligible jobs in
priority order within a claim ceiling and a time budget, then returns a
report. Nothing is left running in the background afterwards.
"""

import asyncio
import os
import socket
import time
import uuid
from datetime import timedelta

from opsqueue.config.logging import get_logger
from opsqueue.config.settings import Settings
from opsqueue.infra.database import Database, utcnow
from opsqueue.v1.core.registries import JobRegistry
from opsqueue.v1.infra.activity.service import ActivityLog
from opsqueue.v1.infra.jobs.models import Job
from opsqueue.v1.infra.jobs.reaper import StaleJobReaper
from opsqueue.v1.infra.jobs.results import ErrorKind, JobResult
from opsqueue.v1.infra.jobs.retry import RetryPolicy
from opsqueue.v1.infra.jobs.schemas import DispatchReport, JobOutcome, ReapReport
from opsqueue.v1.infra.jobs.store import JobStore, store_errors

logger = get_logger(__name__)

# Floor for the per-job timeout when the budget is nearly spent
MIN_JOB_TIMEOUT_S = 1.0


class JobWorker:
    """
    Claims and executes queued jobs.

    Features:
    - Compare-and-set claims, safe under overlapping invocations
    - Bounded concurrency per claim round
    - Per-job timeout and fault isolation
    - Attempt-counted retries through the retry policy
    """

    def __init__(
        self,
        database: Database,
        registry: JobRegistry,
        settings: Settings,
        *,
        policy: RetryPolicy | None = None,
        store: JobStore | None = None,
        activity: ActivityLog | None = None,
        worker_id: str | None = None,
    ):
        self.database = database
        self.registry = registry
        self.settings = settings
        self.policy = policy or RetryPolicy.from_settings(settings)
        self.store = store or JobStore()
        self.activity = activity or ActivityLog()
        self.reaper = StaleJobReaper(database, settings, self.store, self.activity)
        self.worker_id = worker_id or (
            f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"
        )
        self.logger = logger.bind(worker_id=self.worker_id)

    async def reap(self, stale_after_s: float | None = None) -> ReapReport:
        """Recover jobs whose claim went stale."""
        return await self.reaper.reap(
            stale_after_s=stale_after_s, actor=self.worker_id
        )

    async def run_once(
        self,
        batch_size: int | None = None,
        time_budget_s: float | None = None,
    ) -> DispatchReport:
        """
        One bounded dispatch pass.

        Args:
            batch_size: Maximum jobs to claim in this pass
            time_budget_s: Wall time after which no further jobs are claimed

        Returns:
            Counts by outcome plus per-job outcomes

        Raises:
            StoreError: the job store failed; the pass is aborted
        """
        batch_size = batch_size or self.settings.job_batch_size
        time_budget_s = time_budget_s or self.settings.job_time_budget_s

        started = time.monotonic()
        deadline = started + time_budget_s
        report = DispatchReport(worker_id=self.worker_id)

        self.logger.info(
            "Dispatch pass started",
            batch_size=batch_size,
            time_budget_s=time_budget_s,
            concurrency=self.settings.job_concurrency,
        )

        report.reaped = await self.reap()

        while report.claimed < batch_size:
            if time.monotonic() >= deadline:
                report.skipped_budget = True
                break

            limit = min(self.settings.job_concurrency, batch_size - report.claimed)
            async with self.database.session() as session:
                async with store_errors(session, "claim"):
                    jobs = await self.store.claim(session, self.worker_id, limit)

            if not jobs:
                break
            report.claimed += len(jobs)

            results = await asyncio.gather(
                *(self._process_job(job, deadline) for job in jobs),
                return_exceptions=True,
            )

            failures = [r for r in results if isinstance(r, BaseException)]
            for outcome in results:
                if isinstance(outcome, JobOutcome):
                    report.add(outcome)
                elif outcome is None:
                    report.lost += 1
            if failures:
                raise failures[0]

        report.duration_ms = int((time.monotonic() - started) * 1000)
        await self._record_sweep(report, batch_size)

        self.logger.info(
            "Dispatch pass completed",
            claimed=report.claimed,
            succeeded=report.succeeded,
            retried=report.retried,
            dead=report.dead,
            released=report.released,
            reaped=report.reaped.total,
            skipped_budget=report.skipped_budget,
            duration_ms=report.duration_ms,
        )
        return report

    async def _process_job(self, job: Job, deadline: float) -> JobOutcome | None:
        """Run one claimed job and persist its outcome."""
        job_logger = self.logger.bind(job_id=str(job.id), job_type=job.job_type)
        timeout = min(
            self.settings.job_handler_timeout_s,
            max(deadline - time.monotonic(), MIN_JOB_TIMEOUT_S),
        )
        budget_capped = timeout < self.settings.job_handler_timeout_s

        job_logger.info("Processing job started", attempts=job.attempts)
        started = time.monotonic()
        result = await self._execute(job, timeout, budget_capped, job_logger)
        duration_ms = int((time.monotonic() - started) * 1000)

        if result is None:
            return await self._release(job, duration_ms, job_logger)
        return await self._record_outcome(job, result, duration_ms, job_logger)

    async def _execute(
        self, job: Job, timeout: float, budget_capped: bool, job_logger
    ) -> JobResult | None:
        """
        Per-job boundary: nothing a handler does escapes as an exception.

        Returns None when the pass's time budget, not the handler timeout,
        cut the execution short.
        """
        try:
            result = await asyncio.wait_for(
                self.registry.dispatch(job.job_type, dict(job.payload)),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            if budget_capped:
                job_logger.info("Job interrupted by time budget", timeout_s=timeout)
                return None
            job_logger.warning("Job timed out", timeout_s=timeout)
            return JobResult.failed(
                f"Job timed out after {timeout:g}s", ErrorKind.TRANSIENT
            )
        except Exception as e:
            job_logger.warning(
                "Job handler raised", error=str(e), exception=e.__class__.__name__
            )
            return JobResult.from_exception(e)

        if not isinstance(result, JobResult):
            job_logger.error(
                "Job handler returned an invalid result",
                result_type=type(result).__name__,
            )
            return JobResult.failed(
                f"Handler returned {type(result).__name__}, expected JobResult",
                ErrorKind.PERMANENT,
            )
        return result

    async def _release(
        self, job: Job, duration_ms: int, job_logger
    ) -> JobOutcome | None:
        """Hand an interrupted job back to pending without counting an attempt."""
        now = utcnow()

        async with self.database.session() as session:
            async with store_errors(session, "release"):
                applied = await self.store.release(session, job, self.worker_id, now)
                await session.commit()

        if not applied:
            return None

        job_logger.info("Job released for a later pass", attempts=job.attempts)
        return JobOutcome(
            job_id=job.id,
            job_type=job.job_type,
            outcome="released",
            attempts=job.attempts,
            duration_ms=duration_ms,
            next_run_at=now,
        )

    async def _record_outcome(
        self, job: Job, result: JobResult, duration_ms: int, job_logger
    ) -> JobOutcome | None:
        now = utcnow()

        async with self.database.session() as session:
            async with store_errors(session, "record_outcome"):
                if result.success:
                    applied = await self.store.mark_succeeded(
                        session, job, self.worker_id, result.data, now
                    )
                    outcome = JobOutcome(
                        job_id=job.id,
                        job_type=job.job_type,
                        outcome="succeeded",
                        attempts=job.attempts,
                        duration_ms=duration_ms,
                    )
                else:
                    outcome = self._failure_outcome(job, result, duration_ms, now)
                    if outcome.outcome == "retried":
                        applied = await self.store.mark_retry(
                            session,
                            job,
                            self.worker_id,
                            attempts=outcome.attempts,
                            next_run_at=outcome.next_run_at,
                            error=outcome.error,
                            error_kind=outcome.error_kind,
                            now=now,
                        )
                    else:
                        applied = await self.store.mark_dead(
                            session,
                            job,
                            self.worker_id,
                            attempts=outcome.attempts,
                            error=outcome.error,
                            error_kind=outcome.error_kind,
                            now=now,
                        )
                        if applied:
                            self.activity.record(
                                session,
                                actor=self.worker_id,
                                action="job_dead",
                                entity_type="job",
                                entity_id=job.id,
                                details={
                                    "job_type": job.job_type,
                                    "attempts": outcome.attempts,
                                    "max_attempts": job.max_attempts,
                                    "error": outcome.error,
                                    "error_kind": outcome.error_kind,
                                    "correlation_id": str(job.correlation_id),
                                },
                            )

                await session.commit()

        if not applied:
            return None

        if outcome.outcome == "succeeded":
            job_logger.info("Job succeeded", duration_ms=duration_ms)
        elif outcome.outcome == "retried":
            job_logger.info(
                "Job scheduled for retry",
                attempts=outcome.attempts,
                next_run_at=outcome.next_run_at.isoformat(),
                error=outcome.error,
            )
        else:
            job_logger.error(
                "Job moved to dead",
                attempts=outcome.attempts,
                error_kind=outcome.error_kind,
                error=outcome.error,
            )
        return outcome

    def _failure_outcome(
        self, job: Job, result: JobResult, duration_ms: int, now
    ) -> JobOutcome:
        kind = result.error_kind or ErrorKind.TRANSIENT
        error = result.error_message or "Job failed"

        # An unregistered type can never succeed and is not a counted attempt
        if kind is ErrorKind.UNKNOWN_TYPE:
            return JobOutcome(
                job_id=job.id,
                job_type=job.job_type,
                outcome="dead",
                attempts=job.attempts,
                duration_ms=duration_ms,
                error=error,
                error_kind=kind.value,
            )

        attempts = min(job.attempts + 1, job.max_attempts)
        decision = self.policy.decide(attempts, job.max_attempts, kind)
        if decision.retry:
            return JobOutcome(
                job_id=job.id,
                job_type=job.job_type,
                outcome="retried",
                attempts=attempts,
                duration_ms=duration_ms,
                error=error,
                error_kind=kind.value,
                next_run_at=now + timedelta(seconds=decision.delay_seconds),
            )

        return JobOutcome(
            job_id=job.id,
            job_type=job.job_type,
            outcome="dead",
            attempts=attempts,
            duration_ms=duration_ms,
            error=error,
            error_kind=kind.value,
        )

    async def _record_sweep(self, report: DispatchReport, batch_size: int) -> None:
        async with self.database.session() as session:
            async with store_errors(session, "record_sweep"):
                self.activity.record(
                    session,
                    actor=self.worker_id,
                    action="sweep_completed",
                    entity_type="worker",
                    details={
                        "batch_size": batch_size,
                        "claimed": report.claimed,
                        "succeeded": report.succeeded,
                        "retried": report.retried,
                        "dead": report.dead,
                        "released": report.released,
                        "lost": report.lost,
                        "reaped_requeued": report.reaped.requeued,
                        "reaped_dead": report.reaped.dead,
                        "skipped_budget": report.skipped_budget,
                        "duration_ms": report.duration_ms,
                    },
                )
                await session.commit()
