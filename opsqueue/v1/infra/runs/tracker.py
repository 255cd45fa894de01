"""
Run tracker for multi-step orchestrations.

A run moves ``pending -> running -> success | partial | failed`` and reaches
a terminal state exactly once. Step counters are kept in-process while the
run is live and persisted to the ``runs`` table when it finishes, so the
summary can be reconstructed without reading child jobs.
"""

import time
import uuid
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from opsqueue.config.logging import get_logger
from opsqueue.config.settings import Settings
from opsqueue.infra.database import Database, utcnow
from opsqueue.v1.core.exceptions import RunStateError, StoreError
from opsqueue.v1.infra.activity.service import ActivityLog
from opsqueue.v1.infra.jobs.schemas import EnqueueResult, JobSpec
from opsqueue.v1.infra.jobs.service import JobService
from opsqueue.v1.infra.jobs.store import store_errors
from opsqueue.v1.infra.runs.models import Run, RunStatus
from opsqueue.v1.infra.runs.schemas import RunListFilters

logger = get_logger(__name__)

ENQUEUE_STEP = "enqueue"

_TRANSITIONS: dict[RunStatus, set[RunStatus]] = {
    RunStatus.PENDING: {RunStatus.RUNNING, RunStatus.FAILED},
    RunStatus.RUNNING: {RunStatus.SUCCESS, RunStatus.PARTIAL, RunStatus.FAILED},
}


@dataclass
class StepCounters:
    attempted: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass
class RunState:
    """In-process view of one run."""

    run_id: UUID
    kind: str
    params: dict[str, Any]
    status: RunStatus = RunStatus.PENDING
    started_at: datetime | None = None
    ended_at: datetime | None = None
    steps: dict[str, StepCounters] = field(default_factory=dict)
    extras: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    required_failure: str | None = None
    error_message: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def stats(self) -> dict[str, Any]:
        return {
            **self.extras,
            "steps": {name: asdict(c) for name, c in self.steps.items()},
            "errors": list(self.errors),
        }

    def resolve(self) -> RunStatus:
        steps = self.steps.values()
        if self.required_failure is not None:
            return RunStatus.FAILED
        # Failures with nothing done is a failed run, not a partial one
        if any(c.failed for c in steps) and not any(c.succeeded for c in steps):
            return RunStatus.FAILED
        if any(c.failed or c.skipped for c in steps):
            return RunStatus.PARTIAL
        return RunStatus.SUCCESS


class RunHandle:
    """Handle the orchestration uses to report progress on its run."""

    def __init__(self, tracker: "RunTracker", state: RunState):
        self._tracker = tracker
        self.state = state
        self._started = time.monotonic()

    @property
    def run_id(self) -> UUID:
        return self.state.run_id

    @property
    def status(self) -> RunStatus:
        return self.state.status

    def step(self, name: str) -> StepCounters:
        return self.state.steps.setdefault(name, StepCounters())

    def record_success(self, step: str, count: int = 1) -> None:
        counters = self.step(step)
        counters.attempted += count
        counters.succeeded += count

    def record_failure(
        self, step: str, message: str | None = None, count: int = 1
    ) -> None:
        counters = self.step(step)
        counters.attempted += count
        counters.failed += count
        if message:
            self.state.errors.append(f"{step}: {message}")

    def record_skip(self, step: str, count: int = 1) -> None:
        counters = self.step(step)
        counters.attempted += count
        counters.skipped += count

    def set_stat(self, key: str, value: Any) -> None:
        """Free-form counter or note persisted alongside the step counters."""
        self.state.extras[key] = value

    def fail_required(self, step: str, message: str) -> None:
        """A step the rest of the run depends on failed; the run resolves failed."""
        self.record_failure(step, message)
        if self.state.required_failure is None:
            self.state.required_failure = f"{step}: {message}"

    async def enqueue(self, specs: Iterable[JobSpec | dict[str, Any]]) -> EnqueueResult:
        """
        Enqueue child jobs tagged with this run.

        Completion of the children is not awaited; the acknowledgement is
        counted on the ``enqueue`` step. A failed enqueue is counted and
        re-raised.
        """
        try:
            result = await self._tracker.enqueue_children(self.state, specs)
        except (StoreError, ValueError) as e:
            self.record_failure(ENQUEUE_STEP, str(e))
            raise

        self.record_success(ENQUEUE_STEP)
        children = self.state.extras.setdefault("child_batches", [])
        children.append(
            {"correlation_id": str(result.correlation_id), "count": result.count}
        )
        return result

    async def finish(self, error_message: str | None = None) -> RunState:
        return await self._tracker.finish(self, error_message=error_message)

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)


class RunTracker:
    """
    Owns the in-process status table for runs started through it.

    One tracker per embedding process; nothing here is module-global.
    """

    def __init__(
        self,
        database: Database,
        settings: Settings,
        *,
        job_service: JobService | None = None,
        activity: ActivityLog | None = None,
    ):
        self.database = database
        self.settings = settings
        self.activity = activity or ActivityLog()
        self.job_service = job_service or JobService(settings, activity=self.activity)
        self._runs: dict[UUID, RunState] = {}

    def _check_transition(self, state: RunState, target: RunStatus) -> None:
        if target not in _TRANSITIONS.get(state.status, set()):
            raise RunStateError(
                f"Run cannot move from {state.status.value} to {target.value}",
                details={"run_id": str(state.run_id), "status": state.status.value},
            )

    async def start(self, kind: str, params: dict[str, Any] | None = None) -> RunHandle:
        """Create the run record and move it straight to running."""
        state = RunState(run_id=uuid.uuid4(), kind=kind, params=dict(params or {}))
        now = utcnow()

        async with self.database.session() as session:
            async with store_errors(session, "run_start"):
                session.add(
                    Run(
                        id=state.run_id,
                        kind=kind,
                        status=RunStatus.PENDING.value,
                        params=state.params,
                        stats={},
                        created_at=now,
                    )
                )
                await session.commit()

                self._check_transition(state, RunStatus.RUNNING)
                await session.execute(
                    update(Run)
                    .where(Run.id == state.run_id)
                    .values(status=RunStatus.RUNNING.value, started_at=now)
                )
                await session.commit()

        state.status = RunStatus.RUNNING
        state.started_at = now
        self._runs[state.run_id] = state
        logger.info("Run started", run_id=str(state.run_id), kind=kind)
        return RunHandle(self, state)

    async def enqueue_children(
        self, state: RunState, specs: Iterable[JobSpec | dict[str, Any]]
    ) -> EnqueueResult:
        if state.is_terminal:
            raise RunStateError(
                "Cannot enqueue from a finished run",
                details={"run_id": str(state.run_id)},
            )
        async with self.database.session() as session:
            return await self.job_service.enqueue_batch(
                session,
                specs,
                parent_run_id=state.run_id,
                actor=f"run:{state.kind}",
            )

    async def finish(
        self, handle: RunHandle, error_message: str | None = None
    ) -> RunState:
        """
        Resolve the run's terminal status and persist it. Allowed once.

        The in-process state changes only after the store accepted the
        outcome, so a finish that raised StoreError can be retried.
        """
        state = handle.state
        if state.is_terminal:
            raise RunStateError(
                "Run already finished",
                details={"run_id": str(state.run_id), "status": state.status.value},
            )

        target = RunStatus.FAILED if error_message else state.resolve()
        self._check_transition(state, target)

        if target is RunStatus.FAILED:
            error_message = (
                error_message
                or state.required_failure
                or (state.errors[0] if state.errors else "No step succeeded")
            )
        ended_at = utcnow()
        extras = {"duration_ms": handle.elapsed_ms(), **state.extras}
        stats = {**state.stats(), "duration_ms": extras["duration_ms"]}

        async with self.database.session() as session:
            async with store_errors(session, "run_finish"):
                await session.execute(
                    update(Run)
                    .where(Run.id == state.run_id)
                    .values(
                        status=target.value,
                        stats=stats,
                        error_message=error_message,
                        ended_at=ended_at,
                    )
                )
                self.activity.record(
                    session,
                    actor=f"run:{state.kind}",
                    action="run_finished",
                    entity_type="run",
                    entity_id=state.run_id,
                    details={
                        "kind": state.kind,
                        "status": target.value,
                        "error_message": error_message,
                        "steps": stats["steps"],
                    },
                )
                await session.commit()

        state.status = target
        state.ended_at = ended_at
        state.error_message = error_message
        state.extras = extras

        log = logger.bind(run_id=str(state.run_id), kind=state.kind)
        if state.status is RunStatus.FAILED:
            log.error("Run failed", error_message=state.error_message)
        else:
            log.info("Run finished", status=state.status.value)
        return state

    @asynccontextmanager
    async def track(
        self, kind: str, params: dict[str, Any] | None = None
    ) -> AsyncIterator[RunHandle]:
        """
        Start a run, yield its handle, and finish it on exit.

        An exception from the orchestration marks the run failed and is
        re-raised. A handle finished explicitly inside the block is left as is.
        """
        handle = await self.start(kind, params)
        try:
            yield handle
        except Exception as e:
            if not handle.state.is_terminal:
                await self.finish(handle, error_message=str(e) or e.__class__.__name__)
            raise
        if not handle.state.is_terminal:
            await self.finish(handle)

    def status(self, run_id: UUID) -> RunState | None:
        return self._runs.get(run_id)

    def active(self) -> list[RunState]:
        """Runs started by this tracker that have not finished."""
        return [s for s in self._runs.values() if not s.is_terminal]

    async def list_runs(
        self, session: AsyncSession, filters: RunListFilters
    ) -> tuple[list[Run], int]:
        query = select(Run)
        if filters.kind:
            query = query.where(Run.kind == filters.kind)
        if filters.status:
            query = query.where(Run.status == filters.status.value)

        async with store_errors(session, "list_runs"):
            total = (
                await session.execute(select(func.count()).select_from(query.subquery()))
            ).scalar() or 0
            result = await session.execute(
                query.order_by(Run.created_at.desc()).limit(filters.limit)
            )
            return list(result.scalars().all()), total

    async def get_run(self, session: AsyncSession, run_id: UUID) -> Run | None:
        async with store_errors(session, "get_run"):
            result = await session.execute(select(Run).where(Run.id == run_id))
            return result.scalar_one_or_none()
