from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select

from opsqueue.v1.core.exceptions import NotFoundError, StoreError
from opsqueue.v1.infra.activity.models import ActivityEntry
from opsqueue.v1.infra.activity.service import ActivityLog
from opsqueue.v1.infra.jobs.models import Job, JobStatus
from opsqueue.v1.infra.jobs.schemas import JobListFilters, JobSpec
from opsqueue.v1.infra.jobs.service import PRESETS, JobService


class BrokenActivityLog(ActivityLog):
    """Stages an entry that violates NOT NULL so the batch commit fails."""

    def record(self, session, **kwargs):
        entry = super().record(session, **kwargs)
        entry.entity_type = None
        return entry


async def count_rows(database, model) -> int:
    async with database.session() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar()


async def test_batch_shares_one_correlation_id(db_session, job_service, fetch_job):
    """Scenario A: two specs become two pending jobs in one batch."""
    result = await job_service.enqueue_batch(
        db_session,
        [
            JobSpec(job_type="email_scan", priority=10),
            JobSpec(job_type="score_ideas", priority=8),
        ],
    )

    assert result.count == 2
    jobs = [await fetch_job(job_id) for job_id in result.job_ids]
    assert {job.correlation_id for job in jobs} == {result.correlation_id}
    assert all(job.status == JobStatus.PENDING.value for job in jobs)
    assert all(job.attempts == 0 for job in jobs)
    assert [job.priority for job in jobs] == [10, 8]


async def test_defaults_applied(db_session, job_service, fetch_job):
    before = datetime.now(UTC)
    result = await job_service.enqueue_batch(db_session, [{"job_type": "news_scan"}])

    job = await fetch_job(result.job_ids[0])
    assert job.max_attempts == 5
    assert job.priority == 0
    assert job.payload == {}
    assert job.next_run_at >= before - timedelta(seconds=1)
    assert job.next_run_at <= datetime.now(UTC)


async def test_delay_and_run_at_schedule_later(db_session, job_service, fetch_job):
    run_at = datetime.now(UTC) + timedelta(hours=2)
    result = await job_service.enqueue_batch(
        db_session,
        [
            JobSpec(job_type="a", delay_seconds=120),
            JobSpec(job_type="b", run_at=run_at),
        ],
    )

    delayed = await fetch_job(result.job_ids[0])
    scheduled = await fetch_job(result.job_ids[1])
    assert delayed.next_run_at - delayed.created_at == timedelta(seconds=120)
    assert abs(scheduled.next_run_at - run_at) < timedelta(milliseconds=1)


async def test_batch_writes_one_activity_entry(db_session, job_service, database):
    result = await job_service.enqueue_batch(
        db_session, [JobSpec(job_type="x"), JobSpec(job_type="y")]
    )

    entries = await ActivityLog().list_entries(db_session, action="batch_enqueued")
    assert len(entries) == 1
    entry = entries[0]
    assert entry.entity_id == result.correlation_id
    assert entry.details["count"] == 2
    assert entry.details["job_types"] == ["x", "y"]
    assert entry.details["job_ids"] == [str(job_id) for job_id in result.job_ids]


async def test_empty_batch_rejected(db_session, job_service, database):
    with pytest.raises(ValueError, match="empty"):
        await job_service.enqueue_batch(db_session, [])

    assert await count_rows(database, Job) == 0


@pytest.mark.parametrize(
    "spec",
    [
        {"job_type": "   "},
        {"job_type": "x", "max_attempts": 0},
        {"job_type": "x", "delay_seconds": -1},
        {"job_type": "x", "delay_seconds": 5, "run_at": "2030-01-01T00:00:00Z"},
    ],
)
async def test_invalid_spec_rejected_before_store(db_session, job_service, database, spec):
    with pytest.raises(PydanticValidationError):
        await job_service.enqueue_batch(db_session, [{"job_type": "ok"}, spec])

    assert await count_rows(database, Job) == 0


async def test_store_failure_leaves_nothing_visible(db_session, settings, database):
    service = JobService(settings, activity=BrokenActivityLog())

    with pytest.raises(StoreError):
        await service.enqueue_batch(
            db_session, [JobSpec(job_type="a"), JobSpec(job_type="b")]
        )

    assert await count_rows(database, Job) == 0
    assert await count_rows(database, ActivityEntry) == 0


async def test_duplicate_enqueues_are_independent(db_session, job_service):
    first = await job_service.enqueue_batch(db_session, [JobSpec(job_type="x")])
    second = await job_service.enqueue_batch(db_session, [JobSpec(job_type="x")])

    assert first.correlation_id != second.correlation_id
    assert set(first.job_ids).isdisjoint(second.job_ids)


async def test_morning_preset(db_session, job_service, fetch_job):
    result = await job_service.enqueue_preset(db_session, "morning")

    jobs = [await fetch_job(job_id) for job_id in result.job_ids]
    assert [(job.job_type, job.priority) for job in jobs] == [
        ("news_scan", 10),
        ("email_scan", 10),
        ("bloomberg_scan", 9),
        ("score_ideas", 8),
        ("select_daily", 7),
    ]
    assert jobs[3].payload == {"limit": 50}
    assert jobs[4].payload == {"count": 6}


async def test_evening_preset(db_session, job_service):
    result = await job_service.enqueue_preset(db_session, "evening")

    assert result.count == len(PRESETS["evening"]) == 3


async def test_unknown_preset(db_session, job_service):
    with pytest.raises(NotFoundError, match="Unknown batch preset"):
        await job_service.enqueue_preset(db_session, "midnight")


async def test_list_jobs_filters(db_session, job_service):
    first = await job_service.enqueue_batch(
        db_session, [JobSpec(job_type="a"), JobSpec(job_type="b")]
    )
    await job_service.enqueue_batch(db_session, [JobSpec(job_type="a")])

    by_batch, total = await job_service.list_jobs(
        db_session, JobListFilters(correlation_id=first.correlation_id)
    )
    assert total == 2
    assert {job.id for job in by_batch} == set(first.job_ids)

    by_type, total = await job_service.list_jobs(
        db_session, JobListFilters(job_type="a")
    )
    assert total == 2

    future, total = await job_service.list_jobs(
        db_session,
        JobListFilters(since=datetime.now(UTC) + timedelta(minutes=1)),
    )
    assert future == [] and total == 0

    page, total = await job_service.list_jobs(
        db_session, JobListFilters(limit=1, offset=1)
    )
    assert total == 3
    assert len(page) == 1


async def test_correlation_summary(db_session, job_service):
    result = await job_service.enqueue_batch(
        db_session, [JobSpec(job_type="b"), JobSpec(job_type="a")]
    )

    summary = await job_service.get_correlation_summary(
        db_session, result.correlation_id
    )

    assert summary.total == 2
    assert summary.by_status == {"pending": 2}
    assert summary.job_types == ["a", "b"]

    with pytest.raises(NotFoundError):
        await job_service.get_correlation_summary(db_session, uuid4())
