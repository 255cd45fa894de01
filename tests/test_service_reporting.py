from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from opsqueue.v1.core.exceptions import NotFoundError, ValidationError
from opsqueue.v1.infra.activity.service import ActivityLog
from opsqueue.v1.infra.jobs.models import JobStatus
from opsqueue.v1.infra.jobs.schemas import JobListFilters, JobSpec


async def test_job_stats(db_session, job_service, update_job):
    result = await job_service.enqueue_batch(
        db_session,
        [JobSpec(job_type="scan"), JobSpec(job_type="scan"), JobSpec(job_type="score")],
    )
    done, dead, _ = result.job_ids
    now = datetime.now(UTC)
    await update_job(
        done,
        status=JobStatus.SUCCEEDED.value,
        started_at=now - timedelta(seconds=4),
        ended_at=now,
    )
    await update_job(dead, status=JobStatus.DEAD.value, ended_at=now)

    stats = await job_service.get_job_stats(db_session, window_hours=24)

    assert stats.total_jobs == 3
    assert stats.by_status == {"succeeded": 1, "dead": 1, "pending": 1}
    assert stats.by_type == {"scan": 2, "score": 1}
    assert stats.queue_depth == 1
    assert stats.dead_in_window == 1
    assert stats.avg_runtime_seconds == pytest.approx(4.0)


async def test_job_stats_window_excludes_old_jobs(db_session, job_service, update_job):
    result = await job_service.enqueue_batch(db_session, [JobSpec(job_type="old")])
    await update_job(
        result.job_ids[0], created_at=datetime.now(UTC) - timedelta(days=3)
    )

    stats = await job_service.get_job_stats(db_session, window_hours=24)

    assert stats.total_jobs == 0
    assert stats.by_type == {}
    # Outstanding work counts regardless of age
    assert stats.queue_depth == 1
    assert stats.avg_runtime_seconds is None


async def test_list_jobs_by_status(db_session, job_service, update_job):
    result = await job_service.enqueue_batch(
        db_session, [JobSpec(job_type="a"), JobSpec(job_type="b")]
    )
    await update_job(result.job_ids[0], status=JobStatus.DEAD.value)

    jobs, total = await job_service.list_jobs(
        db_session, JobListFilters(status=[JobStatus.DEAD])
    )

    assert total == 1
    assert jobs[0].id == result.job_ids[0]


async def test_requeue_dead_job(db_session, job_service, update_job):
    result = await job_service.enqueue_batch(db_session, [JobSpec(job_type="x")])
    job_id = result.job_ids[0]
    await update_job(
        job_id,
        status=JobStatus.DEAD.value,
        attempts=5,
        ended_at=datetime.now(UTC),
        error="gave up",
    )

    job = await job_service.requeue_dead_job(db_session, job_id, actor="alice")

    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 0
    assert job.ended_at is None
    assert job.next_run_at <= datetime.now(UTC)

    entries = await ActivityLog().list_entries(db_session, action="job_requeued")
    assert entries[0].entity_id == job_id
    assert entries[0].actor == "alice"


async def test_requeue_rejects_live_jobs(db_session, job_service):
    result = await job_service.enqueue_batch(db_session, [JobSpec(job_type="x")])

    with pytest.raises(ValidationError, match="Only dead jobs"):
        await job_service.requeue_dead_job(db_session, result.job_ids[0])


async def test_requeue_unknown_job(db_session, job_service):
    with pytest.raises(NotFoundError):
        await job_service.requeue_dead_job(db_session, uuid4())


async def test_get_job_missing(db_session, job_service):
    assert await job_service.get_job(db_session, uuid4()) is None
