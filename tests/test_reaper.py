from datetime import UTC, datetime, timedelta

import pytest

from opsqueue.v1.infra.activity.service import SYSTEM_ACTOR, ActivityLog
from opsqueue.v1.infra.jobs.handlers import ReapStaleJobsHandler
from opsqueue.v1.infra.jobs.models import JobStatus
from opsqueue.v1.infra.jobs.reaper import StaleJobReaper
from opsqueue.v1.infra.jobs.results import ErrorKind, PermanentJobError
from opsqueue.v1.infra.jobs.schemas import JobSpec


@pytest.fixture
def reaper(database, settings) -> StaleJobReaper:
    return StaleJobReaper(database, settings)


@pytest.fixture
def stall(update_job):
    """Leave a job running under a worker that never reports back."""

    async def _stall(job_id, age: timedelta, worker: str = "crashed-worker", **extra):
        await update_job(
            job_id,
            status=JobStatus.RUNNING.value,
            claimed_by=worker,
            started_at=datetime.now(UTC) - age,
            **extra,
        )

    return _stall


async def test_stale_job_is_requeued(
    db_session, job_service, reaper, stall, fetch_job
):
    result = await job_service.enqueue_batch(db_session, [JobSpec(job_type="x")])
    job_id = result.job_ids[0]
    await stall(job_id, timedelta(minutes=15))

    report = await reaper.reap()

    assert report.requeued == 1
    assert report.dead == 0
    assert report.job_ids == [job_id]
    job = await fetch_job(job_id)
    assert job.status == JobStatus.PENDING.value
    assert job.attempts == 1
    assert job.claimed_by is None
    assert job.error_kind == ErrorKind.TRANSIENT.value
    assert "crashed-worker" in job.error
    assert job.next_run_at <= datetime.now(UTC)


async def test_recent_running_job_is_left_alone(
    db_session, job_service, reaper, stall, fetch_job
):
    result = await job_service.enqueue_batch(db_session, [JobSpec(job_type="x")])
    job_id = result.job_ids[0]
    await stall(job_id, timedelta(minutes=2))

    report = await reaper.reap()

    assert report.total == 0
    job = await fetch_job(job_id)
    assert job.status == JobStatus.RUNNING.value
    assert job.claimed_by == "crashed-worker"


async def test_stale_job_on_last_attempt_is_dead(
    db_session, job_service, reaper, stall, fetch_job
):
    result = await job_service.enqueue_batch(
        db_session, [JobSpec(job_type="x", max_attempts=2)]
    )
    job_id = result.job_ids[0]
    await stall(job_id, timedelta(hours=1), attempts=1)

    report = await reaper.reap()

    assert report.dead == 1
    job = await fetch_job(job_id)
    assert job.status == JobStatus.DEAD.value
    assert job.attempts == 2
    assert job.ended_at is not None

    entries = await ActivityLog().list_entries(db_session, action="job_dead")
    assert len(entries) == 1
    assert entries[0].entity_id == job_id
    assert entries[0].actor == SYSTEM_ACTOR
    assert entries[0].details["reaped"] is True


async def test_threshold_override(db_session, job_service, reaper, stall, fetch_job):
    result = await job_service.enqueue_batch(db_session, [JobSpec(job_type="x")])
    job_id = result.job_ids[0]
    await stall(job_id, timedelta(minutes=2))

    report = await reaper.reap(stale_after_s=60)

    assert report.requeued == 1
    assert (await fetch_job(job_id)).status == JobStatus.PENDING.value


async def test_pending_and_finished_jobs_are_not_reaped(
    db_session, job_service, reaper, update_job
):
    result = await job_service.enqueue_batch(
        db_session, [JobSpec(job_type="a"), JobSpec(job_type="b")]
    )
    await update_job(
        result.job_ids[1],
        status=JobStatus.SUCCEEDED.value,
        started_at=datetime.now(UTC) - timedelta(hours=2),
        ended_at=datetime.now(UTC) - timedelta(hours=1),
    )

    report = await reaper.reap()

    assert report.total == 0


async def test_reap_handler_reports_counts(
    db_session, job_service, reaper, stall
):
    result = await job_service.enqueue_batch(db_session, [JobSpec(job_type="x")])
    await stall(result.job_ids[0], timedelta(minutes=30))

    outcome = await ReapStaleJobsHandler(reaper).execute({})

    assert outcome.success is True
    assert outcome.data == {
        "requeued": 1,
        "dead": 0,
        "job_ids": [str(result.job_ids[0])],
    }


@pytest.mark.parametrize("stale_after_s", [0, -5, "soon", True])
async def test_reap_handler_rejects_bad_threshold(reaper, stale_after_s):
    with pytest.raises(PermanentJobError):
        await ReapStaleJobsHandler(reaper).execute({"stale_after_s": stale_after_s})
