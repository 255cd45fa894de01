"""
Job queue Pydantic schemas.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from opsqueue.v1.infra.jobs.models import JobStatus


class JobSpec(BaseModel):
    """One job to enqueue as part of a batch."""

    job_type: str = Field(..., min_length=1, description="Handler selector")
    payload: dict[str, Any] = Field(default_factory=dict, description="Job parameters")
    priority: int | None = Field(default=None, description="Higher runs first")
    max_attempts: int | None = Field(
        default=None, ge=1, description="Attempt ceiling (default from settings)"
    )
    delay_seconds: float | None = Field(
        default=None, ge=0, description="Delay before the job becomes eligible"
    )
    run_at: datetime | None = Field(
        default=None, description="Earliest time to run job"
    )

    @field_validator("job_type")
    @classmethod
    def _strip_job_type(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("job_type cannot be blank")
        return value

    @model_validator(mode="after")
    def _one_schedule(self) -> "JobSpec":
        if self.delay_seconds is not None and self.run_at is not None:
            raise ValueError("Use either delay_seconds or run_at, not both")
        return self


class EnqueueBatchRequest(BaseModel):
    """Schema for enqueueing a batch via API."""

    jobs: list[JobSpec] = Field(..., min_length=1, description="Jobs in the batch")


class EnqueueResult(BaseModel):
    """Ids assigned to one enqueued batch."""

    correlation_id: UUID
    job_ids: list[UUID]

    @property
    def count(self) -> int:
        return len(self.job_ids)


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: str
    payload: dict[str, Any]
    priority: int
    status: str
    attempts: int
    max_attempts: int
    next_run_at: datetime
    correlation_id: UUID
    parent_run_id: UUID | None = None

    claimed_by: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    error_kind: str | None = None

    created_at: datetime
    updated_at: datetime


class JobListFilters(BaseModel):
    """Schema for job listing filters."""

    status: list[JobStatus] | None = Field(
        default=None, description="Filter by job status"
    )
    correlation_id: UUID | None = Field(default=None, description="Filter by batch")
    job_type: str | None = Field(default=None, description="Filter by job type")
    since: datetime | None = Field(default=None, description="Created at or after")
    until: datetime | None = Field(default=None, description="Created before")
    limit: int = Field(
        default=50, ge=1, le=1000, description="Maximum results to return"
    )
    offset: int = Field(default=0, ge=0, description="Results offset for pagination")


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class JobStatsResponse(BaseModel):
    """Schema for job statistics."""

    window_hours: int
    total_jobs: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    queue_depth: int  # pending + running
    dead_in_window: int
    avg_runtime_seconds: float | None = None


class CorrelationSummary(BaseModel):
    """Status counts for one enqueued batch."""

    correlation_id: UUID
    total: int
    by_status: dict[str, int]
    job_types: list[str]


class DispatchRequest(BaseModel):
    """Schema for a dispatch trigger."""

    batch_size: int | None = Field(default=None, ge=1, le=1000)
    time_budget_s: float | None = Field(default=None, gt=0, le=3600)


JobOutcomeKind = Literal["succeeded", "retried", "dead", "released"]


class JobOutcome(BaseModel):
    """Outcome of one claimed job within a dispatch pass."""

    job_id: UUID
    job_type: str
    outcome: JobOutcomeKind
    attempts: int
    duration_ms: int
    error: str | None = None
    error_kind: str | None = None
    next_run_at: datetime | None = None


class ReapReport(BaseModel):
    """Stale running jobs recovered by the reaper."""

    requeued: int = 0
    dead: int = 0
    job_ids: list[UUID] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.requeued + self.dead


class DispatchReport(BaseModel):
    """Structured result of one dispatch pass."""

    worker_id: str
    claimed: int = 0
    succeeded: int = 0
    retried: int = 0
    dead: int = 0
    released: int = 0  # interrupted by the time budget, attempts unchanged
    lost: int = 0  # outcomes discarded because the claim was reaped
    skipped_budget: bool = False
    duration_ms: int = 0
    reaped: ReapReport = Field(default_factory=ReapReport)
    outcomes: list[JobOutcome] = Field(default_factory=list)

    @property
    def errors(self) -> list[JobOutcome]:
        return [
            o for o in self.outcomes if o.outcome not in ("succeeded", "released")
        ]

    def add(self, outcome: JobOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.outcome == "succeeded":
            self.succeeded += 1
        elif outcome.outcome == "retried":
            self.retried += 1
        elif outcome.outcome == "released":
            self.released += 1
        else:
            self.dead += 1


class JobActionResponse(BaseModel):
    """Schema for administrative job action responses."""

    success: bool
    job_id: UUID
    status: str | None = None
