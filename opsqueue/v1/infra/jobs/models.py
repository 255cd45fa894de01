"""
Job queue models.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Index,
    Integer,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from opsqueue.infra.database import Base, UTCDateTime, utcnow


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEAD = "dead"


# Integer on SQLite so the column aliases rowid and autoincrements
SeqType = BigInteger().with_variant(Integer(), "sqlite")


class Job(Base):
    """
    One unit of deferred, independently retryable work.

    Rows are created pending by the enqueuer and mutated only by the
    dispatch loop (claim, outcome) and the stale reaper. ``seq`` carries
    insertion order for deterministic tie-breaking; ``id`` is the public
    identifier.
    """

    __tablename__ = "job_queue"

    seq: Mapped[int] = mapped_column(SeqType, primary_key=True, autoincrement=True)
    id: Mapped[UUID] = mapped_column(
        Uuid, nullable=False, unique=True, default=uuid4, comment="Job identifier"
    )
    job_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Handler selector"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Opaque handler parameters",
    )
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Higher runs first"
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="Job status: pending|running|succeeded|failed|dead",
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Failed attempts so far"
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=5, comment="Attempt ceiling"
    )
    next_run_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, comment="Earliest claim time"
    )

    # Grouping
    correlation_id: Mapped[UUID] = mapped_column(
        Uuid, nullable=False, comment="Shared by jobs enqueued together"
    )
    parent_run_id: Mapped[UUID | None] = mapped_column(
        Uuid, nullable=True, comment="Run that enqueued this job"
    )

    # Execution bookkeeping
    claimed_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker that holds the claim"
    )
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Handler result summary"
    )
    error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )
    error_kind: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="transient|permanent|unknown_type"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'succeeded', 'failed', 'dead')",
            name="job_queue_status_check",
        ),
        CheckConstraint("max_attempts >= 1", name="job_queue_max_attempts_check"),
        CheckConstraint(
            "attempts >= 0 AND attempts <= max_attempts",
            name="job_queue_attempts_check",
        ),
        Index("ix_job_queue_claim", "status", "priority", "next_run_at", "seq"),
        Index("ix_job_queue_correlation_id", "correlation_id"),
        Index("ix_job_queue_type_status", "job_type", "status"),
        Index("ix_job_queue_status_started_at", "status", "started_at"),
        Index("ix_job_queue_created_at", "created_at"),
    )
