"""
Run models.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from opsqueue.infra.database import Base, UTCDateTime, utcnow


class RunStatus(str, Enum):
    """Run status enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCESS, RunStatus.PARTIAL, RunStatus.FAILED)


class Run(Base):
    """Persisted record of one multi-step orchestration."""

    __tablename__ = "runs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    kind: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Orchestration name, e.g. lead_finder"
    )
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=RunStatus.PENDING.value,
        comment="Run status: pending|running|success|partial|failed",
    )
    params: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Invocation parameters"
    )
    stats: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Step counters and extras"
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'success', 'partial', 'failed')",
            name="runs_status_check",
        ),
        Index("ix_runs_kind_created_at", "kind", "created_at"),
        Index("ix_runs_status", "status"),
    )
