from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from opsqueue.infra.database import Base, UTCDateTime, utcnow


class ActivityEntry(Base):
    """Append-only record of a significant queue or run transition."""

    __tablename__ = "activity_log"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    actor: Mapped[str] = mapped_column(
        Text, nullable=False, comment="'system', worker id, or operator"
    )
    action: Mapped[str] = mapped_column(
        Text, nullable=False, comment="batch_enqueued, sweep_completed, job_dead, ..."
    )
    entity_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="job_batch, job, run, worker"
    )
    entity_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        Index("ix_activity_log_entity", "entity_type", "entity_id"),
        Index("ix_activity_log_action_created_at", "action", "created_at"),
    )
