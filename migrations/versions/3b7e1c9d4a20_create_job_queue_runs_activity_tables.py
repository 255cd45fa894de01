"""create job queue, runs and activity log tables

Revision ID: 3b7e1c9d4a20
Revises:
Create Date: 2026-10-19 09:12:40.118305

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e1c9d4a20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "job_queue",
        sa.Column(
            "seq",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column("id", sa.Uuid, nullable=False, unique=True, comment="Job identifier"),
        sa.Column("job_type", sa.Text, nullable=False, comment="Handler selector"),
        sa.Column(
            "payload", sa.JSON, nullable=False, comment="Opaque handler parameters"
        ),
        sa.Column(
            "priority",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Higher runs first",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="Job status: pending|running|succeeded|failed|dead",
        ),
        sa.Column(
            "attempts",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Failed attempts so far",
        ),
        sa.Column(
            "max_attempts",
            sa.Integer,
            nullable=False,
            server_default="5",
            comment="Attempt ceiling",
        ),
        sa.Column(
            "next_run_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            comment="Earliest claim time",
        ),
        # Grouping
        sa.Column(
            "correlation_id",
            sa.Uuid,
            nullable=False,
            comment="Shared by jobs enqueued together",
        ),
        sa.Column(
            "parent_run_id",
            sa.Uuid,
            nullable=True,
            comment="Run that enqueued this job",
        ),
        # Execution bookkeeping
        sa.Column(
            "claimed_by", sa.Text, nullable=True, comment="Worker that holds the claim"
        ),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("ended_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("result", sa.JSON, nullable=True, comment="Handler result summary"),
        sa.Column("error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column(
            "error_kind",
            sa.Text,
            nullable=True,
            comment="transient|permanent|unknown_type",
        ),
        # Timestamps
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
        # Constraints
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'succeeded', 'failed', 'dead')",
            name="job_queue_status_check",
        ),
        sa.CheckConstraint("max_attempts >= 1", name="job_queue_max_attempts_check"),
        sa.CheckConstraint(
            "attempts >= 0 AND attempts <= max_attempts",
            name="job_queue_attempts_check",
        ),
    )

    # Claim order: status filter, then priority, readiness, insertion
    op.create_index(
        "ix_job_queue_claim",
        "job_queue",
        ["status", "priority", "next_run_at", "seq"],
    )
    op.create_index("ix_job_queue_correlation_id", "job_queue", ["correlation_id"])
    op.create_index("ix_job_queue_type_status", "job_queue", ["job_type", "status"])
    op.create_index(
        "ix_job_queue_status_started_at", "job_queue", ["status", "started_at"]
    )
    op.create_index("ix_job_queue_created_at", "job_queue", ["created_at"])

    op.create_table(
        "runs",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "kind",
            sa.Text,
            nullable=False,
            comment="Orchestration name, e.g. lead_finder",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="Run status: pending|running|success|partial|failed",
        ),
        sa.Column("params", sa.JSON, nullable=False, comment="Invocation parameters"),
        sa.Column("stats", sa.JSON, nullable=False, comment="Step counters and extras"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("ended_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'success', 'partial', 'failed')",
            name="runs_status_check",
        ),
    )
    op.create_index("ix_runs_kind_created_at", "runs", ["kind", "created_at"])
    op.create_index("ix_runs_status", "runs", ["status"])

    op.create_table(
        "activity_log",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column(
            "actor", sa.Text, nullable=False, comment="'system', worker id, or operator"
        ),
        sa.Column(
            "action",
            sa.Text,
            nullable=False,
            comment="batch_enqueued, sweep_completed, job_dead, ...",
        ),
        sa.Column(
            "entity_type",
            sa.Text,
            nullable=False,
            comment="job_batch, job, run, worker",
        ),
        sa.Column("entity_id", sa.Uuid, nullable=True),
        sa.Column("details", sa.JSON, nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_activity_log_entity", "activity_log", ["entity_type", "entity_id"]
    )
    op.create_index(
        "ix_activity_log_action_created_at", "activity_log", ["action", "created_at"]
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("activity_log")
    op.drop_table("runs")
    op.drop_table("job_queue")
