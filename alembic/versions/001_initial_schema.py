"""Initial schema with jobs table

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create enum using raw SQL with IF NOT EXISTS
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE job_state AS ENUM ('waiting', 'active', 'completed', 'failed');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$;
    """)

    op.create_table(
        "jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("queue_name", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "state",
            postgresql.ENUM("waiting", "active", "completed", "failed", name="job_state", create_type=False),
            nullable=False,
            server_default="waiting",
        ),
        sa.Column("attempts_made", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("backoff", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("lease_owner", sa.String(255), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "run_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "enqueued_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    # Partial index for queue polling
    op.execute("""
        CREATE INDEX ix_jobs_queue_poll
        ON jobs (queue_name, run_at, enqueued_at)
        WHERE state = 'waiting'
    """)

    # Partial index for lease expiry
    op.execute("""
        CREATE INDEX ix_jobs_lease_expiry
        ON jobs (lease_expires_at)
        WHERE state = 'active'
    """)

    # Index for retention sweeps
    op.create_index("ix_jobs_retention", "jobs", ["queue_name", "state", "finished_at"])


def downgrade() -> None:
    op.drop_index("ix_jobs_retention")
    op.execute("DROP INDEX IF EXISTS ix_jobs_lease_expiry")
    op.execute("DROP INDEX IF EXISTS ix_jobs_queue_poll")

    op.drop_table("jobs")

    op.execute("DROP TYPE IF EXISTS job_state")
