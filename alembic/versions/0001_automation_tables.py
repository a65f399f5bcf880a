"""Add appointment_actions and scheduled_jobs.

Revision ID: 0001_automation_tables
Revises:
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001_automation_tables"
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "appointment_actions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("appointment_id", sa.Uuid(), nullable=False),
        sa.Column("action_type", sa.String(length=50), nullable=False),
        sa.Column("trigger_type", sa.String(length=30), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("requires_validation", sa.Boolean(), nullable=False),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("validated_by", sa.Uuid(), nullable=True),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("execute_before_hours", sa.Integer(), nullable=True),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("max_retries", sa.Integer(), nullable=False),
        sa.Column("result", JSONType, nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("related_quote_id", sa.Uuid(), nullable=True),
        sa.Column("related_invoice_id", sa.Uuid(), nullable=True),
        sa.Column("related_consent_request_id", sa.Uuid(), nullable=True),
        sa.Column("metadata", JSONType, nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_appointment_actions_appointment", "appointment_actions", ["appointment_id"])
    op.create_index("idx_appointment_actions_status", "appointment_actions", ["status"])
    op.create_index("idx_appointment_actions_type", "appointment_actions", ["action_type"])
    op.create_index("idx_appointment_actions_scheduled", "appointment_actions", ["scheduled_at"])
    # One active action per (appointment, type)
    op.execute("""
        CREATE UNIQUE INDEX uq_appointment_actions_active_type
        ON appointment_actions (appointment_id, action_type)
        WHERE status IN ('pending', 'scheduled', 'in_progress')
    """)

    op.create_table(
        "scheduled_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("job_type", sa.String(length=50), nullable=False),
        sa.Column("payload", JSONType, nullable=False),
        sa.Column("execute_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("executed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("reference_id", sa.Uuid(), nullable=True),
        sa.Column("reference_type", sa.String(length=50), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("max_retries", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("result", JSONType, nullable=True),
        sa.Column("claimed_by", sa.String(length=100), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_scheduled_jobs_due",
        "scheduled_jobs",
        ["status", "execute_at"],
        postgresql_where=sa.text("status = 'scheduled'"),
    )
    op.create_index(
        "idx_scheduled_jobs_reference", "scheduled_jobs", ["reference_type", "reference_id"]
    )
    op.create_index("idx_scheduled_jobs_type", "scheduled_jobs", ["job_type"])


def downgrade() -> None:
    op.drop_table("scheduled_jobs")
    op.execute("DROP INDEX IF EXISTS uq_appointment_actions_active_type")
    op.drop_table("appointment_actions")
