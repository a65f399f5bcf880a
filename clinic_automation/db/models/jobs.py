"""SQLAlchemy ORM model for the durable job queue."""

from __future__ import annotations

from typing import Any

import uuid
from datetime import datetime

from sqlalchemy import JSON, Index, Integer, String, Text, Uuid, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from clinic_automation.db.base import Base
from clinic_automation.db.enums import JobStatus

JSONType = JSON().with_variant(JSONB(), "postgresql")


class ScheduledJob(Base):
    """
    Generic "do X at time T" record.

    Decoupled from action semantics; reference_type/reference_id point back
    at whatever scheduled it so cascades can cancel in bulk. Poller claims
    due jobs atomically before dispatch.
    """

    __tablename__ = "scheduled_jobs"
    __table_args__ = (
        Index(
            "idx_scheduled_jobs_due",
            "status",
            "execute_at",
            postgresql_where=text("status = 'scheduled'"),
        ),
        Index("idx_scheduled_jobs_reference", "reference_type", "reference_id"),
        Index("idx_scheduled_jobs_type", "job_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)

    execute_at: Mapped[datetime] = mapped_column(nullable=False)
    executed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=JobStatus.SCHEDULED.value, nullable=False
    )

    # Polymorphic back-reference (JobReferenceType + id)
    reference_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    # Tag of the poller that claimed the job
    claimed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
