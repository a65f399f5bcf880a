"""SQLAlchemy ORM model for appointment actions (the action ledger)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_automation.db.base import Base
from clinic_automation.db.enums import (
    EXECUTABLE_ACTION_STATUSES,
    TERMINAL_ACTION_STATUSES,
    ActionStatus,
    TriggerType,
)

if TYPE_CHECKING:
    from clinic_automation.db.models import Appointment

JSONType = JSON().with_variant(JSONB(), "postgresql")

_ACTIVE_STATUS_SQL = "status IN ('pending', 'scheduled', 'in_progress')"


class AppointmentAction(Base):
    """
    One side-effecting action attached to an appointment.

    Execution is gated behind validation when requires_validation is set.
    At most one active (pending/scheduled/in_progress) action per
    appointment and action type.
    """

    __tablename__ = "appointment_actions"
    __table_args__ = (
        Index("idx_appointment_actions_appointment", "appointment_id"),
        Index("idx_appointment_actions_status", "status"),
        Index("idx_appointment_actions_type", "action_type"),
        Index("idx_appointment_actions_scheduled", "scheduled_at"),
        Index(
            "uq_appointment_actions_active_type",
            "appointment_id",
            "action_type",
            unique=True,
            postgresql_where=text(_ACTIVE_STATUS_SQL),
            sqlite_where=text(_ACTIVE_STATUS_SQL),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Classification
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger_type: Mapped[str] = mapped_column(
        String(30), default=TriggerType.AUTOMATIC.value, nullable=False
    )

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(30), default=ActionStatus.PENDING.value, nullable=False
    )

    # Validation gate
    requires_validation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    validated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    validated_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # Timing
    scheduled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    execute_before_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Retry bookkeeping
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    # Outcome
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Documents returned by collaborators
    related_quote_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    related_invoice_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    related_consent_request_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # Provenance (which transition / job / user created it)
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, default=dict, nullable=False
    )

    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    appointment: Mapped["Appointment"] = relationship(back_populates="actions")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ACTION_STATUSES

    @property
    def awaiting_validation(self) -> bool:
        return self.requires_validation and self.validated_at is None

    def can_execute(self) -> bool:
        """Status is pending/scheduled and the validation gate is satisfied."""
        if self.status not in EXECUTABLE_ACTION_STATUSES:
            return False
        return not self.awaiting_validation

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def can_retry(self) -> bool:
        """Failed, or still awaiting validation, with retries left."""
        if self.retries_exhausted:
            return False
        if self.status == ActionStatus.FAILED.value:
            return True
        return self.status == ActionStatus.PENDING.value and self.awaiting_validation
