"""SQLAlchemy ORM models for the booking-owned appointment tables.

The booking subsystem owns these tables. The automation engine reads them and
writes only status, confirmation and consent-status fields.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import date, datetime, time

from sqlalchemy import Date, ForeignKey, Index, String, Time, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_automation.db.base import Base
from clinic_automation.db.enums import DEFAULT_APPOINTMENT_STATUS

if TYPE_CHECKING:
    from clinic_automation.db.models import AppointmentAction


class Patient(Base):
    """Patient projection: contact fields used to address messages."""

    __tablename__ = "patients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    preferred_language: Mapped[str | None] = mapped_column(String(10), nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Appointment(Base):
    """
    Appointment between a patient and a provider.

    appointment_date + start_time anchor the timed actions.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_status", "status"),
        Index("idx_appointments_date", "appointment_date", "start_time"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    appointment_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    provider_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    service_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_APPOINTMENT_STATUS.value, nullable=False
    )

    # Confirmation (written by the state machine / confirmation handler)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    confirmed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    confirmation_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    confirmation_token_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    consent_status: Mapped[str | None] = mapped_column(String(30), nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    patient: Mapped["Patient"] = relationship()
    actions: Mapped[list["AppointmentAction"]] = relationship(
        back_populates="appointment",
        passive_deletes=True,
    )
