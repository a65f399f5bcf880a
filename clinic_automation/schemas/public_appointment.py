"""Schemas for the patient-facing confirmation link endpoints."""

from datetime import date, datetime, time
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PublicAppointmentRead(BaseModel):
    """What a patient sees behind a confirmation link: no clinical fields."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    appointment_number: str | None = None
    appointment_date: date
    start_time: time
    status: str
    confirmation_token_expires_at: datetime | None = None


class PublicCancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class PublicTransitionRead(BaseModel):
    appointment_id: UUID
    appointment_number: str | None = None
    previous_status: str
    new_status: str
    confirmed_at: datetime | None = None
