"""Appointment action schemas - Pydantic models for the planning API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from clinic_automation.db.enums import AppointmentStatus


# =============================================================================
# Actions
# =============================================================================


class ActionRead(BaseModel):
    id: UUID
    appointment_id: UUID
    action_type: str
    trigger_type: str
    status: str
    requires_validation: bool
    validated_at: datetime | None = None
    validated_by: UUID | None = None
    scheduled_at: datetime | None = None
    execute_before_hours: int | None = None
    executed_at: datetime | None = None
    retry_count: int
    max_retries: int
    result: dict[str, Any] | None = None
    error_message: str | None = None
    related_quote_id: UUID | None = None
    related_invoice_id: UUID | None = None
    related_consent_request_id: UUID | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    created_by: UUID | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class ActionCreate(BaseModel):
    """Manual action request."""

    action_type: str = Field(..., min_length=1, max_length=50)
    requires_validation: bool | None = None
    scheduled_at: datetime | None = None
    metadata: dict[str, Any] | None = None


class ActionCancel(BaseModel):
    reason: str | None = Field(None, max_length=500)


class ActionExecutionRead(BaseModel):
    success: bool
    action: ActionRead
    result: dict[str, Any] | None = None
    error: str | None = None
    discarded: bool = False


class PendingActionsSummary(BaseModel):
    pending_validation: int
    scheduled: int
    failed: int
    upcoming_in_24h: int


# =============================================================================
# Transitions
# =============================================================================


class TransitionRequest(BaseModel):
    status: AppointmentStatus
    skip_actions: list[str] = Field(default_factory=list)
    confirmed_by: UUID | None = None
    reason: str | None = Field(None, max_length=500)


class TransitionRead(BaseModel):
    appointment_id: UUID
    previous_status: str
    new_status: str
    created_actions: list[ActionRead]
    scheduled_job_ids: list[UUID]
    cancelled_action_ids: list[UUID]


# =============================================================================
# Scheduler
# =============================================================================


class ProcessJobsRequest(BaseModel):
    limit: int = Field(50, ge=1, le=500)


class ProcessJobsRead(BaseModel):
    processed: int
    successful: int
    failed: int
    results: list[dict[str, Any]]


class JobStatsRead(BaseModel):
    scheduled: int
    in_progress: int
    failed: int
    completed_today: int
    due_now: int
