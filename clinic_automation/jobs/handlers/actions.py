"""Job handlers that run appointment actions."""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from clinic_automation.actions.context import ExecutionContext
from clinic_automation.core.exceptions import (
    AppointmentNotFoundError,
    JobExecutionError,
    RetriesExhaustedError,
)
from clinic_automation.db.enums import (
    ActionStatus,
    ActionType,
    AppointmentStatus,
    JobReferenceType,
    TriggerType,
)
from clinic_automation.db.models import Appointment, ScheduledJob
from clinic_automation.services import action_executor, action_service

logger = logging.getLogger(__name__)

_CLOSED_APPOINTMENT_STATUSES = (
    AppointmentStatus.CANCELLED.value,
    AppointmentStatus.NO_SHOW.value,
    AppointmentStatus.COMPLETED.value,
)


def _coerce_uuid(raw_id: Any) -> UUID | None:
    if not raw_id:
        return None
    try:
        return UUID(str(raw_id))
    except (TypeError, ValueError):
        logger.warning("Invalid UUID value '%s' in job payload", raw_id)
        return None


async def process_execute_action(
    db: Session, job: ScheduledJob, context: ExecutionContext
) -> dict[str, Any]:
    """
    Run the referenced action through the executor.

    A failed action with retries left goes through retry_action. Actions
    already completed or cancelled complete the job as skipped.
    """
    payload = job.payload or {}
    action_id = _coerce_uuid(payload.get("action_id"))
    if not action_id and job.reference_type == JobReferenceType.APPOINTMENT_ACTION.value:
        action_id = job.reference_id
    if not action_id:
        raise JobExecutionError("Missing action_id in job payload")

    action = action_service.get_action(db, action_id)
    if not action:
        logger.warning("Job %s references missing action %s", job.id, action_id)
        return {"skipped": True, "reason": "action_not_found", "action_id": str(action_id)}

    if action.is_terminal:
        return {"skipped": True, "reason": f"action_{action.status}", "action_id": str(action.id)}

    if action.status == ActionStatus.FAILED.value:
        if not action.can_retry():
            raise RetriesExhaustedError(action.id, action.retry_count, action.max_retries)
        outcome = await action_executor.retry_action(db, action.id, context)
    else:
        outcome = await action_executor.execute_action(db, action.id, context)

    if not outcome.success:
        raise JobExecutionError(outcome.error or "Action execution failed")
    return outcome.to_dict()


async def _process_synthesized_action(
    db: Session, job: ScheduledJob, context: ExecutionContext, action_type: str
) -> dict[str, Any]:
    payload = job.payload or {}
    if payload.get("action_id"):
        # Retry of a job that already created its action.
        return await process_execute_action(db, job, context)

    appointment_id = _coerce_uuid(payload.get("appointment_id"))
    if not appointment_id and job.reference_type == JobReferenceType.APPOINTMENT.value:
        appointment_id = job.reference_id
    if not appointment_id:
        raise JobExecutionError("Missing appointment_id in job payload")

    appointment = db.get(Appointment, appointment_id)
    if not appointment:
        raise AppointmentNotFoundError(appointment_id)
    if appointment.status in _CLOSED_APPOINTMENT_STATUSES:
        return {"skipped": True, "reason": f"appointment_{appointment.status}"}

    existing = action_service.get_active_action(db, appointment.id, action_type)
    if existing:
        return {
            "skipped": True,
            "reason": "active_action_exists",
            "action_id": str(existing.id),
        }

    action = action_service.create_action(
        db,
        appointment_id=appointment.id,
        action_type=action_type,
        trigger_type=TriggerType.AUTOMATIC,
        metadata={"from_job": str(job.id), "job_type": job.job_type},
    )
    job.payload = {**payload, "action_id": str(action.id)}
    db.commit()

    return await process_execute_action(db, job, context)


async def process_appointment_reminder(
    db: Session, job: ScheduledJob, context: ExecutionContext
) -> dict[str, Any]:
    action_type = (job.payload or {}).get("action_type") or ActionType.WHATSAPP_REMINDER.value
    return await _process_synthesized_action(db, job, context, action_type)


async def process_appointment_confirmation(
    db: Session, job: ScheduledJob, context: ExecutionContext
) -> dict[str, Any]:
    return await _process_synthesized_action(
        db, job, context, ActionType.CONFIRMATION_EMAIL.value
    )
