"""Action ledger - lifecycle of appointment actions.

Validation and cancellation are the only transitions callers outside the
executor may request. Execution transitions (in_progress, completed, failed)
are conditional single-row updates so concurrent executors cannot both win.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from clinic_automation.core.config import settings
from clinic_automation.core.exceptions import (
    ActionAlreadyTerminalError,
    ActionNotFoundError,
    DuplicateActionError,
    InvalidActionStatusError,
    ValidationNotRequiredError,
)
from clinic_automation.core.structured_logging import build_log_context
from clinic_automation.db.enums import (
    ACTIVE_ACTION_STATUSES,
    CANCELLABLE_BY_CASCADE,
    EXECUTABLE_ACTION_STATUSES,
    ActionStatus,
    JobReferenceType,
    TriggerType,
)
from clinic_automation.db.models import AppointmentAction
from clinic_automation.services import job_service

logger = logging.getLogger(__name__)


# =============================================================================
# Queries
# =============================================================================


def get_action(db: Session, action_id: UUID) -> AppointmentAction | None:
    return db.get(AppointmentAction, action_id)


def require_action(db: Session, action_id: UUID) -> AppointmentAction:
    action = get_action(db, action_id)
    if not action:
        raise ActionNotFoundError(action_id)
    return action


def list_actions(
    db: Session,
    appointment_id: UUID,
    status: ActionStatus | str | None = None,
) -> list[AppointmentAction]:
    """List actions for an appointment, newest first."""
    query = select(AppointmentAction).where(AppointmentAction.appointment_id == appointment_id)
    if status:
        query = query.where(AppointmentAction.status == ActionStatus(status).value)
    query = query.order_by(AppointmentAction.created_at.desc())
    return list(db.execute(query).scalars().all())


def list_pending_validation(db: Session, limit: int = 50) -> list[AppointmentAction]:
    """Gated actions still waiting for a human, oldest first."""
    query = (
        select(AppointmentAction)
        .where(
            AppointmentAction.requires_validation.is_(True),
            AppointmentAction.validated_at.is_(None),
            AppointmentAction.status == ActionStatus.PENDING.value,
        )
        .order_by(AppointmentAction.created_at)
        .limit(limit)
    )
    return list(db.execute(query).scalars().all())


def list_ready_actions(db: Session, now: datetime | None = None) -> list[AppointmentAction]:
    """Actions that pass the gate and are due (no scheduled_at, or it has passed)."""
    now = now or datetime.now(timezone.utc)
    query = (
        select(AppointmentAction)
        .where(
            AppointmentAction.status.in_(EXECUTABLE_ACTION_STATUSES),
            or_(
                AppointmentAction.scheduled_at.is_(None),
                AppointmentAction.scheduled_at <= now,
            ),
            or_(
                AppointmentAction.requires_validation.is_(False),
                AppointmentAction.validated_at.is_not(None),
            ),
        )
        .order_by(AppointmentAction.scheduled_at, AppointmentAction.created_at)
    )
    return list(db.execute(query).scalars().all())


def get_active_action(
    db: Session, appointment_id: UUID, action_type: str
) -> AppointmentAction | None:
    query = select(AppointmentAction).where(
        AppointmentAction.appointment_id == appointment_id,
        AppointmentAction.action_type == action_type,
        AppointmentAction.status.in_(ACTIVE_ACTION_STATUSES),
    )
    return db.execute(query).scalars().first()


def get_pending_actions_summary(db: Session, now: datetime | None = None) -> dict[str, int]:
    """Dashboard counters for the tenant."""
    now = now or datetime.now(timezone.utc)

    def _count(*criteria) -> int:
        return db.execute(
            select(func.count()).select_from(AppointmentAction).where(*criteria)
        ).scalar_one()

    return {
        "pending_validation": _count(
            AppointmentAction.requires_validation.is_(True),
            AppointmentAction.validated_at.is_(None),
            AppointmentAction.status == ActionStatus.PENDING.value,
        ),
        "scheduled": _count(AppointmentAction.status == ActionStatus.SCHEDULED.value),
        "failed": _count(AppointmentAction.status == ActionStatus.FAILED.value),
        "upcoming_in_24h": _count(
            AppointmentAction.status.in_(EXECUTABLE_ACTION_STATUSES),
            AppointmentAction.scheduled_at <= now + timedelta(hours=24),
        ),
    }


# =============================================================================
# Creation
# =============================================================================


def create_action(
    db: Session,
    *,
    appointment_id: UUID,
    action_type: str,
    trigger_type: TriggerType = TriggerType.AUTOMATIC,
    requires_validation: bool = False,
    scheduled_at: datetime | None = None,
    execute_before_hours: int | None = None,
    created_by: UUID | None = None,
    metadata: dict[str, Any] | None = None,
    max_retries: int | None = None,
) -> AppointmentAction:
    """
    Add an action to the session (flushed, not committed).

    Gated actions start pending, others scheduled. Raises DuplicateActionError
    if an active action of the same type already exists for the appointment.
    """
    if get_active_action(db, appointment_id, action_type):
        raise DuplicateActionError(appointment_id, action_type)

    action = AppointmentAction(
        appointment_id=appointment_id,
        action_type=action_type,
        trigger_type=trigger_type.value,
        status=(
            ActionStatus.PENDING.value if requires_validation else ActionStatus.SCHEDULED.value
        ),
        requires_validation=requires_validation,
        scheduled_at=scheduled_at,
        execute_before_hours=execute_before_hours,
        created_by=created_by,
        metadata_=dict(metadata or {}),
        max_retries=settings.ACTION_MAX_RETRIES if max_retries is None else max_retries,
    )
    db.add(action)
    db.flush()
    return action


# =============================================================================
# Validation gate / cancellation
# =============================================================================


def validate_action(db: Session, action_id: UUID, actor_id: UUID) -> AppointmentAction:
    """Approve a pending gated action; it becomes scheduled (executable)."""
    action = require_action(db, action_id)

    if not action.requires_validation:
        raise ValidationNotRequiredError(action_id)
    if action.status != ActionStatus.PENDING.value or action.validated_at is not None:
        raise InvalidActionStatusError(action_id, action.status, operation="validate")

    action.validated_at = datetime.now(timezone.utc)
    action.validated_by = actor_id
    action.status = ActionStatus.SCHEDULED.value
    db.commit()
    db.refresh(action)

    logger.info(
        "Action %s validated",
        action.id,
        extra=build_log_context(
            action_id=action.id,
            appointment_id=action.appointment_id,
            action_type=action.action_type,
            actor_id=actor_id,
        ),
    )
    return action


def cancel_action(
    db: Session, action_id: UUID, reason: str | None = None
) -> AppointmentAction:
    """Cancel a non-terminal action. Cancelling twice raises ActionAlreadyTerminalError."""
    action = require_action(db, action_id)
    if action.is_terminal:
        raise ActionAlreadyTerminalError(action_id, action.status)

    previous_status = action.status
    action.status = ActionStatus.CANCELLED.value
    if reason:
        action.metadata_ = {**(action.metadata_ or {}), "cancel_reason": reason}
    db.commit()

    job_service.cancel_jobs_for_reference(db, action.id, JobReferenceType.APPOINTMENT_ACTION)
    db.refresh(action)

    logger.info(
        "Action %s cancelled (was %s)",
        action.id,
        previous_status,
        extra=build_log_context(
            action_id=action.id,
            appointment_id=action.appointment_id,
            action_type=action.action_type,
        ),
    )
    return action


def cancel_actions_for_appointment(
    db: Session, appointment_id: UUID, reason: str
) -> list[UUID]:
    """Bulk-cancel non-terminal actions; returns cancelled ids."""
    actions = db.execute(
        select(AppointmentAction).where(
            AppointmentAction.appointment_id == appointment_id,
            AppointmentAction.status.in_(CANCELLABLE_BY_CASCADE),
        )
    ).scalars().all()
    ids = [action.id for action in actions]
    for action in actions:
        action.status = ActionStatus.CANCELLED.value
        action.metadata_ = {**(action.metadata_ or {}), "cancel_reason": reason}
    db.commit()
    return ids


# =============================================================================
# Execution bookkeeping (executor only)
# =============================================================================


def start_execution(db: Session, action: AppointmentAction) -> bool:
    """
    Claim an action for execution: pending/scheduled -> in_progress.

    Returns False if another caller moved it first.
    """
    result = db.execute(
        update(AppointmentAction)
        .where(
            AppointmentAction.id == action.id,
            AppointmentAction.status.in_(EXECUTABLE_ACTION_STATUSES),
        )
        .values(status=ActionStatus.IN_PROGRESS.value)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(action)
    return result.rowcount == 1


def mark_action_completed(
    db: Session, action: AppointmentAction, result: dict[str, Any]
) -> bool:
    """in_progress -> completed. Returns False if the action was cancelled meanwhile."""
    values: dict[str, Any] = {
        "status": ActionStatus.COMPLETED.value,
        "executed_at": datetime.now(timezone.utc),
        "result": {**(action.result or {}), **result},
        "error_message": None,
    }
    return _finish(db, action, values)


def mark_action_failed(db: Session, action: AppointmentAction, error: str) -> bool:
    """in_progress -> failed. Returns False if the action was cancelled meanwhile."""
    return _finish(
        db,
        action,
        {"status": ActionStatus.FAILED.value, "error_message": error},
    )


def _finish(db: Session, action: AppointmentAction, values: dict[str, Any]) -> bool:
    result = db.execute(
        update(AppointmentAction)
        .where(
            AppointmentAction.id == action.id,
            AppointmentAction.status == ActionStatus.IN_PROGRESS.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(action)
    if result.rowcount != 1:
        logger.warning(
            "Outcome of action %s discarded; status is now %s",
            action.id,
            action.status,
            extra=build_log_context(action_id=action.id, action_type=action.action_type),
        )
        return False
    return True


def reset_for_retry(db: Session, action: AppointmentAction) -> AppointmentAction:
    """Count the retry and put the action back to pending/scheduled."""
    others = [
        other
        for other in _active_of_type(db, action.appointment_id, action.action_type)
        if other.id != action.id
    ]
    if others:
        raise DuplicateActionError(action.appointment_id, action.action_type)

    action.retry_count += 1
    action.status = (
        ActionStatus.PENDING.value if action.awaiting_validation else ActionStatus.SCHEDULED.value
    )
    db.commit()
    db.refresh(action)
    return action


def _active_of_type(db: Session, appointment_id: UUID, action_type: str) -> Iterable[AppointmentAction]:
    return db.execute(
        select(AppointmentAction).where(
            AppointmentAction.appointment_id == appointment_id,
            AppointmentAction.action_type == action_type,
            AppointmentAction.status.in_(ACTIVE_ACTION_STATUSES),
        )
    ).scalars()
