"""Appointment state machine.

Allowed status transitions plus the declarative actions each incoming status
triggers: immediate on-enter actions, timed actions anchored to the
appointment start, and the cancel cascade for terminal outcomes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Iterable, Mapping, TypedDict
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from clinic_automation.actions import registry
from clinic_automation.core.config import settings
from clinic_automation.core.exceptions import (
    AppointmentNotFoundError,
    ConfirmationTokenExpiredError,
    ConfirmationTokenNotFoundError,
    InvalidTransitionError,
    UnknownActionTypeError,
)
from clinic_automation.core.structured_logging import build_log_context
from clinic_automation.db.enums import (
    ActionType,
    AppointmentStatus,
    JobReferenceType,
    JobType,
    TriggerType,
)
from clinic_automation.db.models import Appointment, AppointmentAction, ScheduledJob
from clinic_automation.services import action_service, job_service

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration table
# =============================================================================


@dataclass(frozen=True)
class ActionTrigger:
    """Action created immediately on entering a status."""

    action_type: str
    requires_validation: bool = False


@dataclass(frozen=True)
class TimedActionTrigger:
    """Action scheduled hours_before the appointment start."""

    action_type: str
    hours_before: int
    requires_validation: bool = False


@dataclass(frozen=True)
class StateConfig:
    allowed_transitions: tuple[str, ...]
    on_enter: tuple[ActionTrigger, ...] = ()
    timed: tuple[TimedActionTrigger, ...] = ()
    cascade_cancel: bool = False

    @property
    def is_terminal(self) -> bool:
        return not self.allowed_transitions


def build_state_config(confirmation_lead_hours: int) -> Mapping[str, StateConfig]:
    """Build the read-only status -> StateConfig table."""
    S = AppointmentStatus
    table = {
        S.SCHEDULED.value: StateConfig(
            allowed_transitions=(
                S.CONFIRMED.value,
                S.IN_PROGRESS.value,
                S.CANCELLED.value,
                S.NO_SHOW.value,
            ),
            timed=(
                TimedActionTrigger(
                    ActionType.CONFIRMATION_EMAIL.value,
                    hours_before=confirmation_lead_hours,
                ),
            ),
        ),
        S.CONFIRMED.value: StateConfig(
            allowed_transitions=(
                S.IN_PROGRESS.value,
                S.COMPLETED.value,
                S.CANCELLED.value,
                S.NO_SHOW.value,
            ),
            on_enter=(
                ActionTrigger(ActionType.SEND_CONSENT.value),
                ActionTrigger(ActionType.SEND_QUOTE.value, requires_validation=True),
            ),
        ),
        S.IN_PROGRESS.value: StateConfig(
            allowed_transitions=(S.COMPLETED.value, S.CANCELLED.value),
        ),
        S.COMPLETED.value: StateConfig(
            allowed_transitions=(),
            on_enter=(ActionTrigger(ActionType.PREPARE_INVOICE.value, requires_validation=True),),
        ),
        S.CANCELLED.value: StateConfig(allowed_transitions=(), cascade_cancel=True),
        S.NO_SHOW.value: StateConfig(allowed_transitions=(), cascade_cancel=True),
    }
    return MappingProxyType(table)


STATE_CONFIG: Mapping[str, StateConfig] = build_state_config(settings.CONFIRMATION_LEAD_HOURS)


def get_state_config() -> Mapping[str, StateConfig]:
    return STATE_CONFIG


def get_allowed_transitions(status: str) -> list[str]:
    config = STATE_CONFIG.get(status)
    return list(config.allowed_transitions) if config else []


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in get_allowed_transitions(from_status)


def describe_state_config() -> dict[str, Any]:
    """JSON-friendly view of the table for the API."""
    return {
        status: {
            "allowed_transitions": list(config.allowed_transitions),
            "on_enter": [
                {
                    "action_type": trigger.action_type,
                    "requires_validation": trigger.requires_validation,
                }
                for trigger in config.on_enter
            ],
            "timed": [
                {
                    "action_type": trigger.action_type,
                    "hours_before": trigger.hours_before,
                    "requires_validation": trigger.requires_validation,
                }
                for trigger in config.timed
            ],
            "cascade_cancel": config.cascade_cancel,
            "is_terminal": config.is_terminal,
        }
        for status, config in STATE_CONFIG.items()
    }


def default_requires_validation(action_type: str) -> bool:
    """Gate a manual action the same way its automatic counterpart is gated."""
    for config in STATE_CONFIG.values():
        for trigger in (*config.on_enter, *config.timed):
            if trigger.action_type == action_type:
                return trigger.requires_validation
    return False


# =============================================================================
# Helpers
# =============================================================================


def _clinic_tz():
    if settings.CLINIC_TIMEZONE.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(settings.CLINIC_TIMEZONE)


def appointment_datetime(appointment: Appointment) -> datetime:
    """Appointment start as an aware UTC datetime (date + time read in clinic tz)."""
    local = datetime.combine(
        appointment.appointment_date, appointment.start_time, tzinfo=_clinic_tz()
    )
    return local.astimezone(timezone.utc)


def _require_appointment(db: Session, appointment_id: UUID) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if not appointment:
        raise AppointmentNotFoundError(appointment_id)
    return appointment


def _coerce_status(value: AppointmentStatus | str) -> str:
    return value.value if isinstance(value, AppointmentStatus) else str(value)


# =============================================================================
# Transition
# =============================================================================


class TransitionResult(TypedDict):
    appointment: Appointment
    previous_status: str
    new_status: str
    created_actions: list[AppointmentAction]
    scheduled_jobs: list[ScheduledJob]
    cancelled_actions: list[UUID]


class ScheduledActions(TypedDict):
    actions: list[AppointmentAction]
    jobs: list[ScheduledJob]


def transition(
    db: Session,
    appointment_id: UUID,
    new_status: AppointmentStatus | str,
    actor_id: UUID | None = None,
    *,
    skip_actions: Iterable[str] = (),
    confirmed_by: UUID | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """
    Move an appointment to new_status and apply that status's triggers.

    The status change is a conditional update on the current status, so of
    two concurrent requests from the same status only one succeeds; the
    other gets InvalidTransitionError with the fresh status. The status is
    committed before any side effect runs. Cascade errors are logged and
    never undo the status change.
    """
    appointment = _require_appointment(db, appointment_id)
    previous_status = appointment.status
    target = _coerce_status(new_status)
    skip = {_coerce_status(item) for item in skip_actions}
    now = now or datetime.now(timezone.utc)

    if not can_transition(previous_status, target):
        logger.warning(
            "Rejected transition %s -> %s for appointment %s",
            previous_status,
            target,
            appointment.id,
            extra=build_log_context(appointment_id=appointment.id, actor_id=actor_id),
        )
        raise InvalidTransitionError(
            previous_status, target, get_allowed_transitions(previous_status)
        )

    values: dict[str, Any] = {"status": target}
    if target == AppointmentStatus.CONFIRMED.value:
        values["confirmed_at"] = now
        values["confirmed_by"] = confirmed_by or actor_id

    result = db.execute(
        update(Appointment)
        .where(Appointment.id == appointment.id, Appointment.status == previous_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(appointment)

    if result.rowcount != 1:
        raise InvalidTransitionError(
            appointment.status, target, get_allowed_transitions(appointment.status)
        )

    logger.info(
        "Appointment %s transitioned %s -> %s",
        appointment.id,
        previous_status,
        target,
        extra=build_log_context(appointment_id=appointment.id, actor_id=actor_id),
    )

    config = STATE_CONFIG[target]
    created_actions: list[AppointmentAction] = []
    scheduled_jobs: list[ScheduledJob] = []
    cancelled_actions: list[UUID] = []

    for trigger in config.on_enter:
        if trigger.action_type in skip:
            logger.info(
                "Skipping on-enter action '%s' for appointment %s",
                trigger.action_type,
                appointment.id,
            )
            continue
        action = _create_automatic_action(
            db,
            appointment,
            trigger.action_type,
            requires_validation=trigger.requires_validation,
            created_by=actor_id,
            metadata={"trigger": "on_enter", "from_status": previous_status, "to_status": target},
        )
        if action:
            created_actions.append(action)
    db.commit()

    if config.timed:
        timed = schedule_timed_actions(db, appointment, actor_id, skip_actions=skip, now=now)
        created_actions.extend(timed["actions"])
        scheduled_jobs.extend(timed["jobs"])

    if config.cascade_cancel:
        try:
            cancelled_actions = cancel_pending_actions(
                db, appointment.id, reason=reason or f"appointment_{target}"
            )["cancelled_actions"]
        except Exception:
            db.rollback()
            logger.exception(
                "Cascade cancellation failed for appointment %s",
                appointment.id,
                extra=build_log_context(appointment_id=appointment.id, actor_id=actor_id),
            )

    for action in created_actions:
        db.refresh(action)

    return TransitionResult(
        appointment=appointment,
        previous_status=previous_status,
        new_status=target,
        created_actions=created_actions,
        scheduled_jobs=scheduled_jobs,
        cancelled_actions=cancelled_actions,
    )


# =============================================================================
# Patient self-service (confirmation link)
# =============================================================================

PATIENT_CANCELLABLE_STATUSES = (
    AppointmentStatus.SCHEDULED.value,
    AppointmentStatus.CONFIRMED.value,
)


def get_appointment_by_token(
    db: Session, token: str, now: datetime | None = None
) -> Appointment:
    """Resolve a live confirmation token to its appointment."""
    appointment = None
    if token:
        appointment = db.execute(
            select(Appointment).where(Appointment.confirmation_token == token)
        ).scalar_one_or_none()
    if appointment is None:
        raise ConfirmationTokenNotFoundError()

    now = now or datetime.now(timezone.utc)
    expires_at = appointment.confirmation_token_expires_at
    if expires_at is not None and expires_at <= now:
        raise ConfirmationTokenExpiredError(appointment.id)
    return appointment


def _revoke_token(db: Session, appointment: Appointment) -> None:
    appointment.confirmation_token = None
    appointment.confirmation_token_expires_at = None
    db.commit()


def confirm_by_token(db: Session, token: str, now: datetime | None = None) -> TransitionResult:
    """
    Confirm the appointment behind a patient confirmation link.

    Runs the regular transition to confirmed, so the on-enter actions fire.
    The token is single use and is revoked once the transition commits.
    """
    appointment = get_appointment_by_token(db, token, now)
    result = transition(db, appointment.id, AppointmentStatus.CONFIRMED, now=now)
    _revoke_token(db, result["appointment"])
    logger.info(
        "Appointment %s confirmed by patient",
        appointment.id,
        extra=build_log_context(appointment_id=appointment.id),
    )
    return result


def cancel_by_token(
    db: Session, token: str, reason: str | None = None, now: datetime | None = None
) -> TransitionResult:
    """Cancel through a confirmation link; only scheduled or confirmed visits qualify."""
    appointment = get_appointment_by_token(db, token, now)
    if appointment.status not in PATIENT_CANCELLABLE_STATUSES:
        raise InvalidTransitionError(
            appointment.status,
            AppointmentStatus.CANCELLED.value,
            get_allowed_transitions(appointment.status),
        )

    result = transition(
        db,
        appointment.id,
        AppointmentStatus.CANCELLED,
        reason=reason or "patient_cancelled",
        now=now,
    )
    _revoke_token(db, result["appointment"])
    logger.info(
        "Appointment %s cancelled by patient",
        appointment.id,
        extra=build_log_context(appointment_id=appointment.id),
    )
    return result


def _create_automatic_action(
    db: Session,
    appointment: Appointment,
    action_type: str,
    *,
    requires_validation: bool,
    created_by: UUID | None,
    metadata: dict[str, Any],
    scheduled_at: datetime | None = None,
    execute_before_hours: int | None = None,
) -> AppointmentAction | None:
    if action_service.get_active_action(db, appointment.id, action_type):
        logger.info(
            "Active '%s' action already exists for appointment %s; not creating another",
            action_type,
            appointment.id,
        )
        return None
    action = action_service.create_action(
        db,
        appointment_id=appointment.id,
        action_type=action_type,
        trigger_type=TriggerType.AUTOMATIC,
        requires_validation=requires_validation,
        scheduled_at=scheduled_at,
        execute_before_hours=execute_before_hours,
        created_by=created_by,
        metadata=metadata,
    )
    logger.info(
        "Created action '%s' (%s) for appointment %s",
        action_type,
        action.status,
        appointment.id,
        extra=build_log_context(
            action_id=action.id, appointment_id=appointment.id, action_type=action_type
        ),
    )
    return action


def schedule_timed_actions(
    db: Session,
    appointment: Appointment,
    actor_id: UUID | None = None,
    *,
    skip_actions: Iterable[str] = (),
    now: datetime | None = None,
) -> ScheduledActions:
    """
    Create the timed actions of the appointment's current status.

    Each gets a paired execute_action job at appointment start minus
    hours_before. Instants already in the past are skipped.
    """
    now = now or datetime.now(timezone.utc)
    skip = set(skip_actions)
    config = STATE_CONFIG.get(appointment.status)
    scheduled = ScheduledActions(actions=[], jobs=[])
    if not config:
        return scheduled

    starts_at = appointment_datetime(appointment)
    for trigger in config.timed:
        if trigger.action_type in skip:
            continue
        execute_at = starts_at - timedelta(hours=trigger.hours_before)
        if execute_at <= now:
            logger.info(
                "Not scheduling '%s' for appointment %s: %s is already past",
                trigger.action_type,
                appointment.id,
                execute_at.isoformat(),
            )
            continue

        action = _create_automatic_action(
            db,
            appointment,
            trigger.action_type,
            requires_validation=trigger.requires_validation,
            created_by=actor_id,
            metadata={"trigger": "timed", "status": appointment.status},
            scheduled_at=execute_at,
            execute_before_hours=trigger.hours_before,
        )
        if not action:
            continue
        job = job_service.schedule_job(
            db,
            JobType.EXECUTE_ACTION,
            execute_at,
            {"action_id": str(action.id)},
            reference_id=action.id,
            reference_type=JobReferenceType.APPOINTMENT_ACTION,
            commit=False,
        )
        scheduled["actions"].append(action)
        scheduled["jobs"].append(job)

    db.commit()
    for record in (*scheduled["actions"], *scheduled["jobs"]):
        db.refresh(record)
    return scheduled


# =============================================================================
# Manual actions / cascade
# =============================================================================


def create_manual_action(
    db: Session,
    appointment_id: UUID,
    action_type: str,
    actor_id: UUID | None = None,
    *,
    requires_validation: bool | None = None,
    scheduled_at: datetime | None = None,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> AppointmentAction:
    """
    Create an action on staff request.

    A future scheduled_at also schedules the paired job. Raises
    UnknownActionTypeError for unregistered types and DuplicateActionError
    when an active action of the type exists.
    """
    appointment = _require_appointment(db, appointment_id)
    if not registry.is_registered(action_type):
        raise UnknownActionTypeError(action_type)

    now = now or datetime.now(timezone.utc)
    if requires_validation is None:
        requires_validation = default_requires_validation(action_type)

    action = action_service.create_action(
        db,
        appointment_id=appointment.id,
        action_type=action_type,
        trigger_type=TriggerType.MANUAL,
        requires_validation=requires_validation,
        scheduled_at=scheduled_at,
        created_by=actor_id,
        metadata={"source": "manual", **(metadata or {})},
    )
    if scheduled_at and scheduled_at > now:
        job_service.schedule_job(
            db,
            JobType.EXECUTE_ACTION,
            scheduled_at,
            {"action_id": str(action.id)},
            reference_id=action.id,
            reference_type=JobReferenceType.APPOINTMENT_ACTION,
            commit=False,
        )
    db.commit()
    db.refresh(action)

    logger.info(
        "Manual action '%s' created for appointment %s",
        action_type,
        appointment.id,
        extra=build_log_context(
            action_id=action.id,
            appointment_id=appointment.id,
            action_type=action_type,
            actor_id=actor_id,
        ),
    )
    return action


def cancel_pending_actions(
    db: Session, appointment_id: UUID, reason: str = "appointment_cancelled"
) -> dict[str, Any]:
    """
    Cancel the appointment's derived work.

    Every non-terminal action becomes cancelled, and so does every
    non-terminal job pointing at the appointment or any of its actions. An
    in_progress handler may still finish, but its outcome is discarded.
    """
    cancelled_actions = action_service.cancel_actions_for_appointment(db, appointment_id, reason)

    cancelled_jobs = job_service.cancel_jobs_for_reference(
        db, appointment_id, JobReferenceType.APPOINTMENT
    )
    action_ids = db.execute(
        select(AppointmentAction.id).where(AppointmentAction.appointment_id == appointment_id)
    ).scalars().all()
    for action_id in action_ids:
        cancelled_jobs += job_service.cancel_jobs_for_reference(
            db, action_id, JobReferenceType.APPOINTMENT_ACTION
        )

    logger.info(
        "Cascade-cancelled %s actions and %s jobs for appointment %s",
        len(cancelled_actions),
        cancelled_jobs,
        appointment_id,
        extra=build_log_context(appointment_id=appointment_id),
    )
    return {"cancelled_actions": cancelled_actions, "cancelled_jobs": cancelled_jobs}
