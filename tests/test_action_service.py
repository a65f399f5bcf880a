"""Tests for the action ledger: creation, validation gate, cancellation."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from clinic_automation.core.exceptions import (
    ActionAlreadyTerminalError,
    ActionNotFoundError,
    DuplicateActionError,
    InvalidActionStatusError,
    ValidationNotRequiredError,
)
from clinic_automation.db.enums import (
    ActionStatus,
    ActionType,
    JobReferenceType,
    JobStatus,
    JobType,
)
from clinic_automation.db.models import AppointmentAction
from clinic_automation.services import action_service, job_service


def _create(db, appointment, action_type=ActionType.SEND_QUOTE.value, **kwargs):
    action = action_service.create_action(
        db, appointment_id=appointment.id, action_type=action_type, **kwargs
    )
    db.commit()
    return action


# =============================================================================
# Creation
# =============================================================================


def test_gated_action_starts_pending(db, appointment):
    action = _create(db, appointment, requires_validation=True)

    assert action.status == ActionStatus.PENDING.value
    assert action.awaiting_validation
    assert not action.can_execute()
    assert action.retry_count == 0
    assert action.max_retries == 3


def test_ungated_action_starts_scheduled(db, appointment):
    action = _create(db, appointment, ActionType.SEND_CONSENT.value)

    assert action.status == ActionStatus.SCHEDULED.value
    assert action.can_execute()


def test_duplicate_active_action_rejected(db, appointment):
    _create(db, appointment)

    with pytest.raises(DuplicateActionError):
        _create(db, appointment)


def test_new_action_allowed_after_cancel(db, appointment):
    first = _create(db, appointment)
    action_service.cancel_action(db, first.id)

    second = _create(db, appointment)

    assert second.id != first.id


def test_require_action_not_found(db):
    with pytest.raises(ActionNotFoundError):
        action_service.require_action(db, uuid.uuid4())


# =============================================================================
# Validation gate
# =============================================================================


def test_validate_moves_to_scheduled(db, appointment, actor_id):
    action = _create(db, appointment, requires_validation=True)

    validated = action_service.validate_action(db, action.id, actor_id)

    assert validated.status == ActionStatus.SCHEDULED.value
    assert validated.validated_by == actor_id
    assert validated.validated_at is not None
    assert validated.can_execute()


def test_validate_rejects_ungated_action(db, appointment, actor_id):
    action = _create(db, appointment, ActionType.SEND_CONSENT.value)

    with pytest.raises(ValidationNotRequiredError):
        action_service.validate_action(db, action.id, actor_id)


def test_validate_twice_rejected(db, appointment, actor_id):
    action = _create(db, appointment, requires_validation=True)
    action_service.validate_action(db, action.id, actor_id)

    with pytest.raises(InvalidActionStatusError):
        action_service.validate_action(db, action.id, actor_id)


def test_validate_cancelled_action_rejected(db, appointment, actor_id):
    action = _create(db, appointment, requires_validation=True)
    action_service.cancel_action(db, action.id)

    with pytest.raises(InvalidActionStatusError) as exc_info:
        action_service.validate_action(db, action.id, actor_id)

    assert "cancelled" in str(exc_info.value)


# =============================================================================
# Cancellation
# =============================================================================


def test_cancel_twice_is_deterministic(db, appointment):
    action = _create(db, appointment)

    cancelled = action_service.cancel_action(db, action.id, reason="patient called")

    assert cancelled.status == ActionStatus.CANCELLED.value
    assert cancelled.metadata_["cancel_reason"] == "patient called"

    with pytest.raises(ActionAlreadyTerminalError) as exc_info:
        action_service.cancel_action(db, action.id)
    assert "already terminal" in str(exc_info.value)


def test_cancel_completed_action_rejected(db, appointment):
    action = _create(db, appointment)
    action.status = ActionStatus.COMPLETED.value
    db.commit()

    with pytest.raises(ActionAlreadyTerminalError):
        action_service.cancel_action(db, action.id)


def test_cancel_failed_action(db, appointment):
    action = _create(db, appointment)
    action.status = ActionStatus.FAILED.value
    db.commit()

    assert action_service.cancel_action(db, action.id).status == ActionStatus.CANCELLED.value


def test_cancel_action_cancels_its_jobs(db, appointment):
    action = _create(db, appointment, ActionType.CONFIRMATION_EMAIL.value)
    job = job_service.schedule_job(
        db,
        JobType.EXECUTE_ACTION,
        datetime.now(timezone.utc) + timedelta(hours=1),
        {"action_id": str(action.id)},
        reference_id=action.id,
        reference_type=JobReferenceType.APPOINTMENT_ACTION,
    )

    action_service.cancel_action(db, action.id)

    db.refresh(job)
    assert job.status == JobStatus.CANCELLED.value


# =============================================================================
# Queries
# =============================================================================


def test_list_actions_filters_by_status(db, appointment):
    quote = _create(db, appointment, requires_validation=True)
    consent = _create(db, appointment, ActionType.SEND_CONSENT.value)

    assert {a.id for a in action_service.list_actions(db, appointment.id)} == {quote.id, consent.id}
    pending = action_service.list_actions(db, appointment.id, ActionStatus.PENDING)
    assert [a.id for a in pending] == [quote.id]


def test_list_pending_validation(db, appointment, actor_id):
    quote = _create(db, appointment, requires_validation=True)
    invoice = _create(db, appointment, ActionType.PREPARE_INVOICE.value, requires_validation=True)
    _create(db, appointment, ActionType.SEND_CONSENT.value)
    action_service.validate_action(db, invoice.id, actor_id)

    pending = action_service.list_pending_validation(db)

    assert [a.id for a in pending] == [quote.id]


def test_list_ready_actions(db, appointment, actor_id):
    now = datetime.now(timezone.utc)
    due = _create(db, appointment, ActionType.SEND_CONSENT.value)
    _create(
        db,
        appointment,
        ActionType.CONFIRMATION_EMAIL.value,
        scheduled_at=now + timedelta(hours=2),
    )
    _create(db, appointment, requires_validation=True)

    ready = action_service.list_ready_actions(db, now)

    assert [a.id for a in ready] == [due.id]


def test_pending_actions_summary(db, appointment):
    now = datetime.now(timezone.utc)
    _create(db, appointment, requires_validation=True)
    _create(db, appointment, ActionType.CONFIRMATION_EMAIL.value, scheduled_at=now + timedelta(hours=3))
    _create(db, appointment, ActionType.WHATSAPP_REMINDER.value, scheduled_at=now + timedelta(days=3))
    failed = _create(db, appointment, ActionType.SEND_CONSENT.value)
    failed.status = ActionStatus.FAILED.value
    db.commit()

    summary = action_service.get_pending_actions_summary(db, now)

    assert summary == {
        "pending_validation": 1,
        "scheduled": 2,
        "failed": 1,
        "upcoming_in_24h": 1,
    }


# =============================================================================
# Execution bookkeeping
# =============================================================================


def test_start_execution_claims_once(db, appointment):
    action = _create(db, appointment, ActionType.SEND_CONSENT.value)

    assert action_service.start_execution(db, action) is True
    assert action.status == ActionStatus.IN_PROGRESS.value
    assert action_service.start_execution(db, action) is False


def test_outcome_discarded_when_cancelled_mid_run(db, appointment):
    action = _create(db, appointment, ActionType.SEND_CONSENT.value)
    action_service.start_execution(db, action)
    db.execute(
        update(AppointmentAction)
        .where(AppointmentAction.id == action.id)
        .values(status=ActionStatus.CANCELLED.value)
    )
    db.commit()

    recorded = action_service.mark_action_completed(db, action, {"status": "sent"})

    assert recorded is False
    assert action.status == ActionStatus.CANCELLED.value
    assert action.result is None


def test_mark_failed_keeps_retry_count(db, appointment):
    action = _create(db, appointment, ActionType.SEND_CONSENT.value)
    action_service.start_execution(db, action)

    assert action_service.mark_action_failed(db, action, "smtp down") is True
    assert action.status == ActionStatus.FAILED.value
    assert action.error_message == "smtp down"
    assert action.retry_count == 0
    assert action.can_retry()


def test_reset_for_retry_counts_attempt(db, appointment):
    action = _create(db, appointment, ActionType.SEND_CONSENT.value)
    action.status = ActionStatus.FAILED.value
    db.commit()

    action_service.reset_for_retry(db, action)

    assert action.retry_count == 1
    assert action.status == ActionStatus.SCHEDULED.value


def test_reset_for_retry_refuses_when_another_is_active(db, appointment):
    failed = _create(db, appointment, ActionType.SEND_CONSENT.value)
    failed.status = ActionStatus.FAILED.value
    db.commit()
    _create(db, appointment, ActionType.SEND_CONSENT.value)

    with pytest.raises(DuplicateActionError):
        action_service.reset_for_retry(db, failed)
