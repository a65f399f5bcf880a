"""Tests for the worker poll cycle."""

from datetime import datetime, timedelta, timezone

import pytest

from clinic_automation.db.enums import JobReferenceType, JobStatus, JobType
from clinic_automation.services import job_service
from clinic_automation.services import appointment_state_machine as sm
from clinic_automation.worker import run_cycle


@pytest.mark.asyncio
async def test_run_cycle_retries_failed_and_processes_due(db, appointment, context, messenger):
    now = datetime.now(timezone.utc)
    action = sm.create_manual_action(db, appointment.id, "send_consent")
    due = job_service.schedule_job(
        db,
        JobType.EXECUTE_ACTION,
        now - timedelta(minutes=1),
        {"action_id": str(action.id)},
        reference_id=action.id,
        reference_type=JobReferenceType.APPOINTMENT_ACTION,
    )
    broken = job_service.schedule_job(db, JobType.EXECUTE_ACTION, now - timedelta(hours=1), {})
    broken.status = JobStatus.IN_PROGRESS.value
    db.commit()
    job_service.mark_job_failed(db, broken, "Missing action_id in job payload")

    summary = await run_cycle(db, context)

    db.refresh(due)
    db.refresh(broken)
    assert summary["retried"] == 1
    assert summary["processed"] == 1
    assert summary["successful"] == 1
    assert due.status == JobStatus.COMPLETED.value
    # Rescheduled after the fixed delay, so not picked up in the same cycle.
    assert broken.status == JobStatus.SCHEDULED.value
    assert broken.execute_at > now
    assert len(messenger.sent) == 1
