"""Planning API endpoints - appointment transitions and their actions."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from clinic_automation.actions.context import ExecutionContext
from clinic_automation.core.deps import (
    get_actor_id,
    get_db,
    get_execution_context,
    require_actor_id,
)
from clinic_automation.core.exceptions import (
    ActionNotFoundError,
    AppointmentNotFoundError,
    InvalidTransitionError,
    NotEligibleError,
    NotFoundError,
    UnknownActionTypeError,
)
from clinic_automation.db.enums import ActionStatus
from clinic_automation.db.models import AppointmentAction
from clinic_automation.schemas.appointment_action import (
    ActionCancel,
    ActionCreate,
    ActionExecutionRead,
    ActionRead,
    JobStatsRead,
    PendingActionsSummary,
    ProcessJobsRead,
    ProcessJobsRequest,
    TransitionRead,
    TransitionRequest,
)
from clinic_automation.services import (
    action_executor,
    action_service,
    appointment_state_machine,
    job_scheduler,
    job_service,
)
from clinic_automation.services.action_executor import ActionExecutionResult

router = APIRouter()


def _require_action_for_appointment(
    db: Session, appointment_id: UUID, action_id: UUID
) -> AppointmentAction:
    action = action_service.get_action(db, action_id)
    if not action or action.appointment_id != appointment_id:
        raise HTTPException(status_code=404, detail="Action not found")
    return action


def _execution_to_response(outcome: ActionExecutionResult) -> ActionExecutionRead:
    return ActionExecutionRead(
        success=outcome.success,
        action=ActionRead.model_validate(outcome.action),
        result=outcome.result,
        error=outcome.error,
        discarded=outcome.discarded,
    )


def invalid_transition_detail(e: InvalidTransitionError) -> dict:
    return {
        "message": str(e),
        "current_status": e.current_status,
        "requested_status": e.requested_status,
        "allowed_transitions": e.allowed,
    }


# =============================================================================
# Actions on an appointment
# =============================================================================


@router.get("/appointments/{appointment_id}/actions", response_model=list[ActionRead])
def list_appointment_actions(
    appointment_id: UUID,
    status_filter: ActionStatus | None = Query(None, alias="status"),
    db: Session = Depends(get_db),
):
    """List actions for an appointment, newest first."""
    return action_service.list_actions(db, appointment_id, status_filter)


@router.post(
    "/appointments/{appointment_id}/actions",
    response_model=ActionRead,
    status_code=status.HTTP_201_CREATED,
)
def create_appointment_action(
    appointment_id: UUID,
    data: ActionCreate,
    actor_id: UUID | None = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    """Create a manual action."""
    try:
        return appointment_state_machine.create_manual_action(
            db,
            appointment_id,
            data.action_type,
            actor_id,
            requires_validation=data.requires_validation,
            scheduled_at=data.scheduled_at,
            metadata=data.metadata,
        )
    except AppointmentNotFoundError:
        raise HTTPException(status_code=404, detail="Appointment not found")
    except UnknownActionTypeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotEligibleError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.patch(
    "/appointments/{appointment_id}/actions/{action_id}/validate",
    response_model=ActionRead,
)
def validate_appointment_action(
    appointment_id: UUID,
    action_id: UUID,
    actor_id: UUID = Depends(require_actor_id),
    db: Session = Depends(get_db),
):
    """Approve a gated action so it can run."""
    _require_action_for_appointment(db, appointment_id, action_id)
    try:
        return action_service.validate_action(db, action_id, actor_id)
    except NotEligibleError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.patch(
    "/appointments/{appointment_id}/actions/{action_id}/cancel",
    response_model=ActionRead,
)
def cancel_appointment_action(
    appointment_id: UUID,
    action_id: UUID,
    data: ActionCancel | None = None,
    db: Session = Depends(get_db),
):
    _require_action_for_appointment(db, appointment_id, action_id)
    try:
        return action_service.cancel_action(db, action_id, data.reason if data else None)
    except NotEligibleError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post(
    "/appointments/{appointment_id}/actions/{action_id}/execute",
    response_model=ActionExecutionRead,
)
async def execute_appointment_action(
    appointment_id: UUID,
    action_id: UUID,
    context: ExecutionContext = Depends(get_execution_context),
    db: Session = Depends(get_db),
):
    """Run an action now. Handler failures come back with success=false."""
    _require_action_for_appointment(db, appointment_id, action_id)
    try:
        outcome = await action_executor.execute_action(db, action_id, context)
    except ActionNotFoundError:
        raise HTTPException(status_code=404, detail="Action not found")
    except NotEligibleError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _execution_to_response(outcome)


@router.post(
    "/appointments/{appointment_id}/actions/{action_id}/retry",
    response_model=ActionExecutionRead,
)
async def retry_appointment_action(
    appointment_id: UUID,
    action_id: UUID,
    context: ExecutionContext = Depends(get_execution_context),
    db: Session = Depends(get_db),
):
    _require_action_for_appointment(db, appointment_id, action_id)
    try:
        outcome = await action_executor.retry_action(db, action_id, context)
    except ActionNotFoundError:
        raise HTTPException(status_code=404, detail="Action not found")
    except NotEligibleError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _execution_to_response(outcome)


# =============================================================================
# Appointment transitions
# =============================================================================


@router.post("/appointments/{appointment_id}/transition", response_model=TransitionRead)
def transition_appointment(
    appointment_id: UUID,
    data: TransitionRequest,
    actor_id: UUID | None = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    """Change appointment status and fire the status's automatic actions."""
    try:
        result = appointment_state_machine.transition(
            db,
            appointment_id,
            data.status,
            actor_id,
            skip_actions=data.skip_actions,
            confirmed_by=data.confirmed_by,
            reason=data.reason,
        )
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Appointment not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=invalid_transition_detail(e))

    return TransitionRead(
        appointment_id=result["appointment"].id,
        previous_status=result["previous_status"],
        new_status=result["new_status"],
        created_actions=[ActionRead.model_validate(a) for a in result["created_actions"]],
        scheduled_job_ids=[job.id for job in result["scheduled_jobs"]],
        cancelled_action_ids=result["cancelled_actions"],
    )


@router.get("/state-config")
def get_state_config():
    """Allowed transitions and automatic actions per status."""
    return appointment_state_machine.describe_state_config()


# =============================================================================
# Dashboards
# =============================================================================


@router.get("/actions/pending", response_model=list[ActionRead])
def list_actions_pending_validation(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Gated actions waiting for staff approval."""
    return action_service.list_pending_validation(db, limit=limit)


@router.get("/actions/summary", response_model=PendingActionsSummary)
def get_actions_summary(db: Session = Depends(get_db)):
    return action_service.get_pending_actions_summary(db)


# =============================================================================
# Scheduler
# =============================================================================


@router.post("/scheduler/process", response_model=ProcessJobsRead)
async def process_scheduler(
    data: ProcessJobsRequest | None = None,
    context: ExecutionContext = Depends(get_execution_context),
    db: Session = Depends(get_db),
):
    """Run one scheduler batch (for an external cron trigger)."""
    limit = data.limit if data else None
    return await job_scheduler.process_due_jobs(db, limit=limit, context=context)


@router.get("/scheduler/stats", response_model=JobStatsRead)
def get_scheduler_stats(db: Session = Depends(get_db)):
    return job_service.get_job_stats(db)
