"""Public endpoints behind the patient confirmation link.

No actor header is required; the token itself authorizes the request.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from clinic_automation.core.deps import get_db
from clinic_automation.core.exceptions import (
    ConfirmationTokenExpiredError,
    ConfirmationTokenNotFoundError,
    InvalidTransitionError,
)
from clinic_automation.routers.appointment_actions import invalid_transition_detail
from clinic_automation.schemas.public_appointment import (
    PublicAppointmentRead,
    PublicCancelRequest,
    PublicTransitionRead,
)
from clinic_automation.services import appointment_state_machine
from clinic_automation.services.appointment_state_machine import TransitionResult

router = APIRouter()


def _run(operation, db: Session, token: str, **kwargs):
    try:
        return operation(db, token, **kwargs)
    except ConfirmationTokenNotFoundError:
        raise HTTPException(status_code=404, detail="Appointment not found")
    except ConfirmationTokenExpiredError:
        raise HTTPException(status_code=410, detail="Confirmation link has expired")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=invalid_transition_detail(e))


def _to_response(result: TransitionResult) -> PublicTransitionRead:
    appointment = result["appointment"]
    return PublicTransitionRead(
        appointment_id=appointment.id,
        appointment_number=appointment.appointment_number,
        previous_status=result["previous_status"],
        new_status=result["new_status"],
        confirmed_at=appointment.confirmed_at,
    )


@router.get("/appointment/confirm/{token}", response_model=PublicAppointmentRead)
def get_appointment_to_confirm(token: str, db: Session = Depends(get_db)):
    return _run(appointment_state_machine.get_appointment_by_token, db, token)


@router.post("/appointment/confirm/{token}", response_model=PublicTransitionRead)
def confirm_appointment(token: str, db: Session = Depends(get_db)):
    """Patient confirms the appointment from the emailed link."""
    result = _run(appointment_state_machine.confirm_by_token, db, token)
    return _to_response(result)


@router.get("/appointment/cancel/{token}", response_model=PublicAppointmentRead)
def get_appointment_to_cancel(token: str, db: Session = Depends(get_db)):
    return _run(appointment_state_machine.get_appointment_by_token, db, token)


@router.post("/appointment/cancel/{token}", response_model=PublicTransitionRead)
def cancel_appointment(
    token: str,
    data: PublicCancelRequest | None = None,
    db: Session = Depends(get_db),
):
    """Patient cancels the appointment from the emailed link."""
    result = _run(
        appointment_state_machine.cancel_by_token,
        db,
        token,
        reason=data.reason if data else None,
    )
    return _to_response(result)
