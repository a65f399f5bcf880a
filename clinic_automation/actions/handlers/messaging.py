"""Patient messaging action handlers (confirmation e-mail, WhatsApp reminder)."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from clinic_automation.actions.context import ExecutionContext
from clinic_automation.actions.utils import (
    build_recipient,
    format_date,
    format_time,
    load_appointment,
    require_collaborator,
)
from clinic_automation.core.config import settings
from clinic_automation.core.exceptions import ChannelUnavailableError, MessagingError
from clinic_automation.core.structured_logging import mask_email
from clinic_automation.db.enums import MessageChannel, TemplateType
from clinic_automation.db.models import Appointment, AppointmentAction

logger = logging.getLogger(__name__)


def ensure_confirmation_token(db: Session, appointment: Appointment) -> str:
    """Reuse the appointment's live confirmation token or issue a new one."""
    now = datetime.now(timezone.utc)
    expires_at = appointment.confirmation_token_expires_at
    if appointment.confirmation_token and (expires_at is None or expires_at > now):
        return appointment.confirmation_token

    appointment.confirmation_token = secrets.token_hex(32)
    appointment.confirmation_token_expires_at = now + settings.confirmation_token_ttl
    # Persisted before the link goes out so a later failure cannot orphan it.
    db.commit()
    return appointment.confirmation_token


async def process_confirmation_email(
    db: Session, action: AppointmentAction, context: ExecutionContext
) -> dict[str, Any]:
    """Send the appointment confirmation request with a one-click link."""
    messaging = require_collaborator(context, "messaging")
    appointment = load_appointment(db, action)
    patient = appointment.patient
    recipient = build_recipient(patient)

    token = ensure_confirmation_token(db, appointment)
    confirmation_url = f"{context.base_url}/appointment/confirm/{token}"

    result = await messaging.send(
        MessageChannel.EMAIL.value,
        TemplateType.APPOINTMENT_CONFIRMATION.value,
        recipient,
        {
            "clinic_name": context.clinic_name,
            "appointment_date": format_date(appointment.appointment_date, recipient.language),
            "appointment_time": format_time(appointment.start_time, recipient.language),
            "confirmation_url": confirmation_url,
        },
    )
    logger.info(
        "Confirmation email sent for appointment %s to %s",
        appointment.id,
        mask_email(patient.email),
    )
    return {
        "message_id": result.get("message_id"),
        "confirmation_token": token,
        "sent_to": patient.email,
    }


async def process_whatsapp_reminder(
    db: Session, action: AppointmentAction, context: ExecutionContext
) -> dict[str, Any]:
    messaging = require_collaborator(context, "messaging")
    appointment = load_appointment(db, action)
    patient = appointment.patient

    if not patient.phone:
        raise MessagingError("Patient has no phone number")
    if not messaging.is_channel_available(MessageChannel.WHATSAPP.value):
        raise ChannelUnavailableError(MessageChannel.WHATSAPP.value)

    recipient = build_recipient(patient)
    result = await messaging.send(
        MessageChannel.WHATSAPP.value,
        TemplateType.APPOINTMENT_REMINDER.value,
        recipient,
        {
            "clinic_name": context.clinic_name,
            "appointment_date": format_date(appointment.appointment_date, recipient.language),
            "appointment_time": format_time(appointment.start_time, recipient.language),
        },
    )
    return {"sent_to": patient.phone, **result}
