"""Consent request action handler."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from clinic_automation.actions.context import ExecutionContext
from clinic_automation.actions.utils import (
    build_recipient,
    load_appointment,
    require_collaborator,
)
from clinic_automation.core.config import settings
from clinic_automation.db.enums import ConsentStatus, MessageChannel, TemplateType
from clinic_automation.db.models import AppointmentAction

logger = logging.getLogger(__name__)


async def process_send_consent(
    db: Session, action: AppointmentAction, context: ExecutionContext
) -> dict[str, Any]:
    """
    Create consent signing requests and e-mail each signing link.

    Nothing is sent when any treatment lacks a consent template; the
    appointment is flagged missing_association for staff to resolve.
    """
    consent = require_collaborator(context, "consent")
    appointment = load_appointment(db, action)
    patient = appointment.patient
    recipient = build_recipient(patient)

    plan = consent.create_signing_requests(
        db,
        appointment,
        action,
        language=recipient.language,
        expires_at=datetime.now(timezone.utc) + settings.consent_request_ttl,
    )

    if plan.missing:
        appointment.consent_status = ConsentStatus.MISSING_ASSOCIATION.value
        db.flush()
        logger.warning(
            "Consent not sent for appointment %s: %s treatments without template",
            appointment.id,
            len(plan.missing),
        )
        return {
            "status": ConsentStatus.MISSING_ASSOCIATION.value,
            "missing": list(plan.missing),
            "reason": "Some treatments do not have consent templates associated",
        }

    if not plan.requests:
        appointment.consent_status = ConsentStatus.NOT_REQUIRED.value
        db.flush()
        return {
            "status": ConsentStatus.NOT_REQUIRED.value,
            "reason": "No consent templates associated with appointment",
        }

    messaging = require_collaborator(context, "messaging")
    for request in plan.requests:
        await messaging.send(
            MessageChannel.EMAIL.value,
            TemplateType.CONSENT_REQUEST.value,
            recipient,
            {
                "clinic_name": context.clinic_name,
                "consent_title": request.title,
                "signing_url": f"{context.base_url}/consent/sign/{request.token}",
                "expires_at": request.expires_at.isoformat() if request.expires_at else None,
            },
        )

    action.related_consent_request_id = plan.requests[0].id
    appointment.consent_status = ConsentStatus.SENT.value
    db.flush()

    return {
        "status": ConsentStatus.SENT.value,
        "consent_count": len(plan.requests),
        "request_ids": [str(request.id) for request in plan.requests],
        "sent_to": patient.email,
    }
