"""Quote and invoice action handlers."""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from clinic_automation.actions.context import ExecutionContext
from clinic_automation.actions.utils import (
    build_recipient,
    json_safe,
    load_appointment,
    require_collaborator,
)
from clinic_automation.db.enums import MessageChannel, TemplateType
from clinic_automation.db.models import AppointmentAction


async def process_send_quote(
    db: Session, action: AppointmentAction, context: ExecutionContext
) -> dict[str, Any]:
    """Draft a quote through the billing collaborator and e-mail it."""
    billing = require_collaborator(context, "billing")
    appointment = load_appointment(db, action)

    draft = billing.draft_quote(db, appointment)
    if not draft.items:
        return {"status": "skipped", "reason": "No treatments to quote"}

    messaging = require_collaborator(context, "messaging")
    recipient = build_recipient(appointment.patient)
    await messaging.send(
        MessageChannel.EMAIL.value,
        TemplateType.QUOTE_SENT.value,
        recipient,
        {
            "clinic_name": context.clinic_name,
            "quote_number": draft.number,
            "total_amount": f"{draft.total_amount:.2f}",
            "view_url": draft.view_url,
        },
    )

    if draft.id:
        action.related_quote_id = draft.id
        db.flush()

    return json_safe(
        {
            "status": "sent",
            "quote_number": draft.number,
            "total_amount": draft.total_amount,
            "item_count": len(draft.items),
            "items": draft.items,
            "sent_to": recipient.email,
        }
    )


async def process_prepare_invoice(
    db: Session, action: AppointmentAction, context: ExecutionContext
) -> dict[str, Any]:
    """Record an invoice draft; it is sent only after staff review it."""
    billing = require_collaborator(context, "billing")
    appointment = load_appointment(db, action)

    draft = billing.draft_invoice(db, appointment)
    if draft.id:
        action.related_invoice_id = draft.id
        db.flush()

    return json_safe(
        {
            "status": "prepared",
            "invoice_number": draft.number,
            "total_amount": draft.total_amount,
            "item_count": len(draft.items),
            "items": draft.items,
            "patient_id": appointment.patient_id,
            "appointment_id": appointment.id,
            "needs_validation": True,
        }
    )
