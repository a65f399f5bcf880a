"""Action handler registry."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from clinic_automation.actions.handlers import billing, consent, messaging
from clinic_automation.core.exceptions import UnknownActionTypeError
from clinic_automation.db.enums import ActionType

# (db, action, context) -> result payload; raising records a failure.
ActionHandler = Callable[[Any, Any, Any], Awaitable[dict[str, Any]]]

ACTION_HANDLERS: dict[str, ActionHandler] = {
    ActionType.CONFIRMATION_EMAIL.value: messaging.process_confirmation_email,
    ActionType.WHATSAPP_REMINDER.value: messaging.process_whatsapp_reminder,
    ActionType.SEND_CONSENT.value: consent.process_send_consent,
    ActionType.SEND_QUOTE.value: billing.process_send_quote,
    ActionType.PREPARE_INVOICE.value: billing.process_prepare_invoice,
}


def register_action_handler(action_type: str, handler: ActionHandler) -> None:
    """Add (or replace) the handler for an action type."""
    ACTION_HANDLERS[action_type] = handler


def is_registered(action_type: str) -> bool:
    return action_type in ACTION_HANDLERS


def resolve_action_handler(action_type: str) -> ActionHandler:
    handler = ACTION_HANDLERS.get(action_type)
    if not handler:
        raise UnknownActionTypeError(action_type)
    return handler
