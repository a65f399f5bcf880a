"""Appointment action enums."""

from enum import Enum


class ActionType(str, Enum):
    """Built-in action types. The registry is the source of truth for dispatch."""

    CONFIRMATION_EMAIL = "confirmation_email"
    WHATSAPP_REMINDER = "whatsapp_reminder"
    SEND_CONSENT = "send_consent"
    SEND_QUOTE = "send_quote"
    PREPARE_INVOICE = "prepare_invoice"


class ActionStatus(str, Enum):
    """
    Action lifecycle status.

    API layers move actions between pending/scheduled (validation) or to
    cancelled. Only the executor moves them to in_progress/completed/failed.
    """

    PENDING = "pending"  # Awaiting validation
    SCHEDULED = "scheduled"  # Ready, possibly waiting for scheduled_at
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TriggerType(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


EXECUTABLE_ACTION_STATUSES = (ActionStatus.PENDING.value, ActionStatus.SCHEDULED.value)
ACTIVE_ACTION_STATUSES = (
    ActionStatus.PENDING.value,
    ActionStatus.SCHEDULED.value,
    ActionStatus.IN_PROGRESS.value,
)
TERMINAL_ACTION_STATUSES = (ActionStatus.COMPLETED.value, ActionStatus.CANCELLED.value)
# An in_progress action is cancelled too; its pending outcome is then discarded.
CANCELLABLE_BY_CASCADE = (
    ActionStatus.PENDING.value,
    ActionStatus.SCHEDULED.value,
    ActionStatus.IN_PROGRESS.value,
    ActionStatus.FAILED.value,
)
