"""Appointment lifecycle enums."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle status.

    Flow: scheduled → confirmed → in_progress → completed
              ↘ cancelled / no_show
    """

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class ConsentStatus(str, Enum):
    """Consent collection state recorded on the appointment."""

    PENDING = "pending"
    SENT = "sent"
    NOT_REQUIRED = "not_required"
    MISSING_ASSOCIATION = "missing_association"


DEFAULT_APPOINTMENT_STATUS = AppointmentStatus.SCHEDULED
