"""Enum definitions for application constants."""

from clinic_automation.db.enums.actions import (
    ACTIVE_ACTION_STATUSES,
    CANCELLABLE_BY_CASCADE,
    EXECUTABLE_ACTION_STATUSES,
    TERMINAL_ACTION_STATUSES,
    ActionStatus,
    ActionType,
    TriggerType,
)
from clinic_automation.db.enums.appointments import (
    DEFAULT_APPOINTMENT_STATUS,
    AppointmentStatus,
    ConsentStatus,
)
from clinic_automation.db.enums.jobs import (
    CANCELLABLE_JOB_STATUSES,
    PURGEABLE_JOB_STATUSES,
    JobReferenceType,
    JobStatus,
    JobType,
)
from clinic_automation.db.enums.messaging import MessageChannel, TemplateType

__all__ = [
    "ACTIVE_ACTION_STATUSES",
    "CANCELLABLE_BY_CASCADE",
    "CANCELLABLE_JOB_STATUSES",
    "DEFAULT_APPOINTMENT_STATUS",
    "EXECUTABLE_ACTION_STATUSES",
    "PURGEABLE_JOB_STATUSES",
    "TERMINAL_ACTION_STATUSES",
    "ActionStatus",
    "ActionType",
    "AppointmentStatus",
    "ConsentStatus",
    "JobReferenceType",
    "JobStatus",
    "JobType",
    "MessageChannel",
    "TemplateType",
    "TriggerType",
]
