"""Job-related enums."""

from enum import Enum


class JobType(str, Enum):
    """Types of scheduled jobs."""

    EXECUTE_ACTION = "execute_action"  # Run a referenced appointment action
    APPOINTMENT_REMINDER = "appointment_reminder"  # Ad-hoc reminder action
    APPOINTMENT_CONFIRMATION = "appointment_confirmation"  # Ad-hoc confirmation action


class JobStatus(str, Enum):
    """Status of scheduled jobs."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobReferenceType(str, Enum):
    """Kinds of entity a job can point back to."""

    APPOINTMENT = "appointment"
    APPOINTMENT_ACTION = "appointment_action"


CANCELLABLE_JOB_STATUSES = (
    JobStatus.SCHEDULED.value,
    JobStatus.IN_PROGRESS.value,
    JobStatus.FAILED.value,
)
PURGEABLE_JOB_STATUSES = (JobStatus.COMPLETED.value, JobStatus.CANCELLED.value)
