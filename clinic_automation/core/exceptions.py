"""Error taxonomy for the automation engine.

Structural errors (not found, invalid transition, not eligible) are raised
synchronously to the caller. Handler failures are recorded on the Action/Job
record instead of propagating.
"""

from __future__ import annotations

from typing import Iterable


class AutomationError(Exception):
    """Base exception for automation engine errors."""

    pass


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(AutomationError):
    """Referenced record does not exist in this tenant store."""

    pass


class AppointmentNotFoundError(NotFoundError):
    def __init__(self, appointment_id) -> None:
        self.appointment_id = appointment_id
        super().__init__(f"Appointment not found: {appointment_id}")


class ActionNotFoundError(NotFoundError):
    def __init__(self, action_id) -> None:
        self.action_id = action_id
        super().__init__(f"Action not found: {action_id}")


class ConfirmationTokenNotFoundError(NotFoundError):
    def __init__(self) -> None:
        super().__init__("No appointment matches this confirmation token")


class ConfirmationTokenExpiredError(AutomationError):
    """Confirmation link is past its expiry."""

    def __init__(self, appointment_id) -> None:
        self.appointment_id = appointment_id
        super().__init__(f"Confirmation token expired for appointment {appointment_id}")


# =============================================================================
# Invalid transition
# =============================================================================


class InvalidTransitionError(AutomationError):
    """Requested appointment status is not reachable from the current one."""

    def __init__(
        self,
        current_status: str,
        requested_status: str,
        allowed: Iterable[str],
    ) -> None:
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed = list(allowed)
        allowed_label = ", ".join(self.allowed) or "none"
        super().__init__(
            f"Invalid transition from '{current_status}' to '{requested_status}'. "
            f"Allowed transitions: {allowed_label}"
        )


# =============================================================================
# Not eligible
# =============================================================================


class NotEligibleError(AutomationError):
    """Precondition for the requested operation is not satisfied."""

    pass


class ValidationRequiredError(NotEligibleError):
    def __init__(self, action_id) -> None:
        self.action_id = action_id
        super().__init__("Cannot execute action: Action requires validation")


class InvalidActionStatusError(NotEligibleError):
    def __init__(self, action_id, status: str, operation: str = "execute") -> None:
        self.action_id = action_id
        self.status = status
        super().__init__(f"Cannot {operation} action in status '{status}'")


class ValidationNotRequiredError(NotEligibleError):
    def __init__(self, action_id) -> None:
        self.action_id = action_id
        super().__init__("This action does not require validation")


class ActionAlreadyTerminalError(NotEligibleError):
    def __init__(self, action_id, status: str) -> None:
        self.action_id = action_id
        self.status = status
        super().__init__(f"Action already terminal (status: {status})")


class RetriesExhaustedError(NotEligibleError):
    def __init__(self, action_id, retry_count: int, max_retries: int) -> None:
        self.action_id = action_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(
            f"Action cannot be retried: retries exhausted ({retry_count}/{max_retries})"
        )


class DuplicateActionError(NotEligibleError):
    def __init__(self, appointment_id, action_type: str) -> None:
        self.appointment_id = appointment_id
        self.action_type = action_type
        super().__init__(
            f"An active '{action_type}' action already exists for appointment {appointment_id}"
        )


# =============================================================================
# Registry lookups
# =============================================================================


class UnknownActionTypeError(AutomationError, ValueError):
    def __init__(self, action_type: str) -> None:
        self.action_type = action_type
        super().__init__(f"Unknown action type: {action_type}")


class UnknownJobTypeError(AutomationError, ValueError):
    def __init__(self, job_type: str) -> None:
        self.job_type = job_type
        super().__init__(f"Unknown job type: {job_type}")


# =============================================================================
# Collaborator failures (raised inside handlers, recorded on the record)
# =============================================================================


class CollaboratorError(AutomationError):
    """An external collaborator failed or is not configured."""

    pass


class ChannelUnavailableError(CollaboratorError):
    def __init__(self, channel: str) -> None:
        self.channel = channel
        super().__init__(f"Channel {channel} is not available/configured")


class CollaboratorUnavailableError(CollaboratorError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name} collaborator is not configured")


class MessagingError(CollaboratorError):
    """Message provider rejected or failed to accept a message."""

    pass


class JobExecutionError(AutomationError):
    """A job handler finished without success."""

    pass
