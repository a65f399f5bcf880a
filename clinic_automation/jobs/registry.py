"""Job handler registry."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping

from clinic_automation.core.exceptions import UnknownJobTypeError
from clinic_automation.db.enums import JobType
from clinic_automation.jobs.handlers import actions

JobHandler = Callable[[Any, Any, Any], Awaitable[dict[str, Any]]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.EXECUTE_ACTION.value: actions.process_execute_action,
    JobType.APPOINTMENT_REMINDER.value: actions.process_appointment_reminder,
    JobType.APPOINTMENT_CONFIRMATION.value: actions.process_appointment_confirmation,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise UnknownJobTypeError(job_type)
    return handler
