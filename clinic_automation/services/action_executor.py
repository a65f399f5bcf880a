"""Action executor - eligibility check, dispatch and outcome write-back.

Handler failures are contained: they are recorded on the action and returned
as an unsuccessful ActionExecutionResult. Only not-found and not-eligible
conditions raise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from clinic_automation.actions.context import ExecutionContext
from clinic_automation.actions.registry import resolve_action_handler
from clinic_automation.core.exceptions import (
    InvalidActionStatusError,
    NotEligibleError,
    RetriesExhaustedError,
    ValidationRequiredError,
)
from clinic_automation.core.structured_logging import build_log_context
from clinic_automation.db.enums import EXECUTABLE_ACTION_STATUSES
from clinic_automation.db.models import AppointmentAction
from clinic_automation.services import action_service

logger = logging.getLogger(__name__)


@dataclass
class ActionExecutionResult:
    success: bool
    action: AppointmentAction
    result: dict[str, Any] | None = None
    error: str | None = None
    # Handler finished but the action was cancelled meanwhile.
    discarded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "action_id": str(self.action.id),
            "action_type": self.action.action_type,
            "status": self.action.status,
            "result": self.result,
            "error": self.error,
            "discarded": self.discarded,
        }


def check_eligibility(action: AppointmentAction) -> None:
    """Raise the matching NotEligibleError unless the action can run now."""
    if action.can_execute():
        return
    if action.status in EXECUTABLE_ACTION_STATUSES and action.awaiting_validation:
        raise ValidationRequiredError(action.id)
    raise InvalidActionStatusError(action.id, action.status)


async def execute_action(
    db: Session,
    action_id: UUID,
    context: ExecutionContext | None = None,
) -> ActionExecutionResult:
    """
    Execute one action.

    The action is claimed (in_progress) before dispatch so a crash mid-run
    leaves an auditable record. Raises ActionNotFoundError or a
    NotEligibleError; handler failures are returned, not raised.
    """
    action = action_service.require_action(db, action_id)
    log_context = build_log_context(
        action_id=action.id,
        appointment_id=action.appointment_id,
        action_type=action.action_type,
    )

    try:
        check_eligibility(action)
    except NotEligibleError as exc:
        logger.warning("Action %s not executed: %s", action.id, exc, extra=log_context)
        raise

    if not action_service.start_execution(db, action):
        logger.warning(
            "Action %s was claimed by another executor (status %s)",
            action.id,
            action.status,
            extra=log_context,
        )
        raise InvalidActionStatusError(action.id, action.status)

    context = context or ExecutionContext.default()

    try:
        handler = resolve_action_handler(action.action_type)
        result = await handler(db, action, context)
    except Exception as exc:
        db.rollback()
        error = str(exc) or type(exc).__name__
        action_service.mark_action_failed(db, action, error)
        logger.error(
            "Failed to execute action '%s': %s",
            action.action_type,
            type(exc).__name__,
            extra=log_context,
        )
        return ActionExecutionResult(success=False, action=action, error=error)

    recorded = action_service.mark_action_completed(db, action, result or {})
    if recorded:
        logger.info(
            "Successfully executed action '%s'", action.action_type, extra=log_context
        )
    return ActionExecutionResult(
        success=True, action=action, result=result or {}, discarded=not recorded
    )


async def retry_action(
    db: Session,
    action_id: UUID,
    context: ExecutionContext | None = None,
) -> ActionExecutionResult:
    """
    Re-run a failed action (or one still awaiting validation).

    Each retry counts against max_retries; once exhausted only an explicit
    new action can run the side effect again.
    """
    action = action_service.require_action(db, action_id)

    if action.retries_exhausted:
        raise RetriesExhaustedError(action.id, action.retry_count, action.max_retries)
    if not action.can_retry():
        raise InvalidActionStatusError(action.id, action.status, operation="retry")

    action_service.reset_for_retry(db, action)
    logger.info(
        "Retrying action %s (attempt %s/%s)",
        action.id,
        action.retry_count,
        action.max_retries,
        extra=build_log_context(action_id=action.id, action_type=action.action_type),
    )
    return await execute_action(db, action.id, context)


async def execute_ready_actions(
    db: Session,
    context: ExecutionContext | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Execute every gate-passing action that is due."""
    context = context or ExecutionContext.default()
    results: list[ActionExecutionResult] = []

    for action in action_service.list_ready_actions(db, now):
        try:
            results.append(await execute_action(db, action.id, context))
        except NotEligibleError:
            # Raced with a cancel/validation or another executor.
            continue

    return {
        "executed": len(results),
        "successful": sum(1 for r in results if r.success),
        "failed": sum(1 for r in results if not r.success),
        "results": [r.to_dict() for r in results],
    }
