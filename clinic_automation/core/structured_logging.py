"""Structured logging helpers (PHI-safe)."""

from typing import Any


def build_log_context(
    *,
    appointment_id: Any = None,
    action_id: Any = None,
    action_type: str | None = None,
    job_id: Any = None,
    job_type: str | None = None,
    actor_id: Any = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict (ids and types only)."""
    context: dict[str, Any] = {}
    if appointment_id:
        context["appointment_id"] = str(appointment_id)
    if action_id:
        context["action_id"] = str(action_id)
    if action_type:
        context["action_type"] = action_type
    if job_id:
        context["job_id"] = str(job_id)
    if job_type:
        context["job_type"] = job_type
    if actor_id:
        context["actor_id"] = str(actor_id)
    return context


def mask_email(email: str | None) -> str:
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."


def mask_phone(phone: str | None) -> str:
    if not phone:
        return ""
    digits = phone.strip()
    return f"...{digits[-4:]}" if len(digits) > 4 else "..."
