"""Shared helpers for action handlers."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from clinic_automation.actions.context import ExecutionContext, Recipient
from clinic_automation.core.config import settings
from clinic_automation.core.exceptions import (
    AppointmentNotFoundError,
    CollaboratorUnavailableError,
)
from clinic_automation.db.models import Appointment, AppointmentAction, Patient

_MONTHS = {
    "es": ["enero", "febrero", "marzo", "abril", "mayo", "junio", "julio",
           "agosto", "septiembre", "octubre", "noviembre", "diciembre"],
    "fr": ["janvier", "février", "mars", "avril", "mai", "juin", "juillet",
           "août", "septembre", "octobre", "novembre", "décembre"],
    "en": ["January", "February", "March", "April", "May", "June", "July",
           "August", "September", "October", "November", "December"],
}
_WEEKDAYS = {
    "es": ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"],
    "fr": ["lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche"],
    "en": ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"],
}


def load_appointment(db: Session, action: AppointmentAction) -> Appointment:
    """Load the action's appointment with its patient, or raise."""
    appointment = (
        db.execute(
            select(Appointment)
            .options(joinedload(Appointment.patient))
            .where(Appointment.id == action.appointment_id)
        )
        .scalars()
        .first()
    )
    if not appointment or not appointment.patient:
        raise AppointmentNotFoundError(action.appointment_id)
    return appointment


def patient_language(patient: Patient) -> str:
    return patient.preferred_language or settings.DEFAULT_LANGUAGE


def build_recipient(patient: Patient) -> Recipient:
    return Recipient(
        email=patient.email,
        phone=patient.phone,
        language=patient_language(patient),
        name=patient.full_name,
    )


def require_collaborator(context: ExecutionContext, name: str):
    collaborator = getattr(context, name, None)
    if collaborator is None:
        raise CollaboratorUnavailableError(name)
    return collaborator


def format_date(value: date, language: str = "es") -> str:
    """Long-form date, e.g. 'jueves, 5 de marzo de 2026'."""
    lang = language if language in _MONTHS else "es"
    weekday = _WEEKDAYS[lang][value.weekday()]
    month = _MONTHS[lang][value.month - 1]
    if lang == "en":
        return f"{weekday}, {month} {value.day}, {value.year}"
    if lang == "fr":
        return f"{weekday} {value.day} {month} {value.year}"
    return f"{weekday}, {value.day} de {month} de {value.year}"


def format_time(value: time, language: str = "es") -> str:
    if language == "en":
        hour = value.hour % 12 or 12
        suffix = "AM" if value.hour < 12 else "PM"
        return f"{hour:02d}:{value.minute:02d} {suffix}"
    return f"{value.hour:02d}:{value.minute:02d}"


def json_safe(value: Any) -> Any:
    """Convert collaborator payloads (Decimal, UUID, dates) for JSON storage."""
    if isinstance(value, dict):
        return {str(key): json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(item) for item in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value
