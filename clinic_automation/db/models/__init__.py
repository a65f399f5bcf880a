"""SQLAlchemy ORM models."""

from clinic_automation.db.models.actions import AppointmentAction
from clinic_automation.db.models.appointments import Appointment, Patient
from clinic_automation.db.models.jobs import ScheduledJob

__all__ = [
    "Appointment",
    "AppointmentAction",
    "Patient",
    "ScheduledJob",
]
