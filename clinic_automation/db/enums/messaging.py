"""Messaging collaborator enums."""

from enum import Enum


class MessageChannel(str, Enum):
    EMAIL = "email"
    WHATSAPP = "whatsapp"
    SMS = "sms"


class TemplateType(str, Enum):
    APPOINTMENT_CONFIRMATION = "appointment_confirmation"
    APPOINTMENT_REMINDER = "appointment_reminder"
    CONSENT_REQUEST = "consent_request"
    QUOTE_SENT = "quote_sent"
    INVOICE_READY = "invoice_ready"
