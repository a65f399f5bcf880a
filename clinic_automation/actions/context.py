"""Execution context and collaborator interfaces consumed by action handlers.

Handlers are thin adapters: the collaborators they call (messaging, consent
workflow, quote/invoice drafting) live outside the engine and are supplied
through the ExecutionContext.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from clinic_automation.core.config import settings

if TYPE_CHECKING:
    from clinic_automation.db.models import Appointment, AppointmentAction
    from clinic_automation.services.messaging_service import MessagingService


@dataclass(frozen=True)
class Recipient:
    email: str | None = None
    phone: str | None = None
    language: str = "es"
    name: str = "Patient"


@dataclass(frozen=True)
class SigningRequest:
    """A consent signing request created by the consent workflow."""

    id: uuid.UUID
    token: str
    title: str
    expires_at: datetime | None = None


@dataclass(frozen=True)
class ConsentPlan:
    """Outcome of asking the consent workflow for an appointment's consents.

    missing lists treatments with no consent template; when non-empty nothing
    is sent.
    """

    requests: list[SigningRequest] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DocumentDraft:
    """Quote or invoice draft returned by the billing collaborator."""

    number: str
    total_amount: Decimal
    items: list[dict[str, Any]] = field(default_factory=list)
    id: uuid.UUID | None = None
    view_url: str | None = None


@runtime_checkable
class Messenger(Protocol):
    async def send(
        self,
        channel: str,
        template_type: str,
        recipient: Recipient,
        template_data: dict[str, Any],
    ) -> dict[str, Any]: ...

    def is_channel_available(self, channel: str) -> bool: ...


@runtime_checkable
class ConsentWorkflow(Protocol):
    def create_signing_requests(
        self,
        db: Session,
        appointment: "Appointment",
        action: "AppointmentAction",
        *,
        language: str,
        expires_at: datetime,
    ) -> ConsentPlan: ...


@runtime_checkable
class BillingDocuments(Protocol):
    def draft_quote(self, db: Session, appointment: "Appointment") -> DocumentDraft: ...

    def draft_invoice(self, db: Session, appointment: "Appointment") -> DocumentDraft: ...


@dataclass
class ExecutionContext:
    """Free-form context handed to every handler invocation."""

    messaging: Messenger | None = None
    consent: ConsentWorkflow | None = None
    billing: BillingDocuments | None = None
    base_url: str = settings.FRONTEND_URL
    clinic_name: str = settings.CLINIC_NAME
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def default(cls, **overrides: Any) -> "ExecutionContext":
        """Context wired to the configured messaging service."""
        from clinic_automation.services.messaging_service import MessagingService

        messaging: "MessagingService" = overrides.pop("messaging", None) or MessagingService()
        return cls(messaging=messaging, **overrides)
