"""
Test configuration and fixtures.

Provides:
- In-memory SQLite tenant store, fresh schema per test
- Appointment/patient factories
- Recording fakes for the messaging, consent and billing collaborators
- HTTPX AsyncClient against the app with get_db overridden
"""
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, Generator

# Point the default engine at memory and force dry-run email before settings load
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RESEND_API_KEY"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from clinic_automation.actions.context import (
    ConsentPlan,
    DocumentDraft,
    ExecutionContext,
    Recipient,
    SigningRequest,
)
from clinic_automation.core.deps import get_db, get_execution_context
from clinic_automation.core.exceptions import ChannelUnavailableError
from clinic_automation.db.base import Base
from clinic_automation.db.enums import AppointmentStatus
from clinic_automation.db.models import Appointment, Patient
from clinic_automation.main import app


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    """Session on a fresh in-memory store; app code may commit freely."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture(scope="function")
def patient(db: Session) -> Patient:
    patient = Patient(
        id=uuid.uuid4(),
        first_name="Ana",
        last_name="García",
        email="ana.garcia@example.com",
        phone="+34600111222",
        preferred_language="es",
    )
    db.add(patient)
    db.commit()
    return patient


@pytest.fixture(scope="function")
def make_appointment(db: Session, patient: Patient) -> Callable[..., Appointment]:
    """Create an appointment starting `starts_in` from now (UTC clinic time)."""
    counter = {"n": 0}

    def _make(
        status: AppointmentStatus = AppointmentStatus.SCHEDULED,
        starts_in: timedelta = timedelta(hours=48),
        **overrides: Any,
    ) -> Appointment:
        counter["n"] += 1
        starts_at = (datetime.now(timezone.utc) + starts_in).replace(second=0, microsecond=0)
        appointment = Appointment(
            id=uuid.uuid4(),
            appointment_number=f"APT-{counter['n']:04d}",
            patient_id=patient.id,
            service_id=uuid.uuid4(),
            appointment_date=starts_at.date(),
            start_time=starts_at.time(),
            status=status.value,
            **overrides,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make


@pytest.fixture(scope="function")
def appointment(make_appointment) -> Appointment:
    return make_appointment()


@pytest.fixture(scope="function")
def actor_id() -> uuid.UUID:
    return uuid.uuid4()


# =============================================================================
# Collaborator fakes
# =============================================================================


@dataclass
class SentMessage:
    channel: str
    template_type: str
    recipient: Recipient
    template_data: dict[str, Any]


class FakeMessenger:
    """Records every send; channels outside `available` are unavailable."""

    def __init__(self, available: tuple[str, ...] = ("email",), fail_with: Exception | None = None):
        self.available = set(available)
        self.fail_with = fail_with
        self.sent: list[SentMessage] = []

    async def send(self, channel, template_type, recipient, template_data):
        if self.fail_with is not None:
            raise self.fail_with
        if channel not in self.available:
            raise ChannelUnavailableError(channel)
        self.sent.append(SentMessage(channel, template_type, recipient, dict(template_data)))
        return {"message_id": f"msg-{len(self.sent)}", "channel": channel}

    def is_channel_available(self, channel):
        return channel in self.available


@dataclass
class FakeConsentWorkflow:
    titles: list[str] = field(default_factory=lambda: ["General treatment consent"])
    missing: list[str] = field(default_factory=list)
    calls: list[dict[str, Any]] = field(default_factory=list)

    def create_signing_requests(self, db, appointment, action, *, language, expires_at):
        self.calls.append(
            {"appointment_id": appointment.id, "language": language, "expires_at": expires_at}
        )
        if self.missing:
            return ConsentPlan(missing=list(self.missing))
        requests = [
            SigningRequest(
                id=uuid.uuid4(),
                token=f"sign-{index}",
                title=title,
                expires_at=expires_at,
            )
            for index, title in enumerate(self.titles)
        ]
        return ConsentPlan(requests=requests)


@dataclass
class FakeBilling:
    items: list[dict[str, Any]] = field(
        default_factory=lambda: [
            {"name": "Dental cleaning", "quantity": 1, "unit_price": Decimal("80.00")},
            {"name": "X-ray", "quantity": 1, "unit_price": Decimal("45.50")},
        ]
    )
    quote_id: uuid.UUID = field(default_factory=uuid.uuid4)
    invoice_id: uuid.UUID = field(default_factory=uuid.uuid4)

    def _total(self) -> Decimal:
        return sum((item["unit_price"] * item["quantity"] for item in self.items), Decimal("0"))

    def draft_quote(self, db, appointment):
        return DocumentDraft(
            number=f"Q-{appointment.appointment_number}",
            total_amount=self._total(),
            items=list(self.items),
            id=self.quote_id,
        )

    def draft_invoice(self, db, appointment):
        return DocumentDraft(
            number=f"INV-{appointment.appointment_number}",
            total_amount=self._total(),
            items=list(self.items),
            id=self.invoice_id,
        )


@pytest.fixture(scope="function")
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture(scope="function")
def consent_workflow() -> FakeConsentWorkflow:
    return FakeConsentWorkflow()


@pytest.fixture(scope="function")
def billing() -> FakeBilling:
    return FakeBilling()


@pytest.fixture(scope="function")
def context(messenger, consent_workflow, billing) -> ExecutionContext:
    return ExecutionContext(
        messaging=messenger,
        consent=consent_workflow,
        billing=billing,
        base_url="https://clinic.test",
        clinic_name="Test Clinic",
    )


# =============================================================================
# Client Fixtures
# =============================================================================


@pytest.fixture(scope="function")
async def client(db: Session, context: ExecutionContext) -> AsyncGenerator[AsyncClient, None]:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_execution_context] = lambda: context

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
