"""Tests for the patient confirmation link endpoints."""

from datetime import datetime, timedelta, timezone

import pytest

from clinic_automation.db.enums import ActionType, AppointmentStatus
from clinic_automation.services import action_service

TOKEN = "c" * 64


@pytest.fixture
def make_linked(make_appointment):
    def _make(status=AppointmentStatus.SCHEDULED, expires_in=timedelta(days=2)):
        return make_appointment(
            status=status,
            confirmation_token=TOKEN,
            confirmation_token_expires_at=datetime.now(timezone.utc) + expires_in,
        )

    return _make


@pytest.mark.asyncio
async def test_get_confirmation_page(client, make_linked):
    appointment = make_linked()

    response = await client.get(f"/appointment/confirm/{TOKEN}")

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == str(appointment.id)
    assert data["appointment_number"] == appointment.appointment_number
    assert data["status"] == "scheduled"
    assert "patient_id" not in data


@pytest.mark.asyncio
async def test_confirm_with_valid_token(client, db, make_linked):
    appointment = make_linked()

    response = await client.post(f"/appointment/confirm/{TOKEN}")

    assert response.status_code == 200
    data = response.json()
    assert data["previous_status"] == "scheduled"
    assert data["new_status"] == "confirmed"
    assert data["confirmed_at"] is not None

    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.CONFIRMED.value
    assert appointment.confirmation_token is None
    types = {a.action_type for a in action_service.list_actions(db, appointment.id)}
    assert types == {ActionType.SEND_CONSENT.value, ActionType.SEND_QUOTE.value}


@pytest.mark.asyncio
async def test_cancel_with_valid_token(client, db, make_linked):
    appointment = make_linked(status=AppointmentStatus.CONFIRMED)

    page = await client.get(f"/appointment/cancel/{TOKEN}")
    response = await client.post(
        f"/appointment/cancel/{TOKEN}", json={"reason": "cannot make it"}
    )

    assert page.status_code == 200
    assert page.json()["status"] == "confirmed"
    assert response.status_code == 200
    assert response.json()["new_status"] == "cancelled"
    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.CANCELLED.value


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["confirm", "cancel"])
async def test_expired_token_returns_410(client, db, make_linked, path):
    appointment = make_linked(expires_in=timedelta(hours=-1))

    page = await client.get(f"/appointment/{path}/{TOKEN}")
    response = await client.post(f"/appointment/{path}/{TOKEN}")

    assert page.status_code == 410
    assert response.status_code == 410
    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.SCHEDULED.value


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["get", "post"])
@pytest.mark.parametrize("path", ["confirm", "cancel"])
async def test_unknown_token_returns_404(client, make_linked, method, path):
    make_linked()

    response = await getattr(client, method)(f"/appointment/{path}/{'d' * 64}")

    assert response.status_code == 404
    assert response.json()["detail"] == "Appointment not found"


@pytest.mark.asyncio
async def test_confirm_wrong_status_returns_409(client, db, make_linked):
    appointment = make_linked(status=AppointmentStatus.COMPLETED)

    response = await client.post(f"/appointment/confirm/{TOKEN}")

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["current_status"] == "completed"
    assert detail["requested_status"] == "confirmed"
    assert detail["allowed_transitions"] == []
    db.refresh(appointment)
    assert appointment.status == AppointmentStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_cancel_in_progress_returns_409(client, make_linked):
    make_linked(status=AppointmentStatus.IN_PROGRESS)

    response = await client.post(f"/appointment/cancel/{TOKEN}")

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["current_status"] == "in_progress"
    assert detail["allowed_transitions"] == ["completed", "cancelled"]
