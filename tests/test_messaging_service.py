"""Tests for the messaging collaborator (channels, dry run, provider errors)."""

import json

import httpx
import pytest

from clinic_automation.actions.context import Recipient
from clinic_automation.core.exceptions import ChannelUnavailableError, MessagingError
from clinic_automation.services import http_service
from clinic_automation.services.messaging_service import (
    RESEND_SEND_URL,
    EmailChannel,
    MessagingService,
    SMSChannel,
    WhatsAppChannel,
)

RECIPIENT = Recipient(
    email="ana.garcia@example.com", phone="+34600111222", language="es", name="Ana García"
)


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    async def _no_sleep(attempt, base_delay, max_delay):
        return None

    monkeypatch.setattr(http_service, "_sleep_backoff", _no_sleep)


def _service(email: EmailChannel, whatsapp_enabled: bool = False) -> MessagingService:
    return MessagingService(
        channels={
            "email": email,
            "whatsapp": WhatsAppChannel(enabled=whatsapp_enabled),
            "sms": SMSChannel(enabled=False),
        }
    )


@pytest.mark.asyncio
async def test_email_dry_run_without_api_key():
    service = _service(EmailChannel(api_key=""))

    result = await service.send(
        "email", "appointment_confirmation", RECIPIENT, {"clinic_name": "Test Clinic"}
    )

    assert result["dry_run"] is True
    assert result["channel"] == "email"
    assert result["message_id"].startswith("dry-run-")


@pytest.mark.asyncio
async def test_email_posts_to_provider():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"id": "email-123"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        service = _service(EmailChannel(api_key="re_test", sender="clinic@example.com", client=client))
        result = await service.send(
            "email",
            "appointment_confirmation",
            RECIPIENT,
            {"clinic_name": "Test Clinic", "confirmation_url": "https://clinic.test/x"},
        )

    assert result == {"message_id": "email-123", "channel": "email"}
    assert len(requests) == 1
    assert str(requests[0].url) == RESEND_SEND_URL
    assert requests[0].headers["Authorization"] == "Bearer re_test"
    body = json.loads(requests[0].content)
    assert body["to"] == ["ana.garcia@example.com"]
    assert body["from"] == "clinic@example.com"
    assert body["subject"] == "Please confirm your appointment - Test Clinic"


@pytest.mark.asyncio
async def test_email_server_error_is_retried_then_raises():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(500, json={"error": "boom"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        channel = EmailChannel(api_key="re_test", client=client)
        with pytest.raises(MessagingError) as exc_info:
            await channel.send("appointment_confirmation", RECIPIENT, {})

    assert calls["n"] == 3
    assert "status 500" in str(exc_info.value)


@pytest.mark.asyncio
async def test_email_recovers_after_transient_error():
    responses = iter([httpx.Response(503), httpx.Response(200, json={"id": "email-9"})])

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await EmailChannel(api_key="re_test", client=client).send(
            "quote_sent", RECIPIENT, {}
        )

    assert result["message_id"] == "email-9"


@pytest.mark.asyncio
async def test_email_requires_address():
    channel = EmailChannel(api_key="")

    with pytest.raises(MessagingError):
        await channel.send("appointment_confirmation", Recipient(phone="+34600111222"), {})


@pytest.mark.asyncio
async def test_email_rejects_unknown_template():
    with pytest.raises(MessagingError) as exc_info:
        await EmailChannel(api_key="").send("birthday_card", RECIPIENT, {})

    assert "Unknown template type" in str(exc_info.value)


@pytest.mark.asyncio
async def test_disabled_whatsapp_is_unavailable():
    service = _service(EmailChannel(api_key=""))

    assert service.is_channel_available("whatsapp") is False
    with pytest.raises(ChannelUnavailableError):
        await service.send("whatsapp", "appointment_reminder", RECIPIENT, {})


@pytest.mark.asyncio
async def test_unknown_channel_raises():
    service = _service(EmailChannel(api_key=""))

    assert service.is_channel_available("pigeon") is False
    with pytest.raises(MessagingError) as exc_info:
        await service.send("pigeon", "appointment_reminder", RECIPIENT, {})

    assert str(exc_info.value) == "Unknown channel: pigeon"


@pytest.mark.asyncio
async def test_send_multi_channel_reports_per_channel():
    service = _service(EmailChannel(api_key=""))

    results = await service.send_multi_channel(
        ["email", "whatsapp"], "appointment_reminder", RECIPIENT, {}
    )

    assert [r["channel"] for r in results] == ["email", "whatsapp"]
    assert results[0]["success"] is True
    assert results[1]["success"] is False
    assert "whatsapp" in results[1]["error"]


def test_get_available_channels():
    service = _service(EmailChannel(api_key=""), whatsapp_enabled=True)

    assert service.get_available_channels() == ["email", "whatsapp"]
