"""Messaging collaborator.

Unified interface over the email, WhatsApp and SMS channels:

    await messaging.send("email", "appointment_confirmation", recipient, data)

Email goes through the Resend HTTP API; without RESEND_API_KEY it runs in
dry-run mode and only logs. WhatsApp and SMS are availability-gated by
configuration and have no provider wired yet.
"""

from __future__ import annotations

import html
import logging
import uuid
from typing import Any

import httpx

from clinic_automation.actions.context import Recipient
from clinic_automation.core.config import settings
from clinic_automation.core.exceptions import ChannelUnavailableError, MessagingError
from clinic_automation.core.structured_logging import mask_email, mask_phone
from clinic_automation.db.enums import MessageChannel, TemplateType
from clinic_automation.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_TIMEOUT_SECONDS = 20.0

SUBJECTS = {
    TemplateType.APPOINTMENT_CONFIRMATION.value: "Please confirm your appointment",
    TemplateType.APPOINTMENT_REMINDER.value: "Appointment reminder",
    TemplateType.CONSENT_REQUEST.value: "Consent form to sign",
    TemplateType.QUOTE_SENT.value: "Your quote",
    TemplateType.INVOICE_READY.value: "Your invoice is ready",
}


class Channel:
    """Base class for message channels."""

    name: str = ""

    def is_available(self) -> bool:
        return False

    async def send(
        self, template_type: str, recipient: Recipient, data: dict[str, Any]
    ) -> dict[str, Any]:
        raise NotImplementedError


class EmailChannel(Channel):
    name = MessageChannel.EMAIL.value

    def __init__(
        self,
        api_key: str | None = None,
        sender: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = settings.RESEND_API_KEY if api_key is None else api_key
        self.sender = sender or settings.EMAIL_FROM
        self._client = client

    def is_available(self) -> bool:
        return True

    async def send(
        self, template_type: str, recipient: Recipient, data: dict[str, Any]
    ) -> dict[str, Any]:
        if not recipient.email:
            raise MessagingError("Email address is required for email channel")
        if template_type not in SUBJECTS:
            raise MessagingError(f"Unknown template type: {template_type}")

        if not self.api_key:
            message_id = f"dry-run-{uuid.uuid4()}"
            logger.info(
                "[DRY RUN] Email send skipped template=%s recipient=%s",
                template_type,
                mask_email(recipient.email),
            )
            return {"message_id": message_id, "channel": self.name, "dry_run": True}

        body = {
            "from": self.sender,
            "to": [recipient.email],
            "subject": _subject(template_type, data),
            "html": _render_body(recipient, data),
            "tags": [{"name": "template", "value": template_type}],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        if self._client is not None:
            response = await request_with_retries(
                lambda: self._client.post(RESEND_SEND_URL, json=body, headers=headers)
            )
        else:
            async with httpx.AsyncClient(timeout=RESEND_TIMEOUT_SECONDS) as client:
                response = await request_with_retries(
                    lambda: client.post(RESEND_SEND_URL, json=body, headers=headers)
                )

        if response.status_code >= 400:
            raise MessagingError(
                f"Email provider rejected message (status {response.status_code})"
            )

        message_id = response.json().get("id")
        logger.info(
            "Email sent template=%s recipient=%s message_id=%s",
            template_type,
            mask_email(recipient.email),
            message_id,
        )
        return {"message_id": message_id, "channel": self.name}


class _PhoneChannel(Channel):
    """Phone-number channels gated by a settings flag; no provider wired yet."""

    enabled_flag: str = ""

    def __init__(self, enabled: bool | None = None) -> None:
        self.enabled = getattr(settings, self.enabled_flag) if enabled is None else enabled

    def is_available(self) -> bool:
        return bool(self.enabled)

    async def send(
        self, template_type: str, recipient: Recipient, data: dict[str, Any]
    ) -> dict[str, Any]:
        if not self.is_available():
            raise ChannelUnavailableError(self.name)
        if not recipient.phone:
            raise MessagingError(f"Phone number is required for {self.name} channel")
        # TODO: wire the Twilio provider once credentials are provisioned per clinic.
        logger.warning(
            "%s channel has no provider; message to %s not delivered",
            self.name,
            mask_phone(recipient.phone),
        )
        raise MessagingError(f"{self.name} channel has no provider configured")


class WhatsAppChannel(_PhoneChannel):
    name = MessageChannel.WHATSAPP.value
    enabled_flag = "WHATSAPP_ENABLED"


class SMSChannel(_PhoneChannel):
    name = MessageChannel.SMS.value
    enabled_flag = "SMS_ENABLED"


class MessagingService:
    """Channel dispatcher used by action handlers."""

    def __init__(self, channels: dict[str, Channel] | None = None) -> None:
        self.channels: dict[str, Channel] = channels or {
            MessageChannel.EMAIL.value: EmailChannel(),
            MessageChannel.WHATSAPP.value: WhatsAppChannel(),
            MessageChannel.SMS.value: SMSChannel(),
        }

    async def send(
        self,
        channel: str,
        template_type: str,
        recipient: Recipient,
        template_data: dict[str, Any],
    ) -> dict[str, Any]:
        channel_impl = self.channels.get(channel)
        if channel_impl is None:
            raise MessagingError(f"Unknown channel: {channel}")
        if not channel_impl.is_available():
            raise ChannelUnavailableError(channel)
        return await channel_impl.send(template_type, recipient, template_data)

    async def send_multi_channel(
        self,
        channels: list[str],
        template_type: str,
        recipient: Recipient,
        template_data: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """Send on each channel in turn; failures are reported per channel."""
        results: list[dict[str, Any]] = []
        for channel in channels:
            try:
                result = await self.send(channel, template_type, recipient, template_data)
                results.append({"success": True, "channel": channel, **result})
            except (MessagingError, ChannelUnavailableError, httpx.HTTPError) as exc:
                logger.warning("Send failed on channel %s: %s", channel, type(exc).__name__)
                results.append({"success": False, "channel": channel, "error": str(exc)})
        return results

    def is_channel_available(self, channel: str) -> bool:
        channel_impl = self.channels.get(channel)
        return channel_impl.is_available() if channel_impl else False

    def get_available_channels(self) -> list[str]:
        return [name for name, channel in self.channels.items() if channel.is_available()]


def _subject(template_type: str, data: dict[str, Any]) -> str:
    subject = SUBJECTS[template_type]
    clinic_name = data.get("clinic_name")
    return f"{subject} - {clinic_name}" if clinic_name else subject


def _render_body(recipient: Recipient, data: dict[str, Any]) -> str:
    # Content templating is owned by the messaging platform; this is a plain fallback.
    rows = "".join(
        f"<li>{html.escape(str(key))}: {html.escape(str(value))}</li>"
        for key, value in data.items()
        if value is not None
    )
    return f"<p>{html.escape(recipient.name)},</p><ul>{rows}</ul>"
