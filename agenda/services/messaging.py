"""Outbound template messages.

The core only speaks to the ``Messenger`` protocol with logical template names;
``WhatsAppMessenger`` maps them to a tenant's approved templates and calls the
WhatsApp Cloud API.
"""
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from agenda.core.config import settings
from agenda.services.integration_service import IntegrationDirectory

logger = logging.getLogger(__name__)


class TemplateName:
    APPOINTMENT_CREATED = "appointment_created"
    REMINDER_24H = "reminder_24h"
    REMINDER_2H = "reminder_2h"
    WAITLIST_OFFER = "waitlist_offer"


TEMPLATE_NAMES = (
    TemplateName.APPOINTMENT_CREATED,
    TemplateName.REMINDER_24H,
    TemplateName.REMINDER_2H,
    TemplateName.WAITLIST_OFFER,
)


@dataclass(frozen=True)
class SendResult:
    ok: bool
    error: str | None = None
    provider_message_id: str | None = None

    @classmethod
    def failure(cls, error: str) -> "SendResult":
        return cls(ok=False, error=error)


class Messenger(Protocol):
    async def send_template_message(
        self, tenant_id: int, to_phone_e164: str, template_name: str, variables: list[str]
    ) -> SendResult: ...


def build_template_payload(to: str, template: str, language: str, variables: list[str]) -> dict:
    return {
        "messaging_product": "whatsapp",
        "to": to,
        "type": "template",
        "template": {
            "name": template,
            "language": {"code": language},
            "components": [
                {
                    "type": "body",
                    "parameters": [{"type": "text", "text": value} for value in variables],
                }
            ],
        },
    }


def _message_id(resp: httpx.Response) -> str | None:
    """Provider message id from an accepted send; the send counts as delivered without it."""
    try:
        data = resp.json()
    except ValueError:
        logger.warning("WhatsApp accepted the message but returned a non-JSON body: %s", resp.text[:200])
        return None
    messages = data.get("messages") if isinstance(data, dict) else None
    if not messages or not isinstance(messages[0], dict):
        return None
    return messages[0].get("id")


class WhatsAppMessenger:
    def __init__(
        self,
        directory: IntegrationDirectory,
        base_url: str = settings.whatsapp_api_base_url,
        default_language: str = settings.whatsapp_language_code,
        timeout: float = settings.http_timeout_seconds,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.directory = directory
        self.base_url = base_url.rstrip("/")
        self.default_language = default_language
        self.timeout = timeout
        self.transport = transport

    async def send_template_message(
        self, tenant_id: int, to_phone_e164: str, template_name: str, variables: list[str]
    ) -> SendResult:
        config = await self.directory.whatsapp(tenant_id)
        if config is None:
            return SendResult.failure(f"WhatsApp integration missing for tenant {tenant_id}")
        template, language = config.template_for(template_name)
        body = build_template_payload(to_phone_e164, template, language or self.default_language, variables)
        url = f"{self.base_url}/{config.credentials.phone_number_id}/messages"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(
                    url,
                    json=body,
                    headers={"Authorization": f"Bearer {config.credentials.access_token}"},
                )
        except httpx.HTTPError as e:
            return SendResult.failure(f"WhatsApp request failed: {type(e).__name__}: {e}")
        if not resp.is_success:
            return SendResult.failure(f"WhatsApp API error: {resp.status_code} {resp.text[:500]}")
        message_id = _message_id(resp)
        logger.info("WhatsApp template %s sent to tenant %s patient phone ending %s", template, tenant_id, to_phone_e164[-4:])
        return SendResult(ok=True, provider_message_id=message_id)
