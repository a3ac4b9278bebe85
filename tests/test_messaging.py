import json

import httpx
import pytest

from agenda.core.cache import NullCache
from agenda.models.credentials import MetaWhatsAppCredentials
from agenda.models.tenant import MessageTemplate
from agenda.services.integration_service import IntegrationDirectory, upsert_integration
from agenda.services.messaging import TemplateName, WhatsAppMessenger

BASE_URL = "https://graph.test/v18.0"


@pytest.fixture
async def whatsapp_tenant(session_maker, seed) -> int:
    async with session_maker() as session:
        await upsert_integration(
            session, seed.tenant_id, MetaWhatsAppCredentials(phone_number_id="1098", access_token="EAAG")
        )
        session.add(
            MessageTemplate(
                tenant_id=seed.tenant_id,
                name=TemplateName.REMINDER_24H,
                provider_template_name="recordatorio_turno",
                language="es_AR",
            )
        )
        await session.commit()
    return seed.tenant_id


def make_messenger(session_maker, handler) -> WhatsAppMessenger:
    return WhatsAppMessenger(
        IntegrationDirectory(session_maker, NullCache()),
        base_url=BASE_URL,
        default_language="es",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_sends_mapped_template(session_maker, whatsapp_tenant):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"messages": [{"id": "wamid.HBg"}]})

    messenger = make_messenger(session_maker, handler)
    result = await messenger.send_template_message(
        whatsapp_tenant, "+541144445555", TemplateName.REMINDER_24H, ["Lucia", "21/10/2026 09:00", "Centro"]
    )

    assert result.ok
    assert result.provider_message_id == "wamid.HBg"
    request = requests[0]
    assert str(request.url) == f"{BASE_URL}/1098/messages"
    assert request.headers["Authorization"] == "Bearer EAAG"
    body = json.loads(request.content)
    assert body["to"] == "+541144445555"
    assert body["template"]["name"] == "recordatorio_turno"
    assert body["template"]["language"] == {"code": "es_AR"}
    params = body["template"]["components"][0]["parameters"]
    assert [p["text"] for p in params] == ["Lucia", "21/10/2026 09:00", "Centro"]


@pytest.mark.asyncio
async def test_unmapped_template_uses_logical_name(session_maker, whatsapp_tenant):
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={})

    messenger = make_messenger(session_maker, handler)
    result = await messenger.send_template_message(whatsapp_tenant, "+541144445555", TemplateName.WAITLIST_OFFER, [])
    assert result.ok
    assert result.provider_message_id is None
    assert bodies[0]["template"]["name"] == "waitlist_offer"
    assert bodies[0]["template"]["language"] == {"code": "es"}


@pytest.mark.asyncio
async def test_api_error_is_a_failed_result(session_maker, whatsapp_tenant):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "Template name does not exist"}})

    result = await make_messenger(session_maker, handler).send_template_message(
        whatsapp_tenant, "+541144445555", TemplateName.REMINDER_2H, []
    )
    assert not result.ok
    assert "400" in result.error


@pytest.mark.asyncio
async def test_transport_error_is_a_failed_result(session_maker, whatsapp_tenant):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = await make_messenger(session_maker, handler).send_template_message(
        whatsapp_tenant, "+541144445555", TemplateName.REMINDER_2H, []
    )
    assert not result.ok
    assert "ConnectError" in result.error


@pytest.mark.asyncio
async def test_missing_integration_is_a_failed_result(session_maker, seed):
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    result = await make_messenger(session_maker, handler).send_template_message(
        seed.tenant_id, "+541144445555", TemplateName.REMINDER_2H, []
    )
    assert not result.ok
    assert "missing" in result.error


@pytest.mark.asyncio
async def test_accepted_send_without_json_body_is_ok(session_maker, whatsapp_tenant):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>accepted</html>")

    result = await make_messenger(session_maker, handler).send_template_message(
        whatsapp_tenant, "+541144445555", TemplateName.REMINDER_2H, []
    )
    assert result.ok
    assert result.provider_message_id is None


@pytest.mark.asyncio
async def test_accepted_send_with_unexpected_json_is_ok(session_maker, whatsapp_tenant):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(202, json={"messages": ["wamid.HBg"]})

    result = await make_messenger(session_maker, handler).send_template_message(
        whatsapp_tenant, "+541144445555", TemplateName.REMINDER_2H, []
    )
    assert result.ok
    assert result.provider_message_id is None
