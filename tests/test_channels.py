import hashlib
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlsplit

import aiohttp
import pytest

from leadrelay.core.exceptions import ChannelConfigurationError
from leadrelay.services.channels import (
    FacebookChannel,
    RDStationChannel,
    WebhookChannel,
    WhatsAppChannel,
)
from leadrelay.services.channels.facebook import build_user_data
from leadrelay.services.http import HttpResponse
from leadrelay.services.records import RequestContext


def sha(value):
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


@pytest.fixture
def http():
    client = MagicMock()
    client.post_json = AsyncMock(return_value=HttpResponse(status=200, text='{"ok": true}', body={"ok": True}))
    return client


@pytest.fixture
def context():
    return RequestContext(
        ip_address="203.0.113.7",
        user_agent="Mozilla/5.0",
        source="instagram",
        origin="https://lp.example.com",
    )


ANSWERS = {
    "Nome completo": "Ana Maria Souza",
    "E-mail": "  Ana@Example.com ",
    "WhatsApp": "+55 (11) 98888-7777",
}


# Webhook

@pytest.mark.asyncio
async def test_webhook_posts_lead_payload(store, delivery_logger, http, context):
    form = store.add_form(settings={"webhook_enabled": True, "webhook_url": " https://hooks.example.com/lead "})
    lead = store.add_lead(form.id, ANSWERS)
    channel = WebhookChannel(delivery_logger, http)

    url = await channel.check_config(form)
    result = await channel.run(form, lead, ANSWERS, context, url)

    assert result.success
    http.post_json.assert_awaited_once()
    called_url, payload = http.post_json.await_args.args
    assert called_url == "https://hooks.example.com/lead"
    assert payload["form_slug"] == "contato"
    assert payload["lead_id"] == lead.id
    assert payload["data"] == ANSWERS
    assert payload["source"] == "instagram"
    assert payload["ip_address"] == "203.0.113.7"

    row = store.integration_logs[0]
    assert row["integration_type"] == "webhook"
    assert row["status"] == "success"


@pytest.mark.asyncio
async def test_webhook_non_2xx_is_an_error(store, delivery_logger, http, context):
    http.post_json.return_value = HttpResponse(status=503, text="x" * 500, body=None)
    form = store.add_form(settings={"webhook_enabled": True, "webhook_url": "https://hooks.example.com"})
    lead = store.add_lead(form.id, ANSWERS)

    result = await WebhookChannel(delivery_logger, http).run(form, lead, ANSWERS, context, "https://hooks.example.com")

    assert not result.success
    assert result.error == "HTTP 503: " + "x" * 200
    assert store.integration_logs[0]["status"] == "error"


@pytest.mark.asyncio
async def test_webhook_transport_error_is_an_error(store, delivery_logger, http, context):
    http.post_json.side_effect = aiohttp.ClientConnectionError("refused")
    form = store.add_form()
    lead = store.add_lead(form.id, ANSWERS)

    result = await WebhookChannel(delivery_logger, http).run(form, lead, ANSWERS, context, "https://hooks.example.com")

    assert result.error.startswith("Client error")
    assert store.integration_logs[0]["status"] == "error"


@pytest.mark.asyncio
async def test_webhook_requires_url(store, delivery_logger, http):
    form = store.add_form(settings={"webhook_enabled": True, "webhook_url": "  "})
    with pytest.raises(ChannelConfigurationError) as exc_info:
        await WebhookChannel(delivery_logger, http).check_config(form)
    assert exc_info.value.code == "missing_webhook_url"


# Facebook

def test_facebook_user_data_is_normalized_and_hashed(context):
    user_data = build_user_data(ANSWERS, context)

    assert user_data["em"] == [sha("ana@example.com")]
    assert user_data["ph"] == [sha("5511988887777")]
    assert user_data["fn"] == [sha("ana")]
    assert user_data["ln"] == [sha("souza")]
    assert user_data["client_ip_address"] == "203.0.113.7"
    assert user_data["client_user_agent"] == "Mozilla/5.0"


@pytest.mark.asyncio
async def test_facebook_sends_lead_event(store, delivery_logger, http, context, now):
    form = store.add_form(
        settings={
            "facebook_pixel": "123456",
            "facebook_pixel_access_token": "EAAB-token",
            "facebook_pixel_test_code": "TEST42",
        }
    )
    lead = store.add_lead(form.id, ANSWERS)
    channel = FacebookChannel(delivery_logger, http, clock=lambda: now)

    config = await channel.check_config(form)
    result = await channel.run(form, lead, ANSWERS, context, config)

    assert result.success
    url, body = http.post_json.await_args.args
    parts = urlsplit(url)
    assert parts.path.endswith("/123456/events")
    assert parse_qs(parts.query)["access_token"] == ["EAAB-token"]

    event = body["data"][0]
    assert event["event_name"] == "Lead"
    assert event["action_source"] == "website"
    assert event["event_time"] == int(now.timestamp())
    assert event["event_source_url"] == "https://lp.example.com/f/contato"
    assert event["custom_data"] == {"form_name": "Contato", "form_slug": "contato", "lead_id": lead.id}
    assert body["test_event_code"] == "TEST42"
    assert store.integration_logs[0]["integration_type"] == "facebook"


@pytest.mark.asyncio
async def test_facebook_graph_error_message_is_logged(store, delivery_logger, http, context):
    http.post_json.return_value = HttpResponse(
        status=400,
        text="{}",
        body={"error": {"message": "Invalid OAuth access token", "code": 190}},
    )
    form = store.add_form(settings={"facebook_pixel": "1", "facebook_pixel_access_token": "bad"})
    lead = store.add_lead(form.id, ANSWERS)
    channel = FacebookChannel(delivery_logger, http)

    result = await channel.run(form, lead, ANSWERS, context, await channel.check_config(form))

    assert result.error == "Invalid OAuth access token"
    assert store.integration_logs[0]["error_message"] == "Invalid OAuth access token"


@pytest.mark.asyncio
async def test_facebook_requires_access_token(store, delivery_logger, http):
    form = store.add_form(settings={"facebook_pixel": "123456"})
    channel = FacebookChannel(delivery_logger, http)
    assert channel.is_enabled(form.settings)
    with pytest.raises(ChannelConfigurationError):
        await channel.check_config(form)


# RD Station

@pytest.mark.asyncio
async def test_rdstation_posts_conversion(store, delivery_logger, http, context):
    form = store.add_form(settings={"rdstation_enabled": True, "rdstation_api_key": "rd-key"})
    lead = store.add_lead(form.id, ANSWERS)
    channel = RDStationChannel(delivery_logger, http)

    result = await channel.run(form, lead, ANSWERS, context, await channel.check_config(form))

    assert result.success
    url, body = http.post_json.await_args.args
    assert parse_qs(urlsplit(url).query)["api_key"] == ["rd-key"]
    assert body["event_type"] == "CONVERSION"
    assert body["event_family"] == "CDP"
    assert body["payload"]["conversion_identifier"] == "contato"
    assert body["payload"]["email"] == "ana@example.com"
    assert body["payload"]["Nome completo"] == "Ana Maria Souza"


@pytest.mark.asyncio
async def test_rdstation_without_email_is_skipped(store, delivery_logger, http, context):
    answers = {"nome": "Ana", "telefone": "11988887777"}
    form = store.add_form(settings={"rdstation_enabled": True, "rdstation_api_key": "rd-key"})
    lead = store.add_lead(form.id, answers)

    result = await RDStationChannel(delivery_logger, http).run(form, lead, answers, context, "rd-key")

    http.post_json.assert_not_awaited()
    assert store.integration_logs[0]["status"] == "skipped"
    assert result.error == "No email field found"


# WhatsApp

@pytest.mark.asyncio
async def test_whatsapp_sends_to_lead_phone(store, delivery_logger, http, context, no_sleep):
    instance = store.add_instance(name="vendas", api_url="https://evo.example.com/", api_key="k1")
    form = store.add_form(
        settings={
            "whatsapp_notification": True,
            "evolution_instance_id": instance.id,
            "whatsapp_message": "Oi {{nome}}, recebemos seu contato em {{form_name}}",
        }
    )
    lead = store.add_lead(form.id, ANSWERS)
    channel = WhatsAppChannel(delivery_logger, store, http, sleep=no_sleep)

    config = await channel.check_config(form)
    result = await channel.run(form, lead, ANSWERS, context, config)

    assert result.success
    url, body = http.post_json.await_args.args
    assert url == "https://evo.example.com/message/sendText/vendas"
    assert http.post_json.await_args.kwargs["headers"] == {"apikey": "k1"}
    assert body["number"] == "5511988887777"
    assert body["text"] == "Oi Ana Maria Souza, recebemos seu contato em Contato"
    no_sleep.assert_awaited_once_with(4)
    assert store.integration_logs[0]["integration_type"] == "whatsapp"


@pytest.mark.asyncio
async def test_whatsapp_items_are_paced(store, delivery_logger, http, context, no_sleep):
    instance = store.add_instance()
    form = store.add_form(
        settings={
            "whatsapp_notification": True,
            "evolution_instance_id": instance.id,
            "whatsapp_message": {"items": [{"type": "text", "content": "1"}, {"type": "text", "content": "2"}]},
        }
    )
    lead = store.add_lead(form.id, ANSWERS)
    channel = WhatsAppChannel(delivery_logger, store, http, sleep=no_sleep)

    await channel.run(form, lead, ANSWERS, context, await channel.check_config(form))

    assert [c.args[0] for c in no_sleep.await_args_list] == [4, 6]
    assert [c.args[1]["text"] for c in http.post_json.await_args_list] == ["1", "2"]


@pytest.mark.asyncio
async def test_whatsapp_owner_recipient_uses_instance_default(store, delivery_logger, http, context, no_sleep):
    instance = store.add_instance(default_number="+55 11 3333-4444")
    form = store.add_form(
        settings={
            "whatsapp_notification": True,
            "evolution_instance_id": instance.id,
            "whatsapp_recipient": "owner",
        }
    )
    lead = store.add_lead(form.id, ANSWERS)
    channel = WhatsAppChannel(delivery_logger, store, http, sleep=no_sleep)

    await channel.run(form, lead, ANSWERS, context, await channel.check_config(form))

    body = http.post_json.await_args.args[1]
    assert body["number"] == "551133334444"
    assert "Ana Maria Souza" in body["text"]


@pytest.mark.asyncio
async def test_whatsapp_without_phone_is_skipped(store, delivery_logger, http, context, no_sleep):
    instance = store.add_instance()
    form = store.add_form(settings={"whatsapp_notification": True, "evolution_instance_id": instance.id})
    answers = {"nome": "Ana"}
    lead = store.add_lead(form.id, answers)
    channel = WhatsAppChannel(delivery_logger, store, http, sleep=no_sleep)

    result = await channel.run(form, lead, answers, context, await channel.check_config(form))

    http.post_json.assert_not_awaited()
    assert result.error == "No phone number found"
    assert store.integration_logs[0]["status"] == "skipped"


@pytest.mark.asyncio
async def test_whatsapp_inactive_instance_is_a_configuration_error(store, delivery_logger, http):
    instance = store.add_instance(is_active=False)
    form = store.add_form(settings={"whatsapp_notification": True, "evolution_instance_id": instance.id})

    with pytest.raises(ChannelConfigurationError) as exc_info:
        await WhatsAppChannel(delivery_logger, store, http).check_config(form)
    assert exc_info.value.code == "instance_not_found"
