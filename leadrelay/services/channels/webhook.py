# leadrelay/services/channels/webhook.py
from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping

import aiohttp

from leadrelay.services.channels.base import Channel, ChannelResult, require_setting
from leadrelay.services.http import describe_transport_error
from leadrelay.services.records import FormRecord, IntegrationType, LeadRecord, RequestContext


def format_webhook_payload(
    form: FormRecord,
    lead: LeadRecord,
    answers: Dict[str, Any],
    context: RequestContext,
) -> Dict[str, Any]:
    return {
        "form_id": form.id,
        "form_name": form.name,
        "form_slug": form.slug,
        "lead_id": lead.id,
        "data": answers,
        "submitted_at": lead.created_at.isoformat() if lead.created_at else None,
        "source": context.source,
        "ip_address": context.ip_address,
        "user_agent": context.user_agent,
    }


class WebhookChannel(Channel):
    integration_type = IntegrationType.WEBHOOK

    def is_enabled(self, form_settings: Mapping[str, Any]) -> bool:
        return bool(form_settings.get("webhook_enabled"))

    async def check_config(self, form: FormRecord) -> str:
        return require_setting(
            form.settings,
            "webhook_url",
            code="missing_webhook_url",
            message="Webhook enabled but no webhook_url configured",
        )

    async def deliver(self, form, lead, answers, context, config) -> ChannelResult:
        payload = format_webhook_payload(form, lead, answers, context)
        try:
            response = await self.http.post_json(config, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return ChannelResult.failed(describe_transport_error(e), payload=payload)

        summary = {"status": response.status, "body": response.body}
        if response.ok:
            return ChannelResult.ok(response=summary, payload=payload)
        return ChannelResult.failed(
            f"HTTP {response.status}: {response.text[:200]}",
            response=summary,
            payload=payload,
        )
