# leadrelay/services/channels/rdstation.py
from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping
from urllib.parse import urlencode

import aiohttp

from leadrelay.core.config import settings
from leadrelay.services.channels.base import Channel, ChannelResult, require_setting
from leadrelay.services.fields import find_email
from leadrelay.services.http import describe_transport_error
from leadrelay.services.records import FormRecord, IntegrationType


def build_conversion(answers: Mapping[str, Any], email: str, conversion_identifier: str) -> Dict[str, Any]:
    payload = dict(answers)
    payload["conversion_identifier"] = conversion_identifier
    payload["email"] = email
    return {
        "event_type": "CONVERSION",
        "event_family": "CDP",
        "payload": payload,
    }


class RDStationChannel(Channel):
    integration_type = IntegrationType.RDSTATION

    def is_enabled(self, form_settings: Mapping[str, Any]) -> bool:
        return bool(form_settings.get("rdstation_enabled"))

    async def check_config(self, form: FormRecord) -> str:
        return require_setting(
            form.settings,
            "rdstation_api_key",
            code="missing_api_key",
            message="RD Station enabled but no rdstation_api_key configured",
        )

    async def deliver(self, form, lead, answers, context, config) -> ChannelResult:
        email = find_email(answers)
        if not email:
            return ChannelResult.skipped("No email field found")

        identifier = form.settings.get("rdstation_conversion_identifier") or form.slug
        event = build_conversion(answers, email.strip().lower(), identifier)
        url = f"{settings.rdstation_conversions_url}?{urlencode({'api_key': config})}"
        try:
            response = await self.http.post_json(url, event)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return ChannelResult.failed(describe_transport_error(e), payload=event)

        if response.ok:
            return ChannelResult.ok(response=response.body, payload=event)
        return ChannelResult.failed(
            f"HTTP {response.status}: {response.text[:200]}",
            response=response.body,
            payload=event,
        )
