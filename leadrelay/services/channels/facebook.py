# leadrelay/services/channels/facebook.py
from __future__ import annotations

import asyncio
import hashlib
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import quote, urlencode

import aiohttp

from leadrelay.core.config import settings
from leadrelay.services.channels.base import Channel, ChannelResult, require_setting
from leadrelay.services.delivery_logger import DeliveryLogger
from leadrelay.services.fields import digits_only, find_email, find_name, find_phone, split_name
from leadrelay.services.http import HttpClient, describe_transport_error
from leadrelay.services.records import FormRecord, IntegrationType, LeadRecord, RequestContext


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def build_user_data(answers: Mapping[str, Any], context: RequestContext) -> Dict[str, Any]:
    """Matching keys for the Conversions API; PII is normalized then hashed."""
    user_data: Dict[str, Any] = {}

    email = find_email(answers)
    if email:
        user_data["em"] = [sha256_hex(email.strip().lower())]

    phone = digits_only(find_phone(answers))
    if phone:
        user_data["ph"] = [sha256_hex(phone)]

    first_name, last_name = split_name(find_name(answers))
    if first_name:
        user_data["fn"] = [sha256_hex(first_name.lower())]
    if last_name:
        user_data["ln"] = [sha256_hex(last_name.lower())]

    if context.ip_address:
        user_data["client_ip_address"] = context.ip_address
    if context.user_agent:
        user_data["client_user_agent"] = context.user_agent

    return user_data


def build_lead_event(
    form: FormRecord,
    lead: LeadRecord,
    answers: Mapping[str, Any],
    context: RequestContext,
    event_time: datetime,
) -> Dict[str, Any]:
    origin = (context.origin or settings.public_base_url or "").rstrip("/")
    event: Dict[str, Any] = {
        "data": [
            {
                "event_name": "Lead",
                "event_time": int(event_time.timestamp()),
                "action_source": "website",
                "event_source_url": f"{origin}/f/{form.slug}",
                "user_data": build_user_data(answers, context),
                "custom_data": {
                    "form_name": form.name,
                    "form_slug": form.slug,
                    "lead_id": lead.id,
                },
            }
        ],
    }
    test_code = form.settings.get("facebook_pixel_test_code")
    if test_code:
        event["test_event_code"] = test_code
    return event


class FacebookChannel(Channel):
    integration_type = IntegrationType.FACEBOOK

    def __init__(
        self,
        delivery_logger: DeliveryLogger,
        http: Optional[HttpClient] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        super().__init__(delivery_logger, http)
        self.clock = clock

    def is_enabled(self, form_settings: Mapping[str, Any]) -> bool:
        return bool(form_settings.get("facebook_pixel"))

    async def check_config(self, form: FormRecord) -> Dict[str, str]:
        token = require_setting(
            form.settings,
            "facebook_pixel_access_token",
            code="missing_access_token",
            message="Facebook pixel configured but no access token",
        )
        return {"pixel_id": str(form.settings["facebook_pixel"]).strip(), "access_token": token}

    async def deliver(self, form, lead, answers, context, config) -> ChannelResult:
        event = build_lead_event(form, lead, answers, context, self.clock())
        url = (
            f"{settings.facebook_graph_url.rstrip('/')}/{quote(config['pixel_id'], safe='')}/events?"
            + urlencode({"access_token": config["access_token"]})
        )
        try:
            response = await self.http.post_json(url, event)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return ChannelResult.failed(describe_transport_error(e), payload=event)

        if response.ok:
            return ChannelResult.ok(response=response.body, payload=event)

        error = response.body.get("error") if isinstance(response.body, dict) else None
        if isinstance(error, dict):
            message = error.get("message") or str(error)
        else:
            message = f"HTTP {response.status}: {response.text[:200]}"
        return ChannelResult.failed(message, response=response.body, payload=event)
