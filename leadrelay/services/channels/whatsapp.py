# leadrelay/services/channels/whatsapp.py
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Mapping, Optional

from leadrelay.core.config import settings
from leadrelay.core.exceptions import ChannelConfigurationError
from leadrelay.services.channels.base import Channel, ChannelResult, require_setting
from leadrelay.services.composer import items_from_setting
from leadrelay.services.delivery_logger import DeliveryLogger
from leadrelay.services.evolution import EvolutionClient
from leadrelay.services.fields import digits_only, lookup_phone
from leadrelay.services.http import HttpClient
from leadrelay.services.records import FormRecord, InstanceRecord, IntegrationType, parse_instance_id
from leadrelay.services.whatsapp_sender import WhatsAppSender


class WhatsAppChannel(Channel):
    """
    WhatsApp message on lead capture.

    By default the message goes to the lead's own phone answer. Forms with
    ``whatsapp_recipient = "owner"`` notify the form owner instead, at
    ``whatsapp_target_number`` or the instance's default number.
    """

    integration_type = IntegrationType.WHATSAPP

    def __init__(
        self,
        delivery_logger: DeliveryLogger,
        store,
        http: Optional[HttpClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        super().__init__(delivery_logger, http)
        self.store = store
        self.sleep = sleep

    def is_enabled(self, form_settings: Mapping[str, Any]) -> bool:
        return bool(form_settings.get("whatsapp_notification"))

    async def check_config(self, form: FormRecord) -> InstanceRecord:
        instance_id = require_setting(
            form.settings,
            "evolution_instance_id",
            code="missing_instance",
            message="WhatsApp enabled but no evolution_instance_id configured",
        )
        parsed_id = parse_instance_id(instance_id)
        if parsed_id is None:
            raise ChannelConfigurationError(
                code="invalid_instance_id",
                message=f"evolution_instance_id {instance_id!r} is not a valid instance id",
            )
        instance = await self.store.get_instance(parsed_id)
        if instance is None:
            raise ChannelConfigurationError(
                code="instance_not_found",
                message=f"WhatsApp instance {instance_id} not found or inactive",
            )
        return instance

    def _recipient(self, form: FormRecord, answers, instance: InstanceRecord):
        if form.settings.get("whatsapp_recipient") == "owner":
            target = form.settings.get("whatsapp_target_number") or instance.default_number
            digits = digits_only(target)
            if not digits:
                return None, "No target phone number configured"
            return digits, None

        phone = lookup_phone(answers, settings.whatsapp_min_phone_digits)
        return phone.digits, phone.skip_reason

    async def deliver(self, form, lead, answers, context, config) -> ChannelResult:
        instance: InstanceRecord = config
        number, skip_reason = self._recipient(form, answers, instance)
        if skip_reason:
            return ChannelResult.skipped(skip_reason)

        message = form.settings.get("whatsapp_message")
        items = items_from_setting(message)
        payload = {
            "instance": instance.name,
            "number": number,
            "items": [{"type": item.type, "content": item.content} for item in items],
        }

        item_delay = None
        if isinstance(message, Mapping) and message.get("delay_seconds") is not None:
            item_delay = float(message["delay_seconds"])

        sender = WhatsAppSender(
            EvolutionClient(instance, self.http),
            sleep=self.sleep,
            item_delay=item_delay,
        )
        report = await sender.send_items(number, items, answers, form.name)
        response = {"sent": report.sent, "total": report.total, "responses": report.responses}
        if report.success:
            return ChannelResult.ok(response=response, payload=payload)
        return ChannelResult.failed(report.error or "Unknown error", response=response, payload=payload)
