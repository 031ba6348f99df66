# leadrelay/services/dispatcher.py
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

from leadrelay.core.exceptions import ChannelConfigurationError
from leadrelay.core.logging import get_structlog_logger
from leadrelay.services.channels import (
    Channel,
    FacebookChannel,
    RDStationChannel,
    WebhookChannel,
    WhatsAppChannel,
)
from leadrelay.services.delivery_logger import DeliveryLogger
from leadrelay.services.http import HttpClient
from leadrelay.services.records import FormRecord, LeadRecord, RequestContext
from leadrelay.services.task_registry import BackgroundTaskRegistry

logger = get_structlog_logger(__name__)


def default_channels(store, delivery_logger: DeliveryLogger, http: Optional[HttpClient] = None) -> List[Channel]:
    http = http or HttpClient()
    return [
        WebhookChannel(delivery_logger, http),
        WhatsAppChannel(delivery_logger, store, http),
        FacebookChannel(delivery_logger, http),
        RDStationChannel(delivery_logger, http),
    ]


class IntegrationDispatcher:
    """
    Fans a captured lead out to every enabled channel.

    Configuration problems are logged before anything is spawned, one
    error row per affected channel. The remaining channels run concurrently
    and are settled together. A channel that fails, even by raising, still
    gets its own error row and never affects another; ``dispatch`` never
    raises.
    """

    def __init__(
        self,
        channels: Sequence[Channel],
        registry: Optional[BackgroundTaskRegistry] = None,
    ) -> None:
        self.channels = list(channels)
        self.registry = registry or BackgroundTaskRegistry()

    async def _plan(
        self, form: FormRecord, lead: LeadRecord
    ) -> List[Tuple[Channel, Any]]:
        ready: List[Tuple[Channel, Any]] = []
        for channel in self.channels:
            if not channel.is_enabled(form.settings):
                continue
            try:
                config = await channel.check_config(form)
            except ChannelConfigurationError as e:
                logger.warning(
                    "dispatch.channel_misconfigured",
                    form_id=form.id,
                    lead_id=lead.id,
                    integration_type=channel.integration_type.value,
                    code=e.code,
                )
                await channel.log_configuration_error(form, lead, e)
                continue
            except Exception as e:
                logger.error(
                    "dispatch.config_check_failed",
                    form_id=form.id,
                    lead_id=lead.id,
                    integration_type=channel.integration_type.value,
                    error=str(e),
                    exc_info=True,
                )
                await channel.log_error(form, lead, f"Configuration check failed: {str(e)[:200]}")
                continue
            ready.append((channel, config))
        return ready

    async def dispatch(
        self,
        form: FormRecord,
        lead: LeadRecord,
        answers: Dict[str, Any],
        context: RequestContext,
    ) -> None:
        try:
            ready = await self._plan(form, lead)
        except Exception as e:
            logger.error("dispatch.plan_failed", form_id=form.id, lead_id=lead.id, error=str(e), exc_info=True)
            return

        if not ready:
            logger.debug("dispatch.no_channels", form_id=form.id, lead_id=lead.id)
            return

        logger.info(
            "dispatch.started",
            form_id=form.id,
            lead_id=lead.id,
            channels=[channel.integration_type.value for channel, _ in ready],
        )
        results = await asyncio.gather(
            *(channel.run(form, lead, answers, context, config) for channel, config in ready),
            return_exceptions=True,
        )
        for (channel, _), result in zip(ready, results):
            if isinstance(result, BaseException):
                logger.error(
                    "dispatch.channel_crashed",
                    form_id=form.id,
                    lead_id=lead.id,
                    integration_type=channel.integration_type.value,
                    error=str(result),
                )
                await channel.log_error(form, lead, f"Unexpected error: {str(result)[:200]}")
        logger.info("dispatch.finished", form_id=form.id, lead_id=lead.id)

    def dispatch_in_background(
        self,
        form: FormRecord,
        lead: LeadRecord,
        answers: Dict[str, Any],
        context: RequestContext,
    ) -> asyncio.Task:
        return self.registry.spawn(
            self.dispatch(form, lead, answers, context),
            name=f"dispatch:{form.id}:{lead.id}",
        )
