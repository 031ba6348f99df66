# leadrelay/services/channels/__init__.py
"""
Outbound integrations fired on lead capture.
"""

from leadrelay.services.channels.base import Channel, ChannelResult
from leadrelay.services.channels.facebook import FacebookChannel
from leadrelay.services.channels.rdstation import RDStationChannel
from leadrelay.services.channels.webhook import WebhookChannel
from leadrelay.services.channels.whatsapp import WhatsAppChannel

__all__ = [
    "Channel",
    "ChannelResult",
    "FacebookChannel",
    "RDStationChannel",
    "WebhookChannel",
    "WhatsAppChannel",
]
