# leadrelay/services/__init__.py
"""
Business logic services organized by domain functionality.
"""

from leadrelay.services.lead_capture import CaptureResult, save_partial, submit
from leadrelay.services.records import (
    CampaignType,
    DeliveryStatus,
    FormRecord,
    IntegrationType,
    LeadRecord,
    RequestContext,
)

__all__ = [
    # Lead capture
    "CaptureResult",
    "save_partial",
    "submit",
    # Records
    "CampaignType",
    "DeliveryStatus",
    "FormRecord",
    "IntegrationType",
    "LeadRecord",
    "RequestContext",
]
