# leadrelay/schemas/__init__.py
"""
Pydantic schemas for request/response validation and serialization.
"""

from leadrelay.schemas.capture import (
    CaptureRequest,
    PartialLeadResponse,
    PublicFormResponse,
    SubmitResponse,
)
from leadrelay.schemas.logs import IntegrationLogPage, RemarketingLogPage

__all__ = [
    "CaptureRequest",
    "IntegrationLogPage",
    "PartialLeadResponse",
    "PublicFormResponse",
    "RemarketingLogPage",
    "SubmitResponse",
]
