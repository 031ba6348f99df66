# leadrelay/schemas/capture.py
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class CaptureRequest(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)
    partial_lead_id: Optional[int] = Field(default=None, ge=1)


class PartialLeadData(BaseModel):
    lead_id: int


class PartialLeadResponse(BaseModel):
    success: bool = True
    data: PartialLeadData


class SubmitResponse(BaseModel):
    success: bool = True
    message: str
    redirect_url: Optional[str] = None
    lead_id: int


class PublicForm(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    type: Optional[str] = None
    fields: Any = None
    settings: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


class PublicFormResponse(BaseModel):
    success: bool = True
    data: PublicForm
