# leadrelay/schemas/logs.py
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel


class IntegrationLogOut(BaseModel):
    id: int
    form_id: Optional[int] = None
    form_name: Optional[str] = None
    lead_id: Optional[int] = None
    integration_type: str
    status: str
    payload: Any = None
    response: Any = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class RemarketingLogOut(BaseModel):
    id: int
    lead_id: Optional[int] = None
    campaign_id: Optional[int] = None
    campaign_name: Optional[str] = None
    step_id: Optional[int] = None
    step_order: Optional[int] = None
    status: str
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int


class IntegrationLogPage(BaseModel):
    success: bool = True
    data: List[IntegrationLogOut]
    pagination: Pagination


class RemarketingLogPage(BaseModel):
    success: bool = True
    data: List[RemarketingLogOut]
    pagination: Pagination
