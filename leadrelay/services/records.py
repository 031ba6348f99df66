# leadrelay/services/records.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class CampaignType(Enum):
    RECOVERY = "recovery"
    DRIP = "drip"


class DelayUnit(Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class DeliveryStatus(Enum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class IntegrationType(Enum):
    WEBHOOK = "webhook"
    WHATSAPP = "whatsapp"
    FACEBOOK = "facebook"
    RDSTATION = "rdstation"


@dataclass(frozen=True)
class FormRecord:
    id: int
    name: str
    slug: str
    settings: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True


@dataclass(frozen=True)
class LeadRecord:
    id: int
    form_id: int
    data: Dict[str, Any]
    is_partial: bool
    created_at: datetime
    updated_at: datetime
    source: str = "organic"
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class CampaignRecord:
    id: int
    form_id: int
    name: str
    type: CampaignType
    is_active: bool = True
    form_name: str = ""
    form_settings: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StepRecord:
    id: int
    campaign_id: int
    step_order: int
    delay_value: int
    delay_unit: DelayUnit
    message_type: str
    message_content: Optional[str]


@dataclass(frozen=True)
class InstanceRecord:
    id: int
    name: str
    api_url: str
    api_key: str
    internal_api_url: Optional[str] = None
    default_number: Optional[str] = None
    is_active: bool = True

    @property
    def effective_api_url(self) -> str:
        """Internal URL wins when present; trailing slashes stripped."""
        return (self.internal_api_url or self.api_url or "").strip().rstrip("/")


@dataclass(frozen=True)
class RequestContext:
    """What the capture request knew about the submitter."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    source: str = "organic"
    origin: Optional[str] = None


def _as_dict(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def form_from_row(row: Mapping[str, Any]) -> FormRecord:
    return FormRecord(
        id=int(row["id"]),
        name=str(row["name"] or ""),
        slug=str(row["slug"] or ""),
        settings=_as_dict(row.get("settings")),
        is_active=bool(row.get("is_active", True)),
    )


def lead_from_row(row: Mapping[str, Any]) -> LeadRecord:
    return LeadRecord(
        id=int(row["id"]),
        form_id=int(row["form_id"]),
        data=_as_dict(row.get("data")),
        is_partial=bool(row["is_partial"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        source=row.get("source") or "organic",
        ip_address=row.get("ip_address"),
        user_agent=row.get("user_agent"),
    )


def campaign_from_row(row: Mapping[str, Any]) -> CampaignRecord:
    return CampaignRecord(
        id=int(row["id"]),
        form_id=int(row["form_id"]),
        name=str(row["name"] or ""),
        type=CampaignType(row["type"]),
        is_active=bool(row.get("is_active", True)),
        form_name=str(row.get("form_name") or ""),
        form_settings=_as_dict(row.get("form_settings")),
    )


def step_from_row(row: Mapping[str, Any]) -> StepRecord:
    return StepRecord(
        id=int(row["id"]),
        campaign_id=int(row["campaign_id"]),
        step_order=int(row["step_order"]),
        delay_value=int(row["delay_value"]),
        delay_unit=DelayUnit(row["delay_unit"]),
        message_type=str(row["message_type"] or "text"),
        message_content=row.get("message_content"),
    )


def instance_from_row(row: Mapping[str, Any]) -> InstanceRecord:
    return InstanceRecord(
        id=int(row["id"]),
        name=str(row["name"] or "").strip(),
        api_url=str(row["api_url"] or ""),
        api_key=str(row["api_key"] or "").strip(),
        internal_api_url=row.get("internal_api_url"),
        default_number=row.get("default_number"),
        is_active=bool(row.get("is_active", True)),
    )


def parse_instance_id(value: Any) -> Optional[int]:
    """``evolution_instance_id`` from form settings as an int, None when unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None
