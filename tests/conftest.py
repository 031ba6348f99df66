import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from itertools import count
from unittest.mock import AsyncMock

import pytest

from leadrelay.services.delivery_logger import DeliveryLogger
from leadrelay.services.records import (
    CampaignRecord,
    CampaignType,
    DelayUnit,
    DeliveryStatus,
    FormRecord,
    InstanceRecord,
    LeadRecord,
    StepRecord,
)

NOW = datetime(2024, 5, 10, 12, 0, 0, tzinfo=timezone.utc)


class MemoryStore:
    """In-memory stand-in for SqlStore with the same method signatures."""

    def __init__(self, clock=lambda: NOW):
        self.clock = clock
        self.forms = {}
        self.leads = {}
        self.instances = {}
        self.campaigns = {}
        self.steps = {}
        self.remarketing_logs = []
        self.integration_logs = []
        self._ids = count(1)

    # Seeding helpers

    def add_form(self, name="Contato", slug="contato", settings=None, is_active=True, **extra):
        form_id = next(self._ids)
        self.forms[form_id] = {
            "id": form_id,
            "name": name,
            "slug": slug,
            "settings": settings or {},
            "is_active": is_active,
            "description": extra.get("description"),
            "type": extra.get("type", "standard"),
            "fields": extra.get("fields", []),
        }
        return self.form_record(form_id)

    def form_record(self, form_id):
        row = self.forms[form_id]
        return FormRecord(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            settings=row["settings"],
            is_active=row["is_active"],
        )

    def add_lead(self, form_id, data, *, is_partial=False, created_at=NOW, updated_at=None):
        lead = LeadRecord(
            id=next(self._ids),
            form_id=form_id,
            data=data,
            is_partial=is_partial,
            created_at=created_at,
            updated_at=updated_at or created_at,
        )
        self.leads[lead.id] = lead
        return lead

    def add_instance(self, name="vendas", api_url="http://evolution.example.com", is_active=True, **extra):
        instance = InstanceRecord(
            id=next(self._ids),
            name=name,
            api_url=api_url,
            api_key=extra.get("api_key", "secret-key"),
            internal_api_url=extra.get("internal_api_url"),
            default_number=extra.get("default_number"),
            is_active=is_active,
        )
        self.instances[instance.id] = instance
        return instance

    def add_campaign(self, form_id, type=CampaignType.DRIP, is_active=True, name="Follow-up"):
        campaign_id = next(self._ids)
        self.campaigns[campaign_id] = {
            "id": campaign_id,
            "form_id": form_id,
            "name": name,
            "type": type,
            "is_active": is_active,
        }
        return campaign_id

    def add_step(self, campaign_id, step_order=1, delay_value=1, delay_unit=DelayUnit.HOURS,
                 message_type="text", message_content="Oi {{nome}}!"):
        step = StepRecord(
            id=next(self._ids),
            campaign_id=campaign_id,
            step_order=step_order,
            delay_value=delay_value,
            delay_unit=delay_unit,
            message_type=message_type,
            message_content=message_content,
        )
        self.steps[step.id] = step
        return step

    def statuses(self, lead_id=None, step_id=None):
        return [
            row["status"]
            for row in self.remarketing_logs
            if (lead_id is None or row["lead_id"] == lead_id)
            and (step_id is None or row["step_id"] == step_id)
        ]

    # Store API

    async def get_active_form_by_slug(self, slug):
        for form_id, row in self.forms.items():
            if row["slug"] == slug and row["is_active"]:
                return self.form_record(form_id)
        return None

    async def get_public_form(self, slug):
        for row in self.forms.values():
            if row["slug"] == slug and row["is_active"]:
                return dict(row)
        return None

    async def insert_lead(self, form_id, data, *, is_partial, context):
        now = self.clock()
        lead = LeadRecord(
            id=next(self._ids),
            form_id=form_id,
            data=data,
            is_partial=is_partial,
            created_at=now,
            updated_at=now,
            source=context.source,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        self.leads[lead.id] = lead
        return lead

    async def update_partial_lead(self, lead_id, form_id, data):
        lead = self.leads.get(lead_id)
        if lead is None or lead.form_id != form_id or not lead.is_partial:
            return None
        updated = replace(lead, data=data, updated_at=self.clock())
        self.leads[lead_id] = updated
        return updated

    async def complete_lead(self, lead_id, form_id, data):
        lead = self.leads.get(lead_id)
        if lead is None or lead.form_id != form_id or not lead.is_partial:
            return None
        now = self.clock()
        completed = replace(lead, data=data, is_partial=False, created_at=now, updated_at=now)
        self.leads[lead_id] = completed
        return completed

    async def get_instance(self, instance_id, *, active_only=True):
        instance = self.instances.get(instance_id)
        if instance is None or (active_only and not instance.is_active):
            return None
        return instance

    async def list_active_campaigns(self):
        result = []
        for row in sorted(self.campaigns.values(), key=lambda r: r["id"]):
            form = self.forms.get(row["form_id"])
            if not row["is_active"] or form is None or not form["is_active"]:
                continue
            result.append(
                CampaignRecord(
                    id=row["id"],
                    form_id=row["form_id"],
                    name=row["name"],
                    type=row["type"],
                    is_active=True,
                    form_name=form["name"],
                    form_settings=form["settings"],
                )
            )
        return result

    async def list_steps(self, campaign_id):
        steps = [s for s in self.steps.values() if s.campaign_id == campaign_id]
        return sorted(steps, key=lambda s: s.step_order)

    async def find_eligible_leads(self, form_id, step_id, window):
        leads = [
            lead
            for lead in self.leads.values()
            if lead.form_id == form_id
            and window.contains(lead)
            and not self._has_success(lead.id, step_id)
        ]
        return sorted(leads, key=lambda lead: (window.anchor_of(lead), lead.id))

    def _has_success(self, lead_id, step_id):
        return any(
            row["lead_id"] == lead_id
            and row["step_id"] == step_id
            and row["status"] == DeliveryStatus.SUCCESS.value
            for row in self.remarketing_logs
        )

    async def has_successful_delivery(self, lead_id, step_id):
        return self._has_success(lead_id, step_id)

    async def insert_remarketing_log(self, *, lead_id, campaign_id, step_id, status, error_message=None):
        self.remarketing_logs.append(
            {
                "id": next(self._ids),
                "lead_id": lead_id,
                "campaign_id": campaign_id,
                "step_id": step_id,
                "status": status.value,
                "error_message": error_message,
                "sent_at": self.clock(),
            }
        )

    async def insert_integration_log(self, *, form_id, lead_id, integration_type, status,
                                     payload=None, response=None, error_message=None):
        self.integration_logs.append(
            {
                "id": next(self._ids),
                "form_id": form_id,
                "lead_id": lead_id,
                "integration_type": integration_type,
                "status": status.value,
                "payload": payload,
                "response": response,
                "error_message": error_message,
                "created_at": self.clock(),
            }
        )

    async def list_integration_logs(self, *, form_id=None, status=None, limit=50, offset=0):
        rows = [
            dict(row, form_name=self.forms.get(row["form_id"], {}).get("name"))
            for row in reversed(self.integration_logs)
            if (form_id is None or row["form_id"] == form_id)
            and (status is None or row["status"] == status)
        ]
        return rows[offset:offset + limit], len(rows)

    async def list_remarketing_logs(self, *, campaign_id=None, status=None, limit=50, offset=0):
        rows = [
            dict(row)
            for row in reversed(self.remarketing_logs)
            if (campaign_id is None or row["campaign_id"] == campaign_id)
            and (status is None or row["status"] == status)
        ]
        return rows[offset:offset + limit], len(rows)


class FakeEvolutionClient:
    def __init__(self, instance):
        self.instance = instance
        self.send_text = AsyncMock(return_value={"key": {"id": "msg"}})
        self.send_media = AsyncMock(return_value={"key": {"id": "media"}})
        self.send_audio = AsyncMock(return_value={"key": {"id": "audio"}})
        self.connection_state = AsyncMock(return_value={"instance": {"state": "open"}})
        self.connect = AsyncMock(return_value={"code": "qr"})


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def delivery_logger(store):
    return DeliveryLogger(store)


@pytest.fixture
def no_sleep():
    return AsyncMock(return_value=None)


@pytest.fixture
def ago(now):
    def _ago(**kwargs):
        return now - timedelta(**kwargs)
    return _ago


class EvolutionClients:
    """Client factory that hands out one fake client per instance."""

    def __init__(self):
        self.by_instance = {}

    def __call__(self, instance):
        client = self.by_instance.get(instance.id)
        if client is None:
            client = self.by_instance[instance.id] = FakeEvolutionClient(instance)
        return client


@pytest.fixture
def clients():
    return EvolutionClients()
