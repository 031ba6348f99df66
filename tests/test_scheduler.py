import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from leadrelay.core.exceptions import ProviderError
from leadrelay.services.records import CampaignType, DelayUnit
from leadrelay.services.scheduler import RemarketingScheduler


@pytest.fixture
def scheduler(store, delivery_logger, clients, no_sleep, now):
    return RemarketingScheduler(
        store,
        delivery_logger,
        client_factory=clients,
        clock=lambda: now,
        sleep=no_sleep,
        interval=60,
    )


@pytest.fixture
def drip(store):
    instance = store.add_instance()
    form = store.add_form(settings={"evolution_instance_id": instance.id})
    campaign_id = store.add_campaign(form.id, CampaignType.DRIP)
    step = store.add_step(campaign_id, delay_value=30, delay_unit=DelayUnit.MINUTES, message_content="Oi {{nome}}!")
    return form, instance, campaign_id, step


@pytest.mark.asyncio
async def test_due_lead_receives_step_once(store, scheduler, clients, drip, ago):
    form, instance, campaign_id, step = drip
    lead = store.add_lead(form.id, {"Nome": "Ana", "WhatsApp": "(11) 98888-7777"}, created_at=ago(minutes=45))

    stats = await scheduler.run_tick()

    client = clients.by_instance[instance.id]
    client.send_text.assert_awaited_once_with("11988887777", "Oi Ana!")
    assert stats.sent == 1
    assert store.statuses(lead.id, step.id) == ["success"]

    await scheduler.run_tick()

    assert client.send_text.await_count == 1
    assert store.statuses(lead.id, step.id) == ["success"]


@pytest.mark.asyncio
async def test_leads_outside_window_are_ignored(store, scheduler, clients, drip, ago):
    form, instance, _, _ = drip
    store.add_lead(form.id, {"telefone": "11988887777"}, created_at=ago(minutes=10))
    store.add_lead(form.id, {"telefone": "11988886666"}, created_at=ago(hours=25))
    store.add_lead(form.id, {"telefone": "11988885555"}, is_partial=True, created_at=ago(minutes=45))

    stats = await scheduler.run_tick()

    assert stats.leads == 0
    assert store.remarketing_logs == []


@pytest.mark.asyncio
async def test_recovery_campaign_targets_partial_leads_by_last_update(store, scheduler, clients, ago):
    instance = store.add_instance()
    form = store.add_form(settings={"evolution_instance_id": instance.id})
    campaign_id = store.add_campaign(form.id, CampaignType.RECOVERY)
    step = store.add_step(campaign_id, delay_value=1, delay_unit=DelayUnit.HOURS, message_content="Faltou pouco!")
    abandoned = store.add_lead(
        form.id,
        {"celular": "11977776666"},
        is_partial=True,
        created_at=ago(days=2),
        updated_at=ago(minutes=90),
    )
    store.add_lead(form.id, {"celular": "11977775555"}, created_at=ago(minutes=90))

    await scheduler.run_tick()

    assert store.statuses(abandoned.id, step.id) == ["success"]
    assert len(store.remarketing_logs) == 1


@pytest.mark.asyncio
async def test_missing_phone_is_skipped_and_retried(store, scheduler, clients, drip, ago):
    form, instance, _, step = drip
    lead = store.add_lead(form.id, {"nome": "Ana", "cidade": "Recife"}, created_at=ago(minutes=45))

    await scheduler.run_tick()
    await scheduler.run_tick()

    assert store.statuses(lead.id, step.id) == ["skipped", "skipped"]
    assert store.remarketing_logs[0]["error_message"] == "No phone number found"
    assert clients(instance).send_text.await_count == 0


@pytest.mark.asyncio
async def test_short_phone_is_skipped(store, scheduler, drip, ago):
    form, _, _, step = drip
    lead = store.add_lead(form.id, {"telefone": "98888"}, created_at=ago(minutes=45))

    await scheduler.run_tick()

    assert store.remarketing_logs[0]["status"] == "skipped"
    assert store.remarketing_logs[0]["error_message"] == "Invalid phone number"


@pytest.mark.asyncio
async def test_campaign_without_steps_or_instance_is_skipped(store, scheduler, clients, ago):
    form = store.add_form(settings={"evolution_instance_id": 999})
    campaign_id = store.add_campaign(form.id)
    store.add_step(campaign_id, delay_value=1, delay_unit=DelayUnit.MINUTES)
    store.add_lead(form.id, {"telefone": "11988887777"}, created_at=ago(minutes=5))

    bare_form = store.add_form(slug="vazio", settings={"evolution_instance_id": store.add_instance().id})
    store.add_campaign(bare_form.id)
    store.add_lead(bare_form.id, {"telefone": "11988887777"}, created_at=ago(minutes=5))

    stats = await scheduler.run_tick()

    assert stats.campaigns == 2
    assert stats.leads == 0
    assert store.remarketing_logs == []
    assert clients.by_instance == {}


@pytest.mark.asyncio
async def test_multi_item_step_stops_at_first_failure(store, scheduler, clients, ago, no_sleep):
    instance = store.add_instance()
    form = store.add_form(settings={"evolution_instance_id": instance.id})
    campaign_id = store.add_campaign(form.id)
    items = [
        {"type": "text", "content": "Oi {{nome}}"},
        {"type": "image", "content": "https://cdn.example.com/oferta.jpg", "caption": "Para {{nome}}"},
        {"type": "text", "content": "Até logo"},
    ]
    step = store.add_step(campaign_id, delay_value=5, delay_unit=DelayUnit.MINUTES,
                          message_type="multi", message_content=json.dumps(items))
    lead = store.add_lead(form.id, {"nome": "Ana", "telefone": "11988887777"}, created_at=ago(minutes=6))

    client = clients(instance)
    client.send_media.side_effect = ProviderError("Media too large", status=400)

    await scheduler.run_tick()

    assert client.send_text.await_count == 1
    client.send_media.assert_awaited_once()
    media_args = client.send_media.await_args
    assert media_args.args[2] == "image"
    assert media_args.kwargs["caption"] == "Para Ana"

    row = store.remarketing_logs[0]
    assert row["status"] == "error"
    assert "Item 2 (image)" in row["error_message"]
    assert "Media too large" in row["error_message"]

    # scheduler pacing: nothing before the first item, item delay before the next
    assert no_sleep.await_args_list[0].args[0] == 6
    assert store.statuses(lead.id, step.id) == ["error"]


@pytest.mark.asyncio
async def test_transient_provider_errors_are_retried(store, scheduler, clients, drip, ago, no_sleep):
    form, instance, _, step = drip
    lead = store.add_lead(form.id, {"telefone": "11988887777"}, created_at=ago(minutes=45))
    client = clients(instance)
    client.send_text.side_effect = [
        ProviderError("SessionError: session not ready"),
        ProviderError("Bad Request", payload={"response": {"message": ["Connection Closed"]}}),
        {"key": {"id": "ok"}},
    ]

    await scheduler.run_tick()

    assert client.send_text.await_count == 3
    assert [c.args[0] for c in no_sleep.await_args_list] == [10, 10]
    assert store.statuses(lead.id, step.id) == ["success"]


@pytest.mark.asyncio
async def test_persistent_transient_error_stops_after_three_attempts(store, scheduler, clients, drip, ago, no_sleep):
    form, instance, _, step = drip
    lead = store.add_lead(form.id, {"telefone": "11988887777"}, created_at=ago(minutes=45))
    client = clients(instance)
    client.send_text.side_effect = ProviderError(
        "Bad Request", payload={"response": {"message": ["Connection Closed"]}}, status=400
    )

    stats = await scheduler.run_tick()

    assert client.send_text.await_count == 3
    assert [c.args[0] for c in no_sleep.await_args_list] == [10, 10]
    assert store.statuses(lead.id, step.id) == ["error"]
    assert len(store.remarketing_logs) == 1
    assert stats.failed == 1


@pytest.mark.asyncio
async def test_non_numeric_instance_id_skips_campaign(store, scheduler, clients, ago):
    form = store.add_form(settings={"evolution_instance_id": "3f9c-uuid"})
    campaign_id = store.add_campaign(form.id)
    store.add_step(campaign_id, delay_value=1, delay_unit=DelayUnit.MINUTES)
    store.add_lead(form.id, {"telefone": "11988887777"}, created_at=ago(minutes=5))

    stats = await scheduler.run_tick()

    assert stats.campaigns == 1
    assert store.remarketing_logs == []
    assert clients.by_instance == {}


@pytest.mark.asyncio
async def test_consent_answer_does_not_hide_phone(store, scheduler, clients, drip, ago):
    form, instance, _, step = drip
    lead = store.add_lead(
        form.id,
        {"Telefone": "(11) 98888-7777", "Deseja contato por WhatsApp?": "Sim"},
        created_at=ago(minutes=45),
    )

    await scheduler.run_tick()

    assert clients(instance).send_text.await_args.args[0] == "11988887777"
    assert store.statuses(lead.id, step.id) == ["success"]

@pytest.mark.asyncio
async def test_error_is_logged_and_lead_retried_next_tick(store, scheduler, clients, drip, ago):
    form, instance, _, step = drip
    lead = store.add_lead(form.id, {"telefone": "11988887777"}, created_at=ago(minutes=45))
    client = clients(instance)
    client.send_text.side_effect = [ProviderError("number not on WhatsApp", status=400), {"ok": True}]

    await scheduler.run_tick()
    await scheduler.run_tick()

    assert store.statuses(lead.id, step.id) == ["error", "success"]


@pytest.mark.asyncio
async def test_bad_step_content_logs_error(store, scheduler, clients, ago):
    instance = store.add_instance()
    form = store.add_form(settings={"evolution_instance_id": instance.id})
    campaign_id = store.add_campaign(form.id)
    store.add_step(campaign_id, delay_value=5, delay_unit=DelayUnit.MINUTES,
                   message_type="multi", message_content="{broken")
    store.add_lead(form.id, {"telefone": "11988887777"}, created_at=ago(minutes=6))

    await scheduler.run_tick()

    assert store.remarketing_logs[0]["status"] == "error"
    assert clients(instance).send_text.await_count == 0


@pytest.mark.asyncio
async def test_one_failing_campaign_does_not_stop_the_tick(store, scheduler, clients, drip, ago):
    _, instance, broken_id, _ = drip

    form = store.add_form(slug="segundo", settings={"evolution_instance_id": instance.id})
    campaign_id = store.add_campaign(form.id)
    step = store.add_step(campaign_id, delay_value=30, delay_unit=DelayUnit.MINUTES)
    lead = store.add_lead(form.id, {"telefone": "11988887777"}, created_at=ago(minutes=45))

    original_list_steps = store.list_steps

    async def list_steps(cid):
        if cid == broken_id:
            raise RuntimeError("db hiccup")
        return await original_list_steps(cid)

    store.list_steps = list_steps

    stats = await scheduler.run_tick()

    assert stats.campaigns == 2
    assert store.statuses(lead.id, step.id) == ["success"]


@pytest.mark.asyncio
async def test_step_is_skipped_when_lock_is_held(store, delivery_logger, clients, drip, ago, no_sleep, now):
    form, _, _, _ = drip
    store.add_lead(form.id, {"telefone": "11988887777"}, created_at=ago(minutes=45))
    lock = AsyncMock()
    lock.acquire.return_value = False

    scheduler = RemarketingScheduler(
        store, delivery_logger, client_factory=clients, clock=lambda: now, sleep=no_sleep, lock=lock
    )
    await scheduler.run_tick()

    lock.acquire.assert_awaited_once()
    lock.release.assert_not_awaited()
    assert store.remarketing_logs == []


@pytest.mark.asyncio
async def test_start_runs_immediately_and_stop_cancels(store, delivery_logger, clients, now, no_sleep):
    scheduler = RemarketingScheduler(
        store, delivery_logger, client_factory=clients, clock=lambda: now, sleep=no_sleep, interval=3600
    )
    ticked = asyncio.Event()
    original = scheduler.run_tick

    async def run_tick():
        stats = await original()
        ticked.set()
        return stats

    scheduler.run_tick = run_tick

    scheduler.start()
    await asyncio.wait_for(ticked.wait(), timeout=1)
    assert scheduler.running
    assert scheduler.last_tick_at == now

    await scheduler.stop()
    assert not scheduler.running
