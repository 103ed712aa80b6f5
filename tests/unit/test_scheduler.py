# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for the trigger scheduler
"""

import asyncio
import dataclasses
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pytest

from outreach.services.scheduler import TriggerScheduler
from outreach.stores.memory import InMemoryTriggerStore
from outreach.workflow.models import Trigger


def edge(source, target, label=None):
    return {"source": source, "target": target, "label": label}


@pytest.fixture
def workflow(build_workflow, workflows):
    workflow = build_workflow(
        [{"id": "start", "type": "schedule"}, {"id": "mail", "type": "email"}],
        [edge("start", "mail")],
        target_business_type="plumber",
    )
    workflows.add(workflow)
    return workflow


@pytest.fixture
def triggers():
    return InMemoryTriggerStore()


@pytest.fixture
def scheduler(engine, triggers, workflows, businesses, config, clock):
    return TriggerScheduler(engine, triggers, workflows, businesses, config=config, clock=clock)


def make_trigger(clock, **fields):
    fields.setdefault("id", "trg-1")
    fields.setdefault("workflow_id", "wf-1")
    fields.setdefault("user_id", "user-1")
    fields.setdefault("next_run_at", clock())
    return Trigger(**fields)


class TestComputeNextRun:
    """cron > intervalMinutes > intervalHours > default"""

    def test_cron_in_utc(self, scheduler, workflow, clock):
        trigger = make_trigger(clock, config={"cronExpression": "0 9 * * *"})
        next_run = scheduler.compute_next_run(trigger, workflow, clock())
        assert next_run == datetime(2025, 6, 3, 9, 0, tzinfo=timezone.utc)

    def test_cron_in_workflow_timezone(self, scheduler, workflow, clock):
        try:
            ZoneInfo("America/New_York")
        except ZoneInfoNotFoundError:
            pytest.skip("tz database not available")
        workflow = workflow.model_copy(update={"timezone": "America/New_York"})
        trigger = make_trigger(clock, config={"cronExpression": "0 9 * * *"})

        next_run = scheduler.compute_next_run(trigger, workflow, clock())

        # 09:00 UTC is 05:00 EDT; 09:00 EDT is 13:00 UTC the same day
        assert next_run == datetime(2025, 6, 2, 13, 0, tzinfo=timezone.utc)

    def test_interval_minutes(self, scheduler, workflow, clock):
        trigger = make_trigger(clock, config={"intervalMinutes": 30, "intervalHours": 5})
        assert scheduler.compute_next_run(trigger, workflow, clock()) == clock() + timedelta(minutes=30)

    def test_interval_hours(self, scheduler, workflow, clock):
        trigger = make_trigger(clock, config={"intervalHours": 6})
        assert scheduler.compute_next_run(trigger, workflow, clock()) == clock() + timedelta(hours=6)

    def test_default_interval(self, scheduler, workflow, clock, config):
        trigger = make_trigger(clock)
        expected = clock() + timedelta(hours=config.default_trigger_interval_hours)
        assert scheduler.compute_next_run(trigger, workflow, clock()) == expected

    def test_invalid_cron_falls_back(self, scheduler, workflow, clock):
        trigger = make_trigger(clock, config={"cronExpression": "every tuesday", "intervalHours": 2})
        assert scheduler.compute_next_run(trigger, workflow, clock()) == clock() + timedelta(hours=2)


class TestTick:
    """Firing due triggers"""

    @pytest.mark.asyncio
    async def test_fires_and_reschedules(self, scheduler, triggers, workflow, clock, log_store):
        triggers.add(make_trigger(clock, config={"businessId": "biz-1", "intervalHours": 1}))

        assert await scheduler.tick() == 1

        [log] = await log_store.list()
        assert log.trigger_id == "trg-1"
        assert log.business_id == "biz-1"
        stored = triggers.get("trg-1")
        assert stored.next_run_at == clock() + timedelta(hours=1)
        assert stored.last_run_at == clock()

        assert await scheduler.tick() == 0

    @pytest.mark.asyncio
    async def test_not_due_yet(self, scheduler, triggers, workflow, clock):
        triggers.add(make_trigger(clock, next_run_at=clock() + timedelta(minutes=5)))
        assert await scheduler.tick() == 0

    @pytest.mark.asyncio
    async def test_targets_matching_businesses(self, scheduler, triggers, workflow, businesses, clock, log_store):
        businesses.add({"id": "biz-2", "userId": "user-1", "businessType": "plumber", "email": "b@x.test"})
        businesses.add({"id": "biz-3", "userId": "user-1", "businessType": "bakery", "email": "c@x.test"})
        businesses.add({"id": "biz-4", "userId": "user-1", "businessType": "plumber", "emailSent": True})
        businesses.add({"id": "biz-5", "userId": "user-2", "businessType": "plumber"})
        triggers.add(make_trigger(clock))

        assert await scheduler.tick() == 2
        assert {log.business_id for log in await log_store.list()} == {"biz-1", "biz-2"}

    @pytest.mark.asyncio
    async def test_trigger_business_types_override(self, scheduler, triggers, workflow, businesses, clock, log_store):
        businesses.add({"id": "biz-3", "userId": "user-1", "businessType": "bakery", "email": "c@x.test"})
        triggers.add(make_trigger(clock, config={"targetBusinessTypes": ["bakery"]}))

        assert await scheduler.tick() == 1
        assert [log.business_id for log in await log_store.list()] == ["biz-3"]

    @pytest.mark.asyncio
    async def test_new_business_trigger_uses_created_since(
        self, scheduler, triggers, workflow, businesses, clock, log_store
    ):
        businesses.add({
            "id": "biz-new", "userId": "user-1", "businessType": "plumber",
            "createdAt": (clock() - timedelta(hours=1)).isoformat(),
        })
        businesses.add({
            "id": "biz-old", "userId": "user-1", "businessType": "plumber",
            "createdAt": clock() - timedelta(days=3),
        })
        triggers.add(make_trigger(clock, trigger_type="new_business"))

        assert await scheduler.tick() == 1
        assert [log.business_id for log in await log_store.list()] == ["biz-new"]

    @pytest.mark.asyncio
    async def test_manual_trigger_runs_once_without_business(self, scheduler, triggers, workflow, clock, log_store):
        triggers.add(make_trigger(clock, trigger_type="manual"))

        assert await scheduler.tick() == 1
        [log] = await log_store.list()
        assert log.business_id is None

    @pytest.mark.asyncio
    async def test_inactive_workflow_skipped(self, scheduler, triggers, workflow, workflows, clock):
        workflows.add(workflow.model_copy(update={"is_active": False}))
        triggers.add(make_trigger(clock, config={"businessId": "biz-1"}))

        assert await scheduler.tick() == 0
        assert triggers.get("trg-1").next_run_at == clock()

    @pytest.mark.asyncio
    async def test_inactive_trigger_skipped(self, scheduler, triggers, workflow, clock):
        triggers.add(make_trigger(clock, is_active=False, config={"businessId": "biz-1"}))
        assert await scheduler.tick() == 0

    @pytest.mark.asyncio
    async def test_invalid_workflow_is_logged_and_rescheduled(
        self, scheduler, triggers, workflows, build_workflow, clock, log_store
    ):
        workflows.add(build_workflow([{"id": "mail", "type": "email"}], []))
        triggers.add(make_trigger(clock, config={"businessId": "biz-1"}))

        assert await scheduler.tick() == 0
        assert await log_store.list() == []
        assert triggers.get("trg-1").next_run_at > clock()


class TestClaim:
    """A trigger fires once even with several schedulers"""

    @pytest.mark.asyncio
    async def test_claim_is_conditional(self, triggers, clock):
        triggers.add(make_trigger(clock))
        [snapshot] = await triggers.due_triggers(clock())
        later = clock() + timedelta(hours=1)

        assert await triggers.claim_and_reschedule(snapshot, later, clock()) is True
        assert await triggers.claim_and_reschedule(snapshot, later, clock()) is False

    @pytest.mark.asyncio
    async def test_two_schedulers_fire_once(
        self, engine, triggers, workflows, workflow, businesses, config, clock, log_store
    ):
        log_store.create = AsyncMock(wraps=log_store.create)
        triggers.add(make_trigger(clock, config={"businessId": "biz-1"}))
        first = TriggerScheduler(engine, triggers, workflows, businesses, config=config, clock=clock)
        second = TriggerScheduler(engine, triggers, workflows, businesses, config=config, clock=clock)

        results = await asyncio.gather(first.tick(), second.tick())

        assert sum(results) == 1
        assert log_store.create.await_count == 1


class TestLifecycle:
    """Background tick loop"""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, engine, triggers, workflows, workflow, businesses, config, clock, log_store):
        scheduler = TriggerScheduler(
            engine, triggers, workflows, businesses,
            config=dataclasses.replace(config, scheduler_interval=0.01), clock=clock,
        )
        triggers.add(make_trigger(clock, config={"businessId": "biz-1"}))

        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert len(await log_store.list()) == 1
