# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Trigger Scheduler
Fires due triggers on a fixed cadence using cron expressions or intervals.

Each due trigger is claimed with a conditional update on nextRunAt before
anything is enqueued, so two scheduler instances never fire it twice.
"""

import asyncio
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from outreach.core.config import Config, get_config
from outreach.core.errors import NotFoundError
from outreach.core.logging import get_service_logger, log_event
from outreach.services.engine import WorkflowEngineService
from outreach.workflow.exceptions import WorkflowValidationError
from outreach.workflow.interfaces import BusinessRepository, TriggerStore, WorkflowRepository
from outreach.workflow.models import Trigger, WorkflowDefinition, utcnow

logger = get_service_logger("scheduler")


class TriggerType:
    SCHEDULE = "schedule"
    NEW_BUSINESS = "new_business"
    DELAY_COMPLETION = "delay_completion"
    MANUAL = "manual"


# Trigger types that start a single run without a target business
SINGLE_RUN_TRIGGERS = {TriggerType.DELAY_COMPLETION, TriggerType.MANUAL}


def _zone(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', using UTC")
        return timezone.utc


class TriggerScheduler:
    """Polls the trigger store and submits executions for due triggers"""

    def __init__(
        self,
        engine: WorkflowEngineService,
        triggers: TriggerStore,
        workflows: WorkflowRepository,
        businesses: BusinessRepository,
        config: Optional[Config] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.triggers = triggers
        self.workflows = workflows
        self.businesses = businesses
        self.config = config or get_config()
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Next-run computation
    # ------------------------------------------------------------------

    def compute_next_run(self, trigger: Trigger, workflow: WorkflowDefinition, now: datetime) -> datetime:
        """
        Next occurrence after `now`.

        cronExpression (evaluated in the workflow timezone) wins, then
        intervalMinutes, then intervalHours, then the configured default.
        """
        config = trigger.config
        cron_expression = config.get("cronExpression") or config.get("cron")
        if cron_expression:
            if croniter.is_valid(cron_expression):
                local_now = now.astimezone(_zone(workflow.timezone))
                next_local = croniter(cron_expression, local_now).get_next(datetime)
                return next_local.astimezone(timezone.utc)
            log_event(
                logger,
                "invalid_cron_expression",
                level="WARNING",
                trigger_id=trigger.id,
                cron_expression=cron_expression,
            )

        if config.get("intervalMinutes"):
            return now + timedelta(minutes=float(config["intervalMinutes"]))
        if config.get("intervalHours"):
            return now + timedelta(hours=float(config["intervalHours"]))
        return now + timedelta(hours=self.config.default_trigger_interval_hours)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, now: Optional[datetime] = None) -> int:
        """
        Fire every due trigger once.

        Returns:
            Number of executions submitted
        """
        now = now or self.clock()
        due = await self.triggers.due_triggers(now, limit=self.config.scheduler_batch_limit)
        submitted = 0

        for trigger in due:
            if not trigger.is_active:
                continue

            workflow = await self.workflows.get(trigger.workflow_id)
            if workflow is None or not workflow.is_active:
                log_event(
                    logger,
                    "trigger_skipped",
                    trigger_id=trigger.id,
                    workflow_id=trigger.workflow_id,
                    reason="workflow missing" if workflow is None else "workflow inactive",
                )
                continue

            next_run = self.compute_next_run(trigger, workflow, now)
            if not await self.triggers.claim_and_reschedule(trigger, next_run, now):
                log_event(logger, "trigger_claim_lost", trigger_id=trigger.id)
                continue

            log_event(
                logger,
                "trigger_claimed",
                trigger_id=trigger.id,
                workflow_id=workflow.id,
                next_run_at=next_run.isoformat(),
            )
            submitted += await self._fire(trigger, workflow, now)

        return submitted

    async def _select_targets(self, trigger: Trigger, workflow: WorkflowDefinition, now: datetime) -> List[Optional[str]]:
        if trigger.trigger_type in SINGLE_RUN_TRIGGERS:
            return [None]
        if trigger.config.get("businessId"):
            return [trigger.config["businessId"]]

        business_types = trigger.config.get("targetBusinessTypes") or (
            [workflow.target_business_type] if workflow.target_business_type else None
        )
        created_since = None
        if trigger.trigger_type == TriggerType.NEW_BUSINESS:
            created_since = trigger.last_run_at or now - timedelta(
                hours=self.config.default_trigger_interval_hours
            )

        candidates = await self.businesses.find_candidates(
            trigger.user_id,
            business_types=business_types,
            created_since=created_since,
            limit=self.config.scheduler_batch_limit,
        )
        return [business["id"] for business in candidates]

    async def _fire(self, trigger: Trigger, workflow: WorkflowDefinition, now: datetime) -> int:
        submitted = 0
        priority = trigger.config.get("priority", "medium")
        for business_id in await self._select_targets(trigger, workflow, now):
            try:
                await self.engine.start_execution(
                    workflow.id,
                    trigger.user_id,
                    business_id=business_id,
                    priority=priority,
                    trigger_id=trigger.id,
                )
            except (WorkflowValidationError, NotFoundError) as e:
                logger.error(f"Trigger {trigger.id} could not start workflow {workflow.id}: {e}")
                break
            submitted += 1

        log_event(logger, "trigger_fired", trigger_id=trigger.id, submitted=submitted)
        return submitted

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.scheduler_interval)
            except asyncio.TimeoutError:
                pass

    def start(self) -> None:
        """Run ticks every scheduler.interval seconds until stop()"""
        if self._task is not None:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="trigger-scheduler")
        logger.info(f"Trigger scheduler started (interval {self.config.scheduler_interval:g}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Trigger scheduler stopped")
