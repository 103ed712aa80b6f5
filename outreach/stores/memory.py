# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
In-memory collaborator implementations.

Used for local runs and tests. The quota counter and trigger claim are
atomic with respect to other coroutines on the same event loop.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from outreach.core.errors import ExecutionLogClosedError, NotFoundError
from outreach.workflow.models import (
    ExecutionLog,
    ExecutionStatus,
    Trigger,
    WorkflowDefinition,
    utcnow,
)
from outreach.workflow.templating import render


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class InMemoryWorkflowRepository:
    def __init__(self, workflows: Optional[List[WorkflowDefinition]] = None):
        self._workflows: Dict[str, WorkflowDefinition] = {w.id: w for w in workflows or []}

    def add(self, workflow: WorkflowDefinition) -> None:
        self._workflows[workflow.id] = workflow

    async def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._workflows.get(workflow_id)


class InMemoryBusinessRepository:
    def __init__(self, businesses: Optional[List[Dict[str, Any]]] = None):
        self._businesses: Dict[str, Dict[str, Any]] = {}
        for business in businesses or []:
            self.add(business)

    def add(self, business: Dict[str, Any]) -> None:
        self._businesses[business["id"]] = dict(business)

    async def get(self, business_id: str) -> Optional[Dict[str, Any]]:
        business = self._businesses.get(business_id)
        return dict(business) if business else None

    async def update(self, business_id: str, patch: Dict[str, Any]) -> None:
        if business_id not in self._businesses:
            raise NotFoundError("Business", business_id)
        self._businesses[business_id].update(patch)

    async def find_candidates(
        self,
        user_id: str,
        business_types: Optional[List[str]] = None,
        created_since: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        matches = []
        for business in self._businesses.values():
            if business.get("userId") != user_id or business.get("emailSent"):
                continue
            if business_types and business.get("businessType") not in business_types:
                continue
            if created_since is not None:
                created_at = _as_datetime(business.get("createdAt"))
                if created_at is None or created_at < created_since:
                    continue
            matches.append(dict(business))
            if len(matches) >= limit:
                break
        return matches


class InMemoryUserRepository:
    def __init__(self, users: Optional[List[Dict[str, Any]]] = None):
        self._users: Dict[str, Dict[str, Any]] = {u["id"]: dict(u) for u in users or []}

    def add(self, user: Dict[str, Any]) -> None:
        self._users[user["id"]] = dict(user)

    async def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        user = self._users.get(user_id)
        return dict(user) if user else None


class InMemoryTemplateRepository:
    def __init__(self, templates: Optional[List[Dict[str, Any]]] = None):
        self._templates: Dict[str, Dict[str, Any]] = {t["id"]: dict(t) for t in templates or []}

    def add(self, template: Dict[str, Any]) -> None:
        self._templates[template["id"]] = dict(template)

    async def get(self, template_id: str) -> Optional[Dict[str, Any]]:
        return self._templates.get(template_id)

    async def get_default(self, user_id: str) -> Optional[Dict[str, Any]]:
        return next(
            (t for t in self._templates.values() if t.get("userId") == user_id and t.get("isDefault")),
            None,
        )

    def interpolate(
        self, template: Dict[str, Any], business: Dict[str, Any], user: Dict[str, Any]
    ) -> Dict[str, str]:
        variables = {**business, "business": business, "user": user}
        return {
            "subject": render(template.get("subject", ""), variables),
            "body": render(template.get("body", ""), variables),
        }


class InMemoryQuotaStore:
    """Per-user, per-day send counter"""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._counts: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    def _key(self, user_id: str) -> str:
        return f"{user_id}:{self.clock().strftime('%Y-%m-%d')}"

    async def check_and_increment(self, user_id: str, limit: int) -> bool:
        async with self._lock:
            key = self._key(user_id)
            used = self._counts.get(key, 0)
            if used >= limit:
                return False
            self._counts[key] = used + 1
            return True

    def usage(self, user_id: str) -> int:
        return self._counts.get(self._key(user_id), 0)

    def set_usage(self, user_id: str, used: int) -> None:
        self._counts[self._key(user_id)] = used


class InMemoryTriggerStore:
    def __init__(self, triggers: Optional[List[Trigger]] = None):
        self._triggers: Dict[str, Trigger] = {t.id: t for t in triggers or []}
        self._lock = asyncio.Lock()

    def add(self, trigger: Trigger) -> None:
        self._triggers[trigger.id] = trigger

    def get(self, trigger_id: str) -> Optional[Trigger]:
        return self._triggers.get(trigger_id)

    async def due_triggers(self, now: datetime, limit: int = 50) -> List[Trigger]:
        due = [t for t in self._triggers.values() if t.is_active and t.next_run_at <= now]
        due.sort(key=lambda t: t.next_run_at)
        # Snapshots: claim compares against the nextRunAt the caller saw
        return [t.model_copy() for t in due[:limit]]

    async def claim_and_reschedule(self, trigger: Trigger, next_run_at: datetime, now: datetime) -> bool:
        async with self._lock:
            current = self._triggers.get(trigger.id)
            if current is None or current.next_run_at != trigger.next_run_at:
                return False
            self._triggers[trigger.id] = current.model_copy(
                update={"next_run_at": next_run_at, "last_run_at": now}
            )
            return True


class InMemoryExecutionLogStore:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._logs: Dict[str, ExecutionLog] = {}

    def _open(self, execution_id: str) -> ExecutionLog:
        log = self._logs.get(execution_id)
        if log is None:
            raise NotFoundError("Execution", execution_id)
        if log.is_finalized:
            raise ExecutionLogClosedError(execution_id)
        return log

    async def create(self, log: ExecutionLog) -> ExecutionLog:
        self._logs[log.id] = log.model_copy(deep=True)
        return log

    async def mark_running(self, execution_id: str) -> ExecutionLog:
        log = self._open(execution_id)
        log.status = ExecutionStatus.RUNNING
        return log.model_copy(deep=True)

    async def append_log(self, execution_id: str, line: str) -> None:
        self._open(execution_id).logs.append(line)

    async def finalize(
        self,
        execution_id: str,
        status: ExecutionStatus,
        error: Optional[str] = None,
        error_node_id: Optional[str] = None,
    ) -> ExecutionLog:
        log = self._open(execution_id)
        log.status = status
        log.error = error
        log.error_node_id = error_node_id
        log.completed_at = self.clock()
        return log.model_copy(deep=True)

    async def get(self, execution_id: str) -> Optional[ExecutionLog]:
        log = self._logs.get(execution_id)
        return log.model_copy(deep=True) if log else None

    async def list(
        self,
        workflow_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        date: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ExecutionLog]:
        logs = sorted(self._logs.values(), key=lambda log: log.started_at, reverse=True)
        logs = [
            log for log in logs
            if (not workflow_id or log.workflow_id == workflow_id)
            and (not user_id or log.user_id == user_id)
            and (not status or log.status.value == status)
            and (not date or log.started_at.strftime("%Y-%m-%d") == date)
        ]
        return [log.model_copy(deep=True) for log in logs[offset:offset + limit]]

    async def get_statistics(self, days: int = 30) -> Dict[str, Any]:
        since = self.clock() - timedelta(days=days)
        logs = [log for log in self._logs.values() if log.started_at >= since]
        total = len(logs)
        success = sum(1 for log in logs if log.status == ExecutionStatus.SUCCESS)
        durations = [log.duration_seconds for log in logs if log.duration_seconds is not None]
        return {
            "period_days": days,
            "total_executions": total,
            "success": success,
            "failed": sum(1 for log in logs if log.status == ExecutionStatus.FAILED),
            "stopped": sum(1 for log in logs if log.status == ExecutionStatus.STOPPED),
            "running": sum(
                1 for log in logs if log.status in (ExecutionStatus.PENDING, ExecutionStatus.RUNNING)
            ),
            "success_rate": (success / total * 100) if total > 0 else 0,
            "avg_duration_seconds": round(sum(durations) / len(durations), 2) if durations else 0,
        }

    async def count_failed_since(self, since: datetime) -> int:
        return sum(
            1 for log in self._logs.values()
            if log.status == ExecutionStatus.FAILED
            and log.completed_at is not None
            and log.completed_at >= since
        )
