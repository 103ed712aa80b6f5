# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Execution Logger - per-run audit trail on top of an ExecutionLogStore.

Creating and finalizing a log propagate storage errors; appending a step
line does not, so a flaky store never aborts a run mid-graph.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from outreach.core.errors import OutreachError
from outreach.core.logging import get_service_logger, log_event
from outreach.execution_store import new_execution_id
from outreach.workflow.interfaces import ExecutionLogStore
from outreach.workflow.models import ExecutionLog, ExecutionStatus, utcnow

logger = get_service_logger("execution-logger")


class ExecutionLogger:
    """Records run status, step lines, timing and errors"""

    def __init__(self, store: ExecutionLogStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def create(
        self,
        workflow_id: str,
        user_id: str,
        business_id: Optional[str] = None,
        trigger_id: Optional[str] = None,
    ) -> ExecutionLog:
        now = self.clock()
        log = ExecutionLog(
            id=new_execution_id(now),
            workflow_id=workflow_id,
            user_id=user_id,
            business_id=business_id,
            trigger_id=trigger_id,
            status=ExecutionStatus.PENDING,
            started_at=now,
        )
        created = await self.store.create(log)
        log_event(
            logger,
            "execution_created",
            execution_id=created.id,
            workflow_id=workflow_id,
            business_id=business_id,
            trigger_id=trigger_id,
        )
        return created

    async def mark_running(self, execution_id: str) -> ExecutionLog:
        return await self.store.mark_running(execution_id)

    async def append(self, execution_id: str, line: str) -> None:
        try:
            await self.store.append_log(execution_id, line)
        except (OutreachError, OSError) as e:
            log_event(
                logger,
                "execution_log_append_failed",
                level="WARNING",
                execution_id=execution_id,
                error=str(e),
            )

    def step_logger(self, execution_id: str) -> Callable[[str], Any]:
        """Bound append() for the walker"""
        async def _append(line: str) -> None:
            await self.append(execution_id, line)
        return _append

    async def finalize(
        self,
        execution_id: str,
        status: ExecutionStatus,
        error: Optional[str] = None,
        error_node_id: Optional[str] = None,
    ) -> ExecutionLog:
        log = await self.store.finalize(execution_id, status, error=error, error_node_id=error_node_id)
        log_event(
            logger,
            "execution_finished",
            level="WARNING" if status == ExecutionStatus.FAILED else "INFO",
            execution_id=execution_id,
            status=status.value,
            error=error,
            error_node_id=error_node_id,
        )
        return log

    async def get(self, execution_id: str) -> Optional[ExecutionLog]:
        return await self.store.get(execution_id)

    async def list(self, **filters: Any) -> List[ExecutionLog]:
        return await self.store.list(**filters)

    async def get_statistics(self, days: int = 30) -> Dict[str, Any]:
        return await self.store.get_statistics(days)

    async def count_failed_since(self, since: datetime) -> int:
        return await self.store.count_failed_since(since)
