# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Executor

Sequential graph walker. Starting from the entry node (or a resume point),
runs one node at a time, then follows the outgoing edge whose label matches
the node's outcome. Runs end Success (no matching edge), Failed (error
outcome without an error edge, or cycle guard), Stopped (filter or
cancellation), or suspend at a delay node with a resume time.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from outreach.core.logging import get_workflow_logger, log_event
from outreach.workflow.context import ExecutionContext
from outreach.workflow.interfaces import NodeServices
from outreach.workflow.models import Edge, ExecutionStatus, Node, NodeResult, Outcome
from outreach.workflow.nodes import get_executor
from outreach.workflow.nodes.base import failure
from outreach.workflow.validation import GraphIndex

logger = get_workflow_logger("executor")

LAST_ERROR_KEY = "_lastError"

StepLog = Callable[[str], Awaitable[None]]


@dataclass
class WalkResult:
    """Where a walk ended; status RUNNING means suspended at a delay"""
    status: ExecutionStatus
    steps: int = 0
    error: Optional[str] = None
    error_node_id: Optional[str] = None
    resume_node_id: Optional[str] = None
    resume_at: Optional[datetime] = None

    @property
    def suspended(self) -> bool:
        return self.status == ExecutionStatus.RUNNING


def _never_cancelled() -> bool:
    return False


class WorkflowExecutor:
    """
    Sequential workflow executor.

    Nodes of one run never execute concurrently; each node's external calls
    are awaited before the next edge is selected.
    """

    def __init__(self, services: NodeServices):
        self.services = services

    async def run(
        self,
        index: GraphIndex,
        ctx: ExecutionContext,
        step_log: StepLog,
        start_node_id: Optional[str] = None,
        is_cancelled: Callable[[], bool] = _never_cancelled,
    ) -> WalkResult:
        config = self.services.config
        current: Optional[str] = start_node_id or index.start_id
        steps = 0

        while current is not None:
            if is_cancelled():
                await step_log(f"Execution stopped before node '{current}'")
                return WalkResult(ExecutionStatus.STOPPED, steps, error="Execution stopped by user")

            node = index.nodes_by_id[current]
            limit = config.max_loop_iterations if index.is_loop_member(current) else config.max_node_visits
            if ctx.record_visit(current) > limit:
                message = f"Cycle detected: node '{current}' visited more than {limit} time(s)"
                await step_log(message)
                return WalkResult(ExecutionStatus.FAILED, steps, error=message, error_node_id=current)

            result = await self._execute_node(node, ctx)
            steps += 1
            for line in result.logs:
                await step_log(f"[{node.id}] {line}")

            if result.outcome != Outcome.ERROR:
                ctx.mark_completed(node.id)

            if result.outcome == Outcome.STOP:
                await step_log(f"Stopped by filter at node '{node.id}'")
                return WalkResult(ExecutionStatus.STOPPED, steps)

            edge = await self._select_edge(node, result.outcome, index, step_log)

            if result.outcome == Outcome.ERROR:
                if edge is None:
                    return WalkResult(
                        ExecutionStatus.FAILED, steps, error=result.error, error_node_id=node.id
                    )
                ctx.set(LAST_ERROR_KEY, {"nodeId": node.id, "message": result.error})
                await step_log(f"[{node.id}] Following error path to '{edge.target}'")

            if edge is None:
                return WalkResult(ExecutionStatus.SUCCESS, steps)

            if result.delay_hours:
                resume_at = self.services.clock() + timedelta(hours=result.delay_hours)
                await step_log(f"Suspended until {resume_at.isoformat()}; resuming at '{edge.target}'")
                return WalkResult(
                    ExecutionStatus.RUNNING,
                    steps,
                    resume_node_id=edge.target,
                    resume_at=resume_at,
                )

            current = edge.target

        return WalkResult(ExecutionStatus.SUCCESS, steps)

    async def _execute_node(self, node: Node, ctx: ExecutionContext) -> NodeResult:
        try:
            return await get_executor(node.type).execute(node, ctx, self.services)
        except Exception as e:
            logger.exception(f"Unexpected error in node {node.id} ({node.type.value})")
            return failure(str(e) or type(e).__name__)

    async def _select_edge(
        self, node: Node, outcome: Outcome, index: GraphIndex, step_log: StepLog
    ) -> Optional[Edge]:
        candidates = [edge for edge in index.outgoing[node.id] if edge.matches(outcome.value)]
        if not candidates:
            return None
        if len(candidates) > 1:
            message = (
                f"Node '{node.id}' has {len(candidates)} edges for outcome '{outcome.value}'; "
                f"using the first (-> '{candidates[0].target}')"
            )
            log_event(
                logger,
                "duplicate_edge_label",
                level="WARNING",
                node_id=node.id,
                outcome=outcome.value,
                targets=[edge.target for edge in candidates],
            )
            await step_log(f"Warning: {message}")
        return candidates[0]
