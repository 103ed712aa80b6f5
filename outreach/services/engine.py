# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Engine Service - Entry point for running workflows.

Validates and submits executions to the task queue, runs queued jobs through
the graph walker, persists continuations for delay nodes, and exposes status
and queue statistics to callers.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx

from outreach.core.config import Config, get_config
from outreach.core.errors import ExecutionLogClosedError, NotFoundError
from outreach.core.logging import get_service_logger, log_event
from outreach.services.execution_logger import ExecutionLogger
from outreach.services.task_queue import JobPriority, JobStatus, JobType, QueueJob, TaskQueue
from outreach.workflow.context import ExecutionContext
from outreach.workflow.exceptions import WorkflowValidationError
from outreach.workflow.executor import WorkflowExecutor
from outreach.workflow.interfaces import (
    BusinessRepository,
    ExecutionLogStore,
    NodeServices,
    UserRepository,
    WorkflowRepository,
)
from outreach.workflow.models import (
    Continuation,
    ExecutionLog,
    ExecutionStatus,
    WorkflowDefinition,
    utcnow,
)
from outreach.workflow.validation import GraphIndex, validate_workflow

logger = get_service_logger("engine")

STOPPED_BY_USER_MESSAGE = "Execution stopped by user"


def dedupe_key_for(workflow_id: str, business_id: Optional[str]) -> str:
    return f"workflow:{workflow_id}:{business_id or '-'}"


def create_http_client(config: Config) -> httpx.AsyncClient:
    """Shared client for webhook/apiRequest nodes"""
    return httpx.AsyncClient(timeout=config.http_timeout, follow_redirects=True)


class WorkflowEngineService:
    """
    Service for submitting and running workflow executions.

    All collaborators are injected; nothing here is a module-level singleton.
    """

    def __init__(
        self,
        workflows: WorkflowRepository,
        businesses: BusinessRepository,
        users: UserRepository,
        log_store: ExecutionLogStore,
        services: NodeServices,
        queue: Optional[TaskQueue] = None,
        config: Optional[Config] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or services.config or get_config()
        self.workflows = workflows
        self.businesses = businesses
        self.users = users
        self.clock = clock
        self.execution_logger = ExecutionLogger(log_store, clock=clock)
        self.queue = queue or TaskQueue(self.config, clock=clock)
        self.executor = WorkflowExecutor(services)
        self._submit_lock = asyncio.Lock()
        self._jobs_by_execution: Dict[str, str] = {}

        self.queue.register_handler(JobType.WORKFLOW, self._handle_workflow_job)
        self.queue.register_handler(JobType.CONTINUATION, self._handle_continuation_job)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------

    async def start_execution(
        self,
        workflow_id: str,
        user_id: str,
        business_id: Optional[str] = None,
        priority: str = JobPriority.MEDIUM,
        trigger_id: Optional[str] = None,
    ) -> str:
        """
        Validate and enqueue a workflow run.

        Returns:
            Execution id (an existing one if an identical job is still queued)

        Raises:
            NotFoundError: Workflow does not exist or belongs to another user
            WorkflowValidationError: Malformed graph; no execution log is created
        """
        workflow = await self.workflows.get(workflow_id)
        if workflow is None or workflow.user_id != user_id:
            raise NotFoundError("Workflow", workflow_id)

        validate_workflow(workflow)

        dedupe_key = dedupe_key_for(workflow_id, business_id)
        async with self._submit_lock:
            existing_job_id = self.queue.find_queued(dedupe_key)
            if existing_job_id:
                existing = self.queue.get_job(existing_job_id)
                log_event(
                    logger,
                    "execution_deduplicated",
                    workflow_id=workflow_id,
                    business_id=business_id,
                    execution_id=existing.payload["executionId"],
                )
                return existing.payload["executionId"]

            log = await self.execution_logger.create(
                workflow_id, user_id, business_id=business_id, trigger_id=trigger_id
            )
            job_id = self.queue.enqueue(
                JobType.WORKFLOW,
                {
                    "executionId": log.id,
                    "workflowId": workflow_id,
                    "userId": user_id,
                    "businessId": business_id,
                    "triggerId": trigger_id,
                },
                priority=priority,
                dedupe_key=dedupe_key,
            )
            self._jobs_by_execution[log.id] = job_id

        return log.id

    async def get_execution_status(self, execution_id: str) -> ExecutionLog:
        log = await self.execution_logger.get(execution_id)
        if log is None:
            raise NotFoundError("Execution", execution_id)
        return log

    async def get_queue_stats(self) -> Dict[str, Any]:
        """{active, pending, failedLast24h, byPriority}"""
        stats = self.queue.get_all_stats()
        failed = await self.execution_logger.count_failed_since(self.clock() - timedelta(hours=24))
        return {
            "active": stats["active"],
            "pending": stats["pending"],
            "failedLast24h": failed,
            "byPriority": stats["by_priority"],
        }

    async def stop_execution(self, execution_id: str) -> ExecutionLog:
        """
        Stop a run.

        Queued or delayed runs are stopped immediately. A run in progress is
        flagged; the walker stops before its next node.
        """
        log = await self.get_execution_status(execution_id)
        if log.is_finalized:
            return log

        job_id = self._jobs_by_execution.get(execution_id)
        job = self.queue.get_job(job_id) if job_id else None
        if job is not None and job.status == JobStatus.ACTIVE:
            self.queue.cancel(job.id)
            log_event(logger, "execution_stop_requested", execution_id=execution_id)
            return log

        if job is not None:
            self.queue.cancel(job.id)
        self._jobs_by_execution.pop(execution_id, None)
        return await self.execution_logger.finalize(
            execution_id, ExecutionStatus.STOPPED, error=STOPPED_BY_USER_MESSAGE
        )

    async def list_executions(self, **filters: Any) -> List[ExecutionLog]:
        return await self.execution_logger.list(**filters)

    async def get_execution_stats(self, days: int = 30) -> Dict[str, Any]:
        return await self.execution_logger.get_statistics(days)

    # ------------------------------------------------------------------
    # Job handlers
    # ------------------------------------------------------------------

    async def _handle_workflow_job(self, job: QueueJob) -> None:
        try:
            await self._run_workflow_job(job)
        except Exception as e:
            await self._fail_unfinished(job, job.payload["executionId"], e)
            raise

    async def _handle_continuation_job(self, job: QueueJob) -> None:
        try:
            await self._run_continuation_job(job)
        except Exception as e:
            await self._fail_unfinished(job, job.payload["executionId"], e)
            raise

    async def _fail_unfinished(self, job: QueueJob, execution_id: str, error: Exception) -> None:
        """Record an infrastructure failure on the log once no retry remains"""
        if job.cancel_requested:
            status, message = ExecutionStatus.STOPPED, STOPPED_BY_USER_MESSAGE
        elif job.retry_count < job.max_retries:
            return
        else:
            status, message = ExecutionStatus.FAILED, str(error) or type(error).__name__
        try:
            await self.execution_logger.finalize(execution_id, status, error=message)
        except ExecutionLogClosedError:
            log_event(logger, "execution_already_finalized", level="DEBUG", execution_id=execution_id)
        self._jobs_by_execution.pop(execution_id, None)

    async def _load_workflow(self, execution_id: str, workflow_id: str) -> Optional[tuple]:
        workflow = await self.workflows.get(workflow_id)
        if workflow is None:
            await self.execution_logger.finalize(
                execution_id, ExecutionStatus.FAILED, error=f"Workflow not found: {workflow_id}"
            )
            return None
        try:
            index = validate_workflow(workflow)
        except WorkflowValidationError as e:
            await self.execution_logger.finalize(execution_id, ExecutionStatus.FAILED, error=e.message)
            return None
        return workflow, index

    async def _run_workflow_job(self, job: QueueJob) -> None:
        payload = job.payload
        execution_id = payload["executionId"]
        user_id = payload["userId"]
        business_id = payload.get("businessId")

        if job.cancel_requested:
            await self.execution_logger.finalize(
                execution_id, ExecutionStatus.STOPPED, error=STOPPED_BY_USER_MESSAGE
            )
            return

        loaded = await self._load_workflow(execution_id, payload["workflowId"])
        if loaded is None:
            return
        workflow, index = loaded

        business = None
        if business_id:
            business = await self.businesses.get(business_id)
            if business is None:
                await self.execution_logger.finalize(
                    execution_id, ExecutionStatus.FAILED, error=f"Business not found: {business_id}"
                )
                return
        user = await self.users.get(user_id) or {"id": user_id}

        await self.execution_logger.mark_running(execution_id)
        ctx = ExecutionContext.seeded(
            execution_id, workflow.id, business=business, user=user, schema=workflow.variable_schema
        )
        ctx.user_id = user_id
        ctx.business_id = business_id

        await self.execution_logger.append(execution_id, f"Started workflow '{workflow.name}'")
        await self._walk(job, workflow, index, ctx, payload.get("triggerId"))

    async def _run_continuation_job(self, job: QueueJob) -> None:
        continuation = Continuation.model_validate(job.payload)
        execution_id = continuation.execution_id

        loaded = await self._load_workflow(execution_id, continuation.workflow_id)
        if loaded is None:
            return
        workflow, index = loaded

        if continuation.node_id not in index.nodes_by_id:
            await self.execution_logger.finalize(
                execution_id,
                ExecutionStatus.FAILED,
                error=f"Resume node no longer exists: {continuation.node_id}",
            )
            return

        ctx = ExecutionContext.from_snapshot(
            execution_id, workflow.id, continuation.context, schema=workflow.variable_schema
        )
        await self.execution_logger.append(execution_id, f"Resumed after delay at node '{continuation.node_id}'")
        await self._walk(job, workflow, index, ctx, continuation.trigger_id, start_node_id=continuation.node_id)

    async def _walk(
        self,
        job: QueueJob,
        workflow: WorkflowDefinition,
        index: GraphIndex,
        ctx: ExecutionContext,
        trigger_id: Optional[str],
        start_node_id: Optional[str] = None,
    ) -> None:
        execution_id = ctx.execution_id
        result = await self.executor.run(
            index,
            ctx,
            self.execution_logger.step_logger(execution_id),
            start_node_id=start_node_id,
            is_cancelled=lambda: job.cancel_requested,
        )

        if result.suspended:
            continuation = Continuation(
                execution_id=execution_id,
                workflow_id=workflow.id,
                user_id=ctx.user_id,
                business_id=ctx.business_id,
                trigger_id=trigger_id,
                node_id=result.resume_node_id,
                context=ctx.snapshot(),
                resume_at=result.resume_at,
            )
            job_id = self.queue.enqueue(
                JobType.CONTINUATION,
                continuation.model_dump(by_alias=True),
                priority=job.priority,
                not_before=result.resume_at,
                max_retries=self.config.continuation_max_retries,
            )
            self._jobs_by_execution[execution_id] = job_id
            return

        await self.execution_logger.finalize(
            execution_id, result.status, error=result.error, error_node_id=result.error_node_id
        )
        self._jobs_by_execution.pop(execution_id, None)
