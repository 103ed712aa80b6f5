# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Task Queue - in-process priority queue with a bounded asyncio worker pool.

Jobs are picked high > medium > low, FIFO within a tier, and only once
their notBefore time has passed. A dedupe key collapses duplicate
submissions while the first job is still queued.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from itertools import count
from typing import Any, Awaitable, Callable, Dict, List, Optional

from outreach.core.config import Config, get_config
from outreach.core.logging import get_service_logger, log_event
from outreach.workflow.models import utcnow
from outreach.workflow.retry import RetryPolicy

logger = get_service_logger("task-queue")


class JobType(str, Enum):
    WORKFLOW = "workflow"
    CONTINUATION = "continuation"


class JobPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


PRIORITY_RANK = {JobPriority.HIGH: 0, JobPriority.MEDIUM: 1, JobPriority.LOW: 2}


class JobStatus(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_JOB_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}


@dataclass
class QueueJob:
    id: str
    type: JobType
    priority: JobPriority
    payload: Dict[str, Any]
    seq: int
    dedupe_key: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    not_before: Optional[datetime] = None
    error: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 0
    cancel_requested: bool = False

    @property
    def processing_seconds(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "priority": self.priority.value,
            "status": self.status.value,
            "dedupeKey": self.dedupe_key,
            "payload": dict(self.payload),
            "createdAt": self.created_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "notBefore": self.not_before.isoformat() if self.not_before else None,
            "error": self.error,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
        }


JobHandler = Callable[[QueueJob], Awaitable[None]]


class TaskQueue:
    """
    Priority task queue with a fixed-size worker pool.

    Handlers are registered per job type; a handler that raises marks the
    job failed (or re-queues it with backoff while retries remain).
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        clock: Callable[[], datetime] = utcnow,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.config = config or get_config()
        self.clock = clock
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)
        self._jobs: Dict[str, QueueJob] = {}
        self._queued_by_dedupe: Dict[str, str] = {}
        self._handlers: Dict[JobType, JobHandler] = {}
        self._seq = count()
        self._workers: List[asyncio.Task] = []
        self._wakeup = asyncio.Event()
        self._running = False

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def register_handler(self, job_type: JobType, handler: JobHandler) -> None:
        self._handlers[JobType(job_type)] = handler

    def enqueue(
        self,
        job_type: JobType,
        payload: Dict[str, Any],
        priority: str = JobPriority.MEDIUM,
        dedupe_key: Optional[str] = None,
        not_before: Optional[datetime] = None,
        max_retries: int = 0,
    ) -> str:
        """
        Add a job; returns its id.

        If dedupe_key matches a job that is still queued, nothing is added
        and the existing job's id is returned.
        """
        self._evict_expired()

        if dedupe_key and dedupe_key in self._queued_by_dedupe:
            existing_id = self._queued_by_dedupe[dedupe_key]
            log_event(logger, "job_deduplicated", job_id=existing_id, dedupe_key=dedupe_key)
            return existing_id

        job_type = JobType(job_type)
        job = QueueJob(
            id=f"{job_type.value}_{uuid.uuid4().hex[:12]}",
            type=job_type,
            priority=JobPriority(priority),
            payload=dict(payload),
            seq=next(self._seq),
            dedupe_key=dedupe_key,
            created_at=self.clock(),
            not_before=not_before,
            max_retries=max_retries,
        )
        self._jobs[job.id] = job
        if dedupe_key:
            self._queued_by_dedupe[dedupe_key] = job.id

        log_event(
            logger,
            "job_enqueued",
            job_id=job.id,
            job_type=job.type.value,
            priority=job.priority.value,
            not_before=not_before.isoformat() if not_before else None,
        )
        self._wakeup.set()
        return job.id

    def find_queued(self, dedupe_key: str) -> Optional[str]:
        """Id of the queued job holding dedupe_key, if any"""
        return self._queued_by_dedupe.get(dedupe_key)

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a job.

        Queued jobs are cancelled immediately; active jobs get a cooperative
        cancel flag their handler checks between steps.
        """
        job = self._jobs.get(job_id)
        if job is None or job.status in TERMINAL_JOB_STATUSES:
            return False

        job.cancel_requested = True
        if job.status == JobStatus.QUEUED:
            job.status = JobStatus.CANCELLED
            job.completed_at = self.clock()
            self._release_dedupe(job)
        log_event(logger, "job_cancelled", job_id=job_id, was_active=job.status == JobStatus.ACTIVE)
        return True

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _release_dedupe(self, job: QueueJob) -> None:
        if job.dedupe_key and self._queued_by_dedupe.get(job.dedupe_key) == job.id:
            del self._queued_by_dedupe[job.dedupe_key]

    def _eligible(self, now: datetime) -> List[QueueJob]:
        return [
            job for job in self._jobs.values()
            if job.status == JobStatus.QUEUED and (job.not_before is None or job.not_before <= now)
        ]

    def next_job(self) -> Optional[QueueJob]:
        """Claim the next eligible job (marks it active)"""
        eligible = self._eligible(self.clock())
        if not eligible:
            return None
        job = min(eligible, key=lambda j: (PRIORITY_RANK[j.priority], j.seq))
        job.status = JobStatus.ACTIVE
        job.started_at = self.clock()
        self._release_dedupe(job)
        return job

    async def process(self, job: QueueJob) -> None:
        """Run a claimed job through its handler and record the result"""
        handler = self._handlers.get(job.type)
        log_event(logger, "job_started", job_id=job.id, job_type=job.type.value)
        try:
            if handler is None:
                raise RuntimeError(f"No handler registered for job type: {job.type.value}")
            await handler(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.error = str(e) or type(e).__name__
            if job.retry_count < job.max_retries and not job.cancel_requested:
                job.retry_count += 1
                delay = self.retry_policy.calculate_delay(job.retry_count - 1)
                job.status = JobStatus.QUEUED
                job.started_at = None
                job.not_before = self.clock() + timedelta(seconds=delay)
                log_event(
                    logger,
                    "job_retry_scheduled",
                    level="WARNING",
                    job_id=job.id,
                    error=job.error,
                    retry_count=job.retry_count,
                    delay_seconds=round(delay, 2),
                )
            else:
                job.status = JobStatus.FAILED
                job.completed_at = self.clock()
                logger.error(f"Job {job.id} failed: {job.error}", exc_info=True)
            return

        job.status = JobStatus.CANCELLED if job.cancel_requested else JobStatus.COMPLETED
        job.completed_at = self.clock()
        log_event(
            logger,
            "job_completed",
            job_id=job.id,
            status=job.status.value,
            duration_seconds=job.processing_seconds,
        )

    async def _worker(self, worker_id: int) -> None:
        while self._running:
            self._wakeup.clear()
            job = self.next_job()
            if job is None:
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self.config.queue_poll_interval)
                except asyncio.TimeoutError:
                    pass
                continue
            await self.process(job)
            self._wakeup.set()

    def start(self) -> None:
        """Start the worker pool (queue.concurrency workers)"""
        if self._running:
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"queue-worker-{i}")
            for i in range(self.config.worker_concurrency)
        ]
        logger.info(f"Task queue started with {len(self._workers)} workers")

    async def stop(self) -> None:
        """Stop workers after their current job finishes"""
        if not self._running:
            return
        self._running = False
        self._wakeup.set()
        await asyncio.gather(*self._workers)
        self._workers = []
        logger.info("Task queue stopped")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait until no job is active and no queued job is eligible"""
        async def _idle() -> None:
            while self.get_active_count() or self._eligible(self.clock()):
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_idle(), timeout=timeout)

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[QueueJob]:
        return self._jobs.get(job_id)

    def get_active_count(self) -> int:
        return sum(1 for job in self._jobs.values() if job.status == JobStatus.ACTIVE)

    def get_active_tasks(self) -> List[Dict[str, Any]]:
        """Snapshot of queued and active jobs"""
        return [
            job.to_dict() for job in self._jobs.values()
            if job.status in (JobStatus.QUEUED, JobStatus.ACTIVE)
        ]

    def get_all_stats(self) -> Dict[str, Any]:
        """Read-only counters for monitoring"""
        self._evict_expired()
        jobs = list(self._jobs.values())
        day_ago = self.clock() - timedelta(hours=24)

        by_priority = {p.value: 0 for p in JobPriority}
        for job in jobs:
            if job.status in (JobStatus.QUEUED, JobStatus.ACTIVE):
                by_priority[job.priority.value] += 1

        by_type: Dict[str, Dict[str, Any]] = {}
        for job_type in JobType:
            typed = [j for j in jobs if j.type == job_type]
            durations = [
                j.processing_seconds for j in typed
                if j.status == JobStatus.COMPLETED and j.processing_seconds is not None
            ]
            by_type[job_type.value] = {
                "pending": sum(1 for j in typed if j.status == JobStatus.QUEUED),
                "active": sum(1 for j in typed if j.status == JobStatus.ACTIVE),
                "completed": sum(1 for j in typed if j.status == JobStatus.COMPLETED),
                "failed": sum(1 for j in typed if j.status == JobStatus.FAILED),
                "avg_processing_time": sum(durations) / len(durations) if durations else 0,
            }

        return {
            "active": sum(1 for j in jobs if j.status == JobStatus.ACTIVE),
            "pending": sum(1 for j in jobs if j.status == JobStatus.QUEUED),
            "completed": sum(1 for j in jobs if j.status == JobStatus.COMPLETED),
            "failed": sum(1 for j in jobs if j.status == JobStatus.FAILED),
            "cancelled": sum(1 for j in jobs if j.status == JobStatus.CANCELLED),
            "failed_last_24h": sum(
                1 for j in jobs
                if j.status == JobStatus.FAILED and j.completed_at and j.completed_at >= day_ago
            ),
            "by_priority": by_priority,
            "by_type": by_type,
        }

    def clear_completed(self) -> int:
        """Drop completed and cancelled jobs; returns how many were removed"""
        done = [
            job_id for job_id, job in self._jobs.items()
            if job.status in (JobStatus.COMPLETED, JobStatus.CANCELLED)
        ]
        for job_id in done:
            del self._jobs[job_id]
        return len(done)

    def _evict_expired(self) -> None:
        cutoff = self.clock() - timedelta(seconds=self.config.job_retention_seconds)
        expired = [
            job_id for job_id, job in self._jobs.items()
            if job.status in TERMINAL_JOB_STATUSES and job.completed_at and job.completed_at < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]
