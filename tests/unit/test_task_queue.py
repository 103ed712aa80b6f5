# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for the priority task queue and worker pool
"""

import asyncio
import dataclasses
from unittest.mock import AsyncMock

import pytest

from outreach.services.task_queue import JobPriority, JobStatus, JobType, TaskQueue


@pytest.fixture
def queue(config, clock):
    return TaskQueue(config, clock=clock)


class TestSubmission:
    """enqueue, dedupe and ordering"""

    def test_dedupe_while_queued(self, queue):
        first = queue.enqueue(JobType.WORKFLOW, {"n": 1}, dedupe_key="workflow:wf-1:biz-1")
        second = queue.enqueue(JobType.WORKFLOW, {"n": 2}, dedupe_key="workflow:wf-1:biz-1")

        assert first == second
        assert queue.get_all_stats()["pending"] == 1
        assert queue.find_queued("workflow:wf-1:biz-1") == first

    def test_dedupe_released_once_claimed(self, queue):
        first = queue.enqueue(JobType.WORKFLOW, {}, dedupe_key="k")
        assert queue.next_job().id == first

        second = queue.enqueue(JobType.WORKFLOW, {}, dedupe_key="k")
        assert second != first
        assert queue.find_queued("k") == second

    def test_priority_then_fifo(self, queue):
        low = queue.enqueue(JobType.WORKFLOW, {}, priority=JobPriority.LOW)
        medium = queue.enqueue(JobType.WORKFLOW, {}, priority="medium")
        high_1 = queue.enqueue(JobType.WORKFLOW, {}, priority=JobPriority.HIGH)
        high_2 = queue.enqueue(JobType.WORKFLOW, {}, priority="high")

        order = [queue.next_job().id for _ in range(4)]

        assert order == [high_1, high_2, medium, low]
        assert queue.next_job() is None

    def test_not_before_defers_job(self, queue, clock):
        job_id = queue.enqueue(
            JobType.CONTINUATION, {}, priority=JobPriority.HIGH, not_before=clock.now.replace(hour=10)
        )
        assert queue.next_job() is None

        clock.advance(hours=1)
        assert queue.next_job().id == job_id

    def test_job_to_dict(self, queue):
        job = queue.get_job(queue.enqueue(JobType.WORKFLOW, {"executionId": "exec-1"}, dedupe_key="k"))
        data = job.to_dict()

        assert data["type"] == "workflow"
        assert data["priority"] == "medium"
        assert data["status"] == "queued"
        assert data["payload"] == {"executionId": "exec-1"}
        assert data["dedupeKey"] == "k"


class TestProcessing:
    """Handler outcomes"""

    @pytest.mark.asyncio
    async def test_success(self, queue):
        handler = AsyncMock()
        queue.register_handler(JobType.WORKFLOW, handler)
        job_id = queue.enqueue(JobType.WORKFLOW, {"executionId": "exec-1"})

        job = queue.next_job()
        await queue.process(job)

        handler.assert_awaited_once_with(job)
        assert queue.get_job(job_id).status == JobStatus.COMPLETED
        assert job.processing_seconds == 0

    @pytest.mark.asyncio
    async def test_failure_without_retries(self, queue):
        queue.register_handler(JobType.WORKFLOW, AsyncMock(side_effect=RuntimeError("disk full")))
        queue.enqueue(JobType.WORKFLOW, {})

        job = queue.next_job()
        await queue.process(job)

        assert job.status == JobStatus.FAILED
        assert job.error == "disk full"
        stats = queue.get_all_stats()
        assert stats["failed"] == 1
        assert stats["failed_last_24h"] == 1

    @pytest.mark.asyncio
    async def test_retries_then_fails(self, queue):
        handler = AsyncMock(side_effect=RuntimeError("store unavailable"))
        queue.register_handler(JobType.CONTINUATION, handler)
        queue.enqueue(JobType.CONTINUATION, {}, max_retries=2)

        job = queue.next_job()
        await queue.process(job)
        assert job.status == JobStatus.QUEUED
        assert job.retry_count == 1

        await queue.process(queue.next_job())
        assert job.retry_count == 2

        await queue.process(queue.next_job())
        assert job.status == JobStatus.FAILED
        assert handler.await_count == 3

    @pytest.mark.asyncio
    async def test_retry_succeeds(self, queue):
        handler = AsyncMock(side_effect=[RuntimeError("blip"), None])
        queue.register_handler(JobType.CONTINUATION, handler)
        queue.enqueue(JobType.CONTINUATION, {}, max_retries=3)

        job = queue.next_job()
        await queue.process(job)
        await queue.process(queue.next_job())

        assert job.status == JobStatus.COMPLETED
        assert job.retry_count == 1

    @pytest.mark.asyncio
    async def test_missing_handler_fails_job(self, queue):
        queue.enqueue(JobType.WORKFLOW, {})
        job = queue.next_job()

        await queue.process(job)

        assert job.status == JobStatus.FAILED
        assert job.error == "No handler registered for job type: workflow"


class TestCancellation:
    """Queued jobs cancel at once; active jobs cooperatively"""

    def test_cancel_queued(self, queue):
        job_id = queue.enqueue(JobType.WORKFLOW, {}, dedupe_key="k")

        assert queue.cancel(job_id) is True
        assert queue.get_job(job_id).status == JobStatus.CANCELLED
        assert queue.find_queued("k") is None
        assert queue.next_job() is None
        assert queue.cancel(job_id) is False

    def test_cancel_unknown(self, queue):
        assert queue.cancel("workflow_missing") is False

    @pytest.mark.asyncio
    async def test_cancel_active(self, queue):
        seen = []

        async def handler(job):
            queue.cancel(job.id)
            seen.append(job.cancel_requested)

        queue.register_handler(JobType.WORKFLOW, handler)
        queue.enqueue(JobType.WORKFLOW, {})
        job = queue.next_job()

        await queue.process(job)

        assert seen == [True]
        assert job.status == JobStatus.CANCELLED


class TestWorkerPool:
    """start / drain / stop"""

    @pytest.mark.asyncio
    async def test_workers_process_all_jobs(self, queue):
        processed = []

        async def handler(job):
            processed.append(job.payload["n"])

        queue.register_handler(JobType.WORKFLOW, handler)
        queue.start()
        try:
            for n in range(5):
                queue.enqueue(JobType.WORKFLOW, {"n": n})
            await queue.drain(timeout=5)
        finally:
            await queue.stop()

        assert sorted(processed) == [0, 1, 2, 3, 4]
        assert queue.get_all_stats()["completed"] == 5

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, config, clock):
        queue = TaskQueue(dataclasses.replace(config, worker_concurrency=2), clock=clock)
        running = 0
        peak = 0

        async def handler(job):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1

        queue.register_handler(JobType.WORKFLOW, handler)
        for _ in range(6):
            queue.enqueue(JobType.WORKFLOW, {})

        queue.start()
        try:
            await queue.drain(timeout=5)
        finally:
            await queue.stop()

        assert peak == 2

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, queue):
        queue.start()
        queue.start()
        await queue.stop()
        await queue.stop()


class TestMonitoring:
    """Stats, eviction and cleanup"""

    @pytest.mark.asyncio
    async def test_stats_shape(self, queue):
        queue.register_handler(JobType.WORKFLOW, AsyncMock())
        queue.enqueue(JobType.WORKFLOW, {}, priority="high")
        queue.enqueue(JobType.WORKFLOW, {}, priority="low")
        queue.enqueue(JobType.CONTINUATION, {}, priority="low")
        await queue.process(queue.next_job())

        stats = queue.get_all_stats()

        assert stats["active"] == 0
        assert stats["pending"] == 2
        assert stats["completed"] == 1
        assert stats["by_priority"] == {"low": 2, "medium": 0, "high": 0}
        assert stats["by_type"]["workflow"]["completed"] == 1
        assert stats["by_type"]["continuation"]["pending"] == 1
        assert len(queue.get_active_tasks()) == 2

    @pytest.mark.asyncio
    async def test_finished_jobs_expire(self, queue, clock, config):
        queue.register_handler(JobType.WORKFLOW, AsyncMock())
        job_id = queue.enqueue(JobType.WORKFLOW, {})
        await queue.process(queue.next_job())

        clock.advance(seconds=config.job_retention_seconds + 1)

        assert queue.get_all_stats()["completed"] == 0
        assert queue.get_job(job_id) is None

    @pytest.mark.asyncio
    async def test_clear_completed(self, queue):
        queue.register_handler(JobType.WORKFLOW, AsyncMock())
        queue.enqueue(JobType.WORKFLOW, {})
        cancelled = queue.enqueue(JobType.WORKFLOW, {})
        queue.cancel(cancelled)
        await queue.process(queue.next_job())
        queue.enqueue(JobType.WORKFLOW, {})

        assert queue.clear_completed() == 2
        assert queue.get_all_stats()["pending"] == 1
