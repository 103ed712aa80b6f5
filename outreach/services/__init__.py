# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Service layer: execution logging, task queue, trigger scheduler and the
engine service that ties them together.
"""

from outreach.services.engine import WorkflowEngineService
from outreach.services.execution_logger import ExecutionLogger
from outreach.services.scheduler import TriggerScheduler
from outreach.services.task_queue import JobPriority, JobStatus, JobType, QueueJob, TaskQueue

__all__ = [
    "ExecutionLogger",
    "JobPriority",
    "JobStatus",
    "JobType",
    "QueueJob",
    "TaskQueue",
    "TriggerScheduler",
    "WorkflowEngineService",
]
