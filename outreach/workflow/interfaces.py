# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Collaborator interfaces consumed by the engine.

Storage, providers and quota live outside the engine and are injected as
objects satisfying these protocols (duck typing). NodeServices bundles what
node executors need for one engine instance.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx

from outreach.core.config import Config
from outreach.workflow.models import (
    ExecutionLog,
    ExecutionStatus,
    Trigger,
    WorkflowDefinition,
    utcnow,
)
from outreach.workflow.retry import RetryPolicy


@dataclass
class SendResult:
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


@dataclass
class PublishResult:
    id: Optional[str] = None
    error: Optional[str] = None


class WorkflowRepository(Protocol):
    async def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        ...


class BusinessRepository(Protocol):
    async def get(self, business_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def update(self, business_id: str, patch: Dict[str, Any]) -> None:
        ...

    async def find_candidates(
        self,
        user_id: str,
        business_types: Optional[List[str]] = None,
        created_since: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Businesses of the user that have not been emailed yet"""
        ...


class UserRepository(Protocol):
    async def get(self, user_id: str) -> Optional[Dict[str, Any]]:
        ...


class TemplateRepository(Protocol):
    async def get(self, template_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def get_default(self, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    def interpolate(
        self, template: Dict[str, Any], business: Dict[str, Any], user: Dict[str, Any]
    ) -> Dict[str, str]:
        """Return {"subject": ..., "body": ...}"""
        ...


class EmailSender(Protocol):
    async def send(
        self,
        business: Dict[str, Any],
        rendered: Dict[str, str],
        credentials: Optional[Dict[str, Any]],
    ) -> SendResult:
        ...


class SocialPublisher(Protocol):
    async def publish(
        self,
        platform: str,
        account: Dict[str, Any],
        content: str,
        media: Optional[str],
    ) -> PublishResult:
        ...


class AIGenerator(Protocol):
    async def generate(self, prompt: str, api_key: Optional[str], model: Optional[str] = None) -> str:
        """Raises RateLimitError on quota/429, PermanentProviderError otherwise"""
        ...


class QuotaStore(Protocol):
    async def check_and_increment(self, user_id: str, limit: int) -> bool:
        """Atomically consume one unit of today's quota; False when exhausted"""
        ...


class ExecutionLogStore(Protocol):
    async def create(self, log: ExecutionLog) -> ExecutionLog:
        ...

    async def mark_running(self, execution_id: str) -> ExecutionLog:
        ...

    async def append_log(self, execution_id: str, line: str) -> None:
        ...

    async def finalize(
        self,
        execution_id: str,
        status: ExecutionStatus,
        error: Optional[str] = None,
        error_node_id: Optional[str] = None,
    ) -> ExecutionLog:
        ...

    async def get(self, execution_id: str) -> Optional[ExecutionLog]:
        ...

    async def list(
        self,
        workflow_id: Optional[str] = None,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        date: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ExecutionLog]:
        ...

    async def get_statistics(self, days: int = 30) -> Dict[str, Any]:
        ...

    async def count_failed_since(self, since: datetime) -> int:
        ...


class TriggerStore(Protocol):
    async def due_triggers(self, now: datetime, limit: int = 50) -> List[Trigger]:
        ...

    async def claim_and_reschedule(self, trigger: Trigger, next_run_at: datetime, now: datetime) -> bool:
        """Conditional update: succeeds only if nextRunAt still equals trigger.next_run_at"""
        ...


@dataclass
class NodeServices:
    """Everything node executors may touch outside the execution context"""
    config: Config
    http_client: httpx.AsyncClient
    businesses: BusinessRepository
    templates: TemplateRepository
    email_sender: EmailSender
    social_publisher: SocialPublisher
    ai_generator: AIGenerator
    quota: QuotaStore
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    clock: Callable[[], datetime] = utcnow
