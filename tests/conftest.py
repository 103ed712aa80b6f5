# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Shared fixtures: a controllable clock, test config, in-memory collaborators
and AsyncMock provider spies.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List
from unittest.mock import AsyncMock

import httpx
import pytest

from outreach.core.config import Config
from outreach.services.engine import WorkflowEngineService
from outreach.stores.memory import (
    InMemoryBusinessRepository,
    InMemoryExecutionLogStore,
    InMemoryQuotaStore,
    InMemoryTemplateRepository,
    InMemoryUserRepository,
    InMemoryWorkflowRepository,
)
from outreach.workflow.interfaces import NodeServices, PublishResult, SendResult
from outreach.workflow.models import Edge, Node, WorkflowDefinition
from outreach.workflow.retry import RetryPolicy


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime = None):
        self.now = now or datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return Config(
        queue_poll_interval=0.01,
        retry_initial_delay=0.0,
        collaborator_timeout=5.0,
        executions_path=str(tmp_path / "executions"),
    )


@pytest.fixture
def business():
    return {
        "id": "biz-1",
        "userId": "user-1",
        "name": "Acme Plumbing",
        "email": "owner@acme.test",
        "website": None,
        "businessType": "plumber",
        "rating": 4.6,
    }


@pytest.fixture
def user():
    return {
        "id": "user-1",
        "name": "Dana",
        "geminiApiKey": "user-gemini-key",
        "socialAccounts": {"facebook": {"id": "fb-page-1"}},
    }


@pytest.fixture
def businesses(business):
    return InMemoryBusinessRepository([business])


@pytest.fixture
def users(user):
    return InMemoryUserRepository([user])


@pytest.fixture
def templates():
    return InMemoryTemplateRepository([
        {
            "id": "tpl-default",
            "userId": "user-1",
            "isDefault": True,
            "subject": "Quick question for {name}",
            "body": "Hi {name},\n\n{aiContent}\n\n{user.name}",
        },
        {
            "id": "tpl-follow-up",
            "userId": "user-1",
            "subject": "Following up, {name}",
            "body": "Just checking in.",
        },
    ])


@pytest.fixture
def quota(clock):
    return InMemoryQuotaStore(clock=clock)


@pytest.fixture
def log_store(clock):
    return InMemoryExecutionLogStore(clock=clock)


@pytest.fixture
def email_sender():
    sender = AsyncMock()
    sender.send = AsyncMock(return_value=SendResult(success=True, message_id="msg-1"))
    return sender


@pytest.fixture
def social_publisher():
    publisher = AsyncMock()
    publisher.publish = AsyncMock(return_value=PublishResult(id="post-1"))
    return publisher


@pytest.fixture
def ai_generator():
    generator = AsyncMock()
    generator.generate = AsyncMock(return_value="We help local businesses get found online.")
    return generator


@pytest.fixture
def http_requests():
    """Requests seen by the mock HTTP transport"""
    return []


@pytest.fixture
def http_client(http_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        http_requests.append(request)
        return httpx.Response(200, json={"ok": True})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def services(
    config, clock, http_client, businesses, templates, email_sender, social_publisher, ai_generator, quota
):
    return NodeServices(
        config=config,
        http_client=http_client,
        businesses=businesses,
        templates=templates,
        email_sender=email_sender,
        social_publisher=social_publisher,
        ai_generator=ai_generator,
        quota=quota,
        retry=RetryPolicy(initial_delay=0.0, jitter=0.0),
        clock=clock,
    )


@pytest.fixture
def workflows():
    return InMemoryWorkflowRepository()


@pytest.fixture
def engine(workflows, businesses, users, log_store, services, config, clock):
    return WorkflowEngineService(
        workflows, businesses, users, log_store, services, config=config, clock=clock
    )


@pytest.fixture
def build_workflow():
    """Factory: build_workflow(nodes, edges, **fields) -> WorkflowDefinition"""

    def _build(nodes: List[Dict[str, Any]], edges: List[Dict[str, Any]], **fields) -> WorkflowDefinition:
        return WorkflowDefinition(
            id=fields.pop("id", "wf-1"),
            user_id=fields.pop("user_id", "user-1"),
            name=fields.pop("name", "Test Workflow"),
            nodes=[Node(**n) for n in nodes],
            edges=[Edge(**e) for e in edges],
            **fields,
        )

    return _build
