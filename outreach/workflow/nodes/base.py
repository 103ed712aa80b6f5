# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Node executor base class and registry.

Every NodeType maps to exactly one executor instance. Executors never raise
across the node boundary for expected failures: provider errors, quota,
timeouts and schema violations become an "error" outcome carrying the
underlying message.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, Tuple, TypeVar

from pydantic import ValidationError

from outreach.workflow.context import ExecutionContext
from outreach.workflow.exceptions import (
    ContextTypeError,
    NodeExecutionError,
    NodeTimeoutError,
    ProviderError,
)
from outreach.workflow.interfaces import NodeServices
from outreach.workflow.models import Node, NodeConfig, NodeResult, NodeType, Outcome

T = TypeVar("T")


class NodeExecutor(ABC):
    """Handler for one or more node types"""

    node_types: Tuple[NodeType, ...] = ()

    async def execute(self, node: Node, ctx: ExecutionContext, services: NodeServices) -> NodeResult:
        try:
            config = node.parsed_config()
            return await self.run(node, config, ctx, services)
        except NodeExecutionError as e:
            return failure(e.reason)
        except ProviderError as e:
            return failure(e.message)
        except ContextTypeError as e:
            return failure(str(e))
        except ValidationError as e:
            return failure(f"Invalid {node.type.value} config: {e.errors()[0]['msg']}")

    @abstractmethod
    async def run(
        self,
        node: Node,
        config: NodeConfig,
        ctx: ExecutionContext,
        services: NodeServices,
    ) -> NodeResult:
        ...


def failure(message: str) -> NodeResult:
    return NodeResult(outcome=Outcome.ERROR, error=message, logs=[f"Error: {message}"])


async def call_collaborator(
    node: Node,
    services: NodeServices,
    operation: str,
    fn: Callable[[], Awaitable[T]],
    retry: bool = False,
) -> T:
    """
    Await an external call bounded by the collaborator timeout.

    With retry=True, transient provider errors are retried per the
    service retry policy; each attempt gets the full timeout.
    """
    timeout = services.config.collaborator_timeout

    async def attempt() -> T:
        return await asyncio.wait_for(fn(), timeout=timeout)

    try:
        if retry:
            return await services.retry.call(operation, attempt)
        return await attempt()
    except asyncio.TimeoutError:
        raise NodeTimeoutError(node.id, node.type.value, operation, timeout)


# ============================================================================
# Registry
# ============================================================================

NODE_EXECUTORS: Dict[NodeType, NodeExecutor] = {}


def register(cls):
    """Class decorator: instantiate and register for cls.node_types"""
    instance = cls()
    for node_type in cls.node_types:
        if node_type in NODE_EXECUTORS:
            raise RuntimeError(f"Duplicate executor for node type: {node_type.value}")
        NODE_EXECUTORS[node_type] = instance
    return cls


def get_executor(node_type: NodeType) -> NodeExecutor:
    return NODE_EXECUTORS[node_type]


def check_registry() -> None:
    """Fail at import time if a node type has no executor"""
    missing = [t.value for t in NodeType if t not in NODE_EXECUTORS]
    if missing:
        raise RuntimeError(f"No executor registered for node types: {', '.join(missing)}")
