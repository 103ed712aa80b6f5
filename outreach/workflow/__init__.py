# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow execution engine: models, typed context, expression evaluator,
node executors and the graph walker.
"""

from outreach.workflow.context import ExecutionContext
from outreach.workflow.executor import WalkResult, WorkflowExecutor
from outreach.workflow.models import (
    Edge,
    ExecutionLog,
    ExecutionStatus,
    Node,
    NodeType,
    Outcome,
    Trigger,
    WorkflowDefinition,
)
from outreach.workflow.validation import GraphIndex, validate_workflow

__all__ = [
    "Edge",
    "ExecutionContext",
    "ExecutionLog",
    "ExecutionStatus",
    "GraphIndex",
    "Node",
    "NodeType",
    "Outcome",
    "Trigger",
    "WalkResult",
    "WorkflowDefinition",
    "WorkflowExecutor",
    "validate_workflow",
]
