# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Execution Context

Per-run key-value store threaded through node executors. Seeded from the
target business and user profile; optionally typed by the workflow's
variable schema.
"""

import copy
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone

from outreach.workflow.exceptions import ContextTypeError


CONDITION_RESULT_KEY = "_conditionResult"
LOOP_INDEX_KEY = "_loopIndex"
LOOP_TOTAL_KEY = "_loopTotal"
LOOP_STATE_PREFIX = "_loop:"

_SCHEMA_TYPES = {
    "string": (str,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
}


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__


class ExecutionContext:
    """
    Execution context for a workflow run.

    Tracks:
    - Variables (business fields, user profile, node outputs)
    - Completed nodes, in completion order
    - Visit counters used by the walker's cycle guard
    """

    def __init__(
        self,
        execution_id: str,
        workflow_id: str,
        variables: Optional[Dict[str, Any]] = None,
        schema: Optional[Dict[str, str]] = None,
        user_id: Optional[str] = None,
        business_id: Optional[str] = None,
    ):
        self.execution_id = execution_id
        self.workflow_id = workflow_id
        self.user_id = user_id
        self.business_id = business_id
        self.schema = dict(schema or {})
        self.started_at = datetime.now(timezone.utc)
        self.variables: Dict[str, Any] = {}
        self.completed_nodes: List[str] = []
        self.visits: Dict[str, int] = {}
        for key, value in (variables or {}).items():
            self.set(key, value)

    @classmethod
    def seeded(
        cls,
        execution_id: str,
        workflow_id: str,
        business: Optional[Dict[str, Any]] = None,
        user: Optional[Dict[str, Any]] = None,
        schema: Optional[Dict[str, str]] = None,
    ) -> "ExecutionContext":
        """Build a context from the target business and owning user"""
        variables: Dict[str, Any] = {}
        if business:
            # Business fields are addressable directly ({name}, website)
            variables.update(business)
            variables["business"] = business
        if user:
            variables["user"] = user
        return cls(
            execution_id,
            workflow_id,
            variables=variables,
            schema=schema,
            user_id=(user or {}).get("id"),
            business_id=(business or {}).get("id"),
        )

    # -- variable access --------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a variable; dotted keys walk into nested mappings"""
        if key in self.variables:
            return self.variables[key]
        value: Any = self.variables
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            elif isinstance(value, (list, tuple)) and part.isdigit() and int(part) < len(value):
                value = value[int(part)]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Write a variable, enforcing the declared schema type if any"""
        expected = self.schema.get(key)
        if expected is not None and value is not None:
            allowed = _SCHEMA_TYPES.get(expected, (object,))
            ok = isinstance(value, allowed)
            # bool is an int subclass; keep numbers and booleans apart
            if expected == "number" and isinstance(value, bool):
                ok = False
            if not ok:
                raise ContextTypeError(key, expected, _type_name(value))
        self.variables[key] = value

    def update(self, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            self.set(key, value)

    def pop(self, key: str, default: Any = None) -> Any:
        return self.variables.pop(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self.variables

    def __getitem__(self, key: str) -> Any:
        return self.variables[key]

    def as_dict(self) -> Dict[str, Any]:
        """Shallow copy of the variables for the expression evaluator"""
        return dict(self.variables)

    # -- node tracking ----------------------------------------------------

    def mark_completed(self, node_id: str) -> None:
        """Mark a node as completed in this run"""
        if node_id not in self.completed_nodes:
            self.completed_nodes.append(node_id)

    def is_completed(self, node_id: str) -> bool:
        return node_id in self.completed_nodes

    def record_visit(self, node_id: str) -> int:
        self.visits[node_id] = self.visits.get(node_id, 0) + 1
        return self.visits[node_id]

    # -- persistence ------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the run state, used for delay continuations"""
        return {
            "userId": self.user_id,
            "businessId": self.business_id,
            "variables": copy.deepcopy(self.variables),
            "completedNodes": list(self.completed_nodes),
            "visits": dict(self.visits),
        }

    @classmethod
    def from_snapshot(
        cls,
        execution_id: str,
        workflow_id: str,
        snapshot: Dict[str, Any],
        schema: Optional[Dict[str, str]] = None,
    ) -> "ExecutionContext":
        ctx = cls(
            execution_id,
            workflow_id,
            schema=schema,
            user_id=snapshot.get("userId"),
            business_id=snapshot.get("businessId"),
        )
        # Snapshot values were validated when first written
        ctx.variables = copy.deepcopy(snapshot.get("variables", {}))
        ctx.completed_nodes = list(snapshot.get("completedNodes", []))
        ctx.visits = dict(snapshot.get("visits", {}))
        return ctx
