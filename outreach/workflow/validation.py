# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Validation

Structural checks run before a workflow execution is created, and the
GraphIndex the walker uses to navigate the graph.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Set

from pydantic import ValidationError

from outreach.workflow.exceptions import WorkflowValidationError
from outreach.workflow.models import Edge, Node, NodeType, WorkflowDefinition


@dataclass
class GraphIndex:
    """Lookup tables derived from a validated workflow"""
    nodes_by_id: Dict[str, Node]
    outgoing: Dict[str, List[Edge]]  # insertion order preserved
    start_id: str
    loop_members: Set[str] = field(default_factory=set)

    def is_loop_member(self, node_id: str) -> bool:
        return node_id in self.loop_members


def validate_workflow(workflow_def: WorkflowDefinition) -> GraphIndex:
    """
    Validate workflow structure and node configs.

    Returns a GraphIndex for the walker.

    Raises WorkflowValidationError if validation fails.
    """
    # 1. Empty workflow check
    if len(workflow_def.nodes) == 0:
        raise WorkflowValidationError("Workflow must have at least one node", field="nodes")

    # 2. Duplicate node IDs
    node_ids = [node.id for node in workflow_def.nodes]
    if len(node_ids) != len(set(node_ids)):
        duplicates = sorted({nid for nid in node_ids if node_ids.count(nid) > 1})
        raise WorkflowValidationError(f"Duplicate node IDs found: {duplicates}", field="nodes")

    nodes_by_id = {node.id: node for node in workflow_def.nodes}

    # 3. Dangling edges
    outgoing: Dict[str, List[Edge]] = {node_id: [] for node_id in node_ids}
    for edge in workflow_def.edges:
        for endpoint in (edge.source, edge.target):
            if endpoint not in nodes_by_id:
                raise WorkflowValidationError(
                    f"Edge references non-existent node: {endpoint}",
                    field="edges"
                )
        outgoing[edge.source].append(edge)

    # 4. Exactly one entry node
    entries = [node.id for node in workflow_def.nodes if node.is_entry]
    if not entries:
        raise WorkflowValidationError("Workflow has no start node", field="nodes")
    if len(entries) > 1:
        raise WorkflowValidationError(
            f"Workflow must have exactly one start node, found {len(entries)}: {entries}",
            field="nodes"
        )
    start_id = entries[0]

    # 5. Node configs
    for node in workflow_def.nodes:
        try:
            node.parsed_config()
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ())) or "config"
            raise WorkflowValidationError(
                f"Invalid config for node '{node.id}' ({node.type.value}): {location}: {first['msg']}",
                field=f"nodes[{node.id}].config"
            )
        if node.type == NodeType.API_REQUEST and not node.config.get("url"):
            raise WorkflowValidationError(
                f"apiRequest node '{node.id}' requires a url",
                field=f"nodes[{node.id}].config.url"
            )

    # 6. Reachability from the start node
    reachable = _reachable_from(start_id, outgoing)
    unreachable = [nid for nid in node_ids if nid not in reachable]
    if unreachable:
        raise WorkflowValidationError(
            f"Unreachable nodes (not connected to start node '{start_id}'): {unreachable}",
            field="edges"
        )

    return GraphIndex(
        nodes_by_id=nodes_by_id,
        outgoing=outgoing,
        start_id=start_id,
        loop_members=_loop_members(workflow_def, outgoing),
    )


def _reachable_from(start: str, adjacency: Dict[str, List[Edge]]) -> Set[str]:
    visited: Set[str] = set()
    queue = deque([start])
    while queue:
        node_id = queue.popleft()
        if node_id in visited:
            continue
        visited.add(node_id)
        queue.extend(edge.target for edge in adjacency.get(node_id, []))
    return visited


def _loop_members(workflow_def: WorkflowDefinition, outgoing: Dict[str, List[Edge]]) -> Set[str]:
    """Nodes on a cycle through a splitInBatches node"""
    incoming: Dict[str, List[str]] = {node.id: [] for node in workflow_def.nodes}
    for edge in workflow_def.edges:
        incoming[edge.target].append(edge.source)

    members: Set[str] = set()
    for node in workflow_def.nodes:
        if node.type != NodeType.SPLIT_IN_BATCHES:
            continue
        forward = _reachable_from(node.id, outgoing)

        backward: Set[str] = set()
        queue = deque([node.id])
        while queue:
            current = queue.popleft()
            if current in backward:
                continue
            backward.add(current)
            queue.extend(incoming[current])

        cycle = forward & backward
        if len(cycle) > 1 or any(e.target == node.id for e in outgoing[node.id]):
            members |= cycle
    return members
