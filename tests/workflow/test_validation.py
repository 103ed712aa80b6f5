# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Unit tests for workflow validation and graph indexing
"""

import pytest
from pydantic import ValidationError

from outreach.workflow.exceptions import WorkflowValidationError
from outreach.workflow.models import (
    NODE_CONFIG_MODELS,
    Edge,
    Node,
    NodeType,
    WorkflowDefinition,
    check_config_models,
)
from outreach.workflow.validation import validate_workflow


def start(node_id="start"):
    return {"id": node_id, "type": "start"}


def edge(source, target, label=None):
    return {"source": source, "target": target, "label": label}


class TestValidateWorkflow:
    """Structural rejection rules"""

    def test_valid_linear_workflow(self, build_workflow):
        workflow = build_workflow(
            [start(), {"id": "d", "type": "delay", "config": {"delayHours": 0}}],
            [edge("start", "d")],
        )
        index = validate_workflow(workflow)

        assert index.start_id == "start"
        assert [e.target for e in index.outgoing["start"]] == ["d"]
        assert index.outgoing["d"] == []
        assert index.loop_members == set()

    def test_empty_workflow(self, build_workflow):
        with pytest.raises(WorkflowValidationError) as exc_info:
            validate_workflow(build_workflow([], []))
        assert exc_info.value.field == "nodes"

    def test_duplicate_node_ids(self, build_workflow):
        workflow = build_workflow([start(), start()], [])
        with pytest.raises(WorkflowValidationError, match="Duplicate node IDs"):
            validate_workflow(workflow)

    def test_dangling_edge(self, build_workflow):
        workflow = build_workflow([start()], [edge("start", "ghost")])
        with pytest.raises(WorkflowValidationError, match="ghost") as exc_info:
            validate_workflow(workflow)
        assert exc_info.value.field == "edges"

    def test_no_start_node(self, build_workflow):
        workflow = build_workflow([{"id": "d", "type": "delay"}], [])
        with pytest.raises(WorkflowValidationError, match="no start node"):
            validate_workflow(workflow)

    def test_multiple_start_nodes(self, build_workflow):
        workflow = build_workflow(
            [start("a"), {"id": "b", "type": "schedule"}],
            [edge("a", "b")],
        )
        with pytest.raises(WorkflowValidationError, match="exactly one start node"):
            validate_workflow(workflow)

    def test_invalid_node_config(self, build_workflow):
        workflow = build_workflow(
            [start(), {"id": "f", "type": "filter", "config": {"filterCondition": "   "}}],
            [edge("start", "f")],
        )
        with pytest.raises(WorkflowValidationError) as exc_info:
            validate_workflow(workflow)
        assert exc_info.value.field == "nodes[f].config"
        assert "'f'" in exc_info.value.message

    def test_condition_requires_expression_or_rule(self, build_workflow):
        workflow = build_workflow(
            [start(), {"id": "c", "type": "condition", "config": {}}],
            [edge("start", "c")],
        )
        with pytest.raises(WorkflowValidationError, match="condition"):
            validate_workflow(workflow)

    def test_api_request_requires_url(self, build_workflow):
        workflow = build_workflow(
            [start(), {"id": "api", "type": "apiRequest", "config": {"method": "get"}}],
            [edge("start", "api")],
        )
        with pytest.raises(WorkflowValidationError) as exc_info:
            validate_workflow(workflow)
        assert exc_info.value.field == "nodes[api].config.url"

    def test_unreachable_node(self, build_workflow):
        workflow = build_workflow(
            [start(), {"id": "orphan", "type": "delay"}],
            [],
        )
        with pytest.raises(WorkflowValidationError, match="orphan"):
            validate_workflow(workflow)

    def test_cycle_is_accepted_at_validation(self, build_workflow):
        workflow = build_workflow(
            [
                start(),
                {"id": "a", "type": "set", "config": {"setVariables": {"x": 1}}},
                {"id": "b", "type": "set", "config": {"setVariables": {"y": 2}}},
            ],
            [edge("start", "a"), edge("a", "b"), edge("b", "a")],
        )
        index = validate_workflow(workflow)
        assert index.loop_members == set()

    def test_duplicate_labels_accepted_at_validation(self, build_workflow):
        workflow = build_workflow(
            [
                start(),
                {"id": "c", "type": "condition", "config": {"condition": "x"}},
                {"id": "a", "type": "delay", "config": {"delayHours": 0}},
                {"id": "b", "type": "delay", "config": {"delayHours": 0}},
            ],
            [edge("start", "c"), edge("c", "a", "true"), edge("c", "b", "true")],
        )
        index = validate_workflow(workflow)
        assert len(index.outgoing["c"]) == 2


class TestEntryNodes:
    """Which node types start a run"""

    def test_webhook_without_url_is_entry(self, build_workflow):
        workflow = build_workflow(
            [
                {"id": "hook", "type": "webhook"},
                {"id": "d", "type": "delay", "config": {"delayHours": 0}},
            ],
            [edge("hook", "d")],
        )
        assert validate_workflow(workflow).start_id == "hook"

    def test_webhook_with_url_is_action(self):
        node = Node(id="hook", type="webhook", config={"url": "https://example.test"})
        assert node.is_entry is False

    def test_unknown_node_type_rejected(self):
        with pytest.raises(ValidationError):
            Node(id="x", type="teleport")


class TestLoopMembers:
    """Cycles through splitInBatches are loops, not errors"""

    def test_loop_members_include_body(self, build_workflow):
        workflow = build_workflow(
            [
                start(),
                {"id": "split", "type": "splitInBatches", "config": {"itemsKey": "leads"}},
                {"id": "body", "type": "set", "config": {"setVariables": {"seen": "{item}"}}},
                {"id": "after", "type": "delay", "config": {"delayHours": 0}},
            ],
            [
                edge("start", "split"),
                edge("split", "body", "loop"),
                edge("body", "split"),
                edge("split", "after", "done"),
            ],
        )
        index = validate_workflow(workflow)

        assert index.loop_members == {"split", "body"}
        assert index.is_loop_member("body")
        assert not index.is_loop_member("after")


class TestBuilderShapes:
    """Payloads as the visual builder saves them"""

    def test_nested_data_and_source_handle(self):
        workflow = WorkflowDefinition.model_validate({
            "id": "wf-1",
            "userId": "user-1",
            "name": "Builder",
            "nodes": [
                {"id": "s", "data": {"type": "start", "label": "Start"}},
                {"id": "c", "data": {"type": "condition", "config": {"condition": "website"}}},
                {"id": "t", "data": {"type": "delay", "config": {"delayHours": 0}}},
            ],
            "edges": [
                {"id": "e1", "source": "s", "target": "c"},
                {"id": "e2", "source": "c", "target": "t", "sourceHandle": "true"},
            ],
        })

        assert workflow.nodes[0].type == NodeType.START
        assert workflow.nodes[0].label == "Start"
        assert workflow.edges[1].label == "true"
        assert validate_workflow(workflow).start_id == "s"

    def test_edge_default_labels(self):
        assert Edge(source="a", target="b").matches("default")
        assert Edge(source="a", target="b", label="done").matches("default")
        assert Edge(source="a", target="b", label="TRUE").matches("true")
        assert not Edge(source="a", target="b", label="true").matches("default")

    def test_config_model_table_is_complete(self, monkeypatch):
        check_config_models()

        monkeypatch.delitem(NODE_CONFIG_MODELS, NodeType.MERGE)
        with pytest.raises(RuntimeError, match="merge"):
            check_config_models()
