# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Control-flow node executors: entry, condition, filter, set, delay, merge
and splitInBatches. None of these call external collaborators.
"""

import math

from outreach.workflow.context import (
    CONDITION_RESULT_KEY,
    LOOP_INDEX_KEY,
    LOOP_STATE_PREFIX,
    LOOP_TOTAL_KEY,
    ExecutionContext,
)
from outreach.workflow.expressions import EvaluationResult, evaluate, evaluate_rule
from outreach.workflow.interfaces import NodeServices
from outreach.workflow.models import (
    ConditionConfig,
    DelayConfig,
    FilterConfig,
    MergeConfig,
    Node,
    NodeConfig,
    NodeResult,
    NodeType,
    Outcome,
    SetConfig,
    SplitInBatchesConfig,
)
from outreach.workflow.nodes.base import NodeExecutor, failure, register
from outreach.workflow.templating import render_value


@register
class EntryExecutor(NodeExecutor):
    node_types = (NodeType.START, NodeType.TRIGGER, NodeType.SCHEDULE)

    async def run(self, node: Node, config: NodeConfig, ctx: ExecutionContext, services: NodeServices) -> NodeResult:
        return NodeResult(logs=[f"Workflow started ({node.type.value})"])


@register
class ConditionExecutor(NodeExecutor):
    node_types = (NodeType.CONDITION,)

    async def run(self, node: Node, config: ConditionConfig, ctx: ExecutionContext, services: NodeServices) -> NodeResult:
        variables = ctx.as_dict()
        if config.condition and config.condition.strip():
            description = config.condition
            result = evaluate(config.condition, variables)
        else:
            description = f"{config.field} {config.operator} {config.value!r}"
            try:
                result = EvaluationResult(
                    ok=True,
                    value=evaluate_rule(config.field, config.operator, config.value, variables),
                )
            except ValueError as e:
                result = EvaluationResult(ok=False, message=str(e))

        if not result.ok:
            message = f"Condition evaluation failed: {result.message}"
            if config.on_error == "error":
                return failure(message)
            passed = False
            logs = [f"{message}; taking false branch"]
        else:
            passed = bool(result.value)
            logs = [f"Condition '{description}' evaluated to {passed}"]

        ctx.set(CONDITION_RESULT_KEY, passed)
        return NodeResult(outcome=Outcome.TRUE if passed else Outcome.FALSE, logs=logs)


@register
class FilterExecutor(NodeExecutor):
    node_types = (NodeType.FILTER,)

    async def run(self, node: Node, config: FilterConfig, ctx: ExecutionContext, services: NodeServices) -> NodeResult:
        variables = ctx.as_dict()
        variables["item"] = ctx.get("item") if "item" in ctx else ctx.as_dict()

        result = evaluate(config.filter_condition, variables)
        if not result.ok:
            return NodeResult(
                outcome=Outcome.STOP,
                logs=[f"Filter condition error: {result.message}; stopping"],
            )
        if not result.value:
            return NodeResult(
                outcome=Outcome.STOP,
                logs=[f"Filter '{config.filter_condition}' did not match; stopping"],
            )
        return NodeResult(logs=[f"Filter '{config.filter_condition}' passed"])


@register
class SetExecutor(NodeExecutor):
    node_types = (NodeType.SET,)

    async def run(self, node: Node, config: SetConfig, ctx: ExecutionContext, services: NodeServices) -> NodeResult:
        values = render_value(config.set_variables, ctx.as_dict())
        ctx.update(values)
        return NodeResult(logs=[f"Set variables: {', '.join(values) or '(none)'}"])


@register
class DelayExecutor(NodeExecutor):
    node_types = (NodeType.DELAY,)

    async def run(self, node: Node, config: DelayConfig, ctx: ExecutionContext, services: NodeServices) -> NodeResult:
        if config.delay_hours == 0:
            return NodeResult(logs=["Delay of 0h, continuing"])
        return NodeResult(
            delay_hours=config.delay_hours,
            logs=[f"Waiting {config.delay_hours:g}h before continuing"],
        )


@register
class MergeExecutor(NodeExecutor):
    node_types = (NodeType.MERGE,)

    async def run(self, node: Node, config: MergeConfig, ctx: ExecutionContext, services: NodeServices) -> NodeResult:
        missing = [n for n in config.required_nodes if not ctx.is_completed(n)]
        if missing:
            return failure(f"Merge is missing completed predecessors: {', '.join(missing)}")
        return NodeResult(logs=["Branches merged"])


@register
class SplitInBatchesExecutor(NodeExecutor):
    node_types = (NodeType.SPLIT_IN_BATCHES,)

    async def run(
        self, node: Node, config: SplitInBatchesConfig, ctx: ExecutionContext, services: NodeServices
    ) -> NodeResult:
        state_key = f"{LOOP_STATE_PREFIX}{node.id}"
        state = ctx.get(state_key)

        if state is None:
            items = ctx.get(config.items_key)
            if items is None:
                items = []
            if not isinstance(items, (list, tuple)):
                return failure(
                    f"splitInBatches expects a list at '{config.items_key}', got {type(items).__name__}"
                )
            state = {"items": list(items), "offset": 0}

        items = state["items"]
        offset = state["offset"]
        total = math.ceil(len(items) / config.batch_size)

        if offset >= len(items):
            for key in (state_key, LOOP_INDEX_KEY, LOOP_TOTAL_KEY):
                ctx.pop(key)
            return NodeResult(logs=[f"Processed {total} batch(es) of '{config.items_key}'"])

        batch = items[offset:offset + config.batch_size]
        index = offset // config.batch_size
        ctx.set(config.output_key, batch)
        if config.batch_size == 1:
            ctx.set("item", batch[0])
        ctx.set(LOOP_INDEX_KEY, index)
        ctx.set(LOOP_TOTAL_KEY, total)
        ctx.set(state_key, {"items": items, "offset": offset + config.batch_size})
        return NodeResult(outcome=Outcome.LOOP, logs=[f"Batch {index + 1}/{total}"])
