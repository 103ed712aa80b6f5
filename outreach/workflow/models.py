# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow Models

Pydantic models for workflow definitions, typed node configs, execution logs,
triggers and delay continuations. JSON uses camelCase field names; snake_case
names are accepted when constructing models in Python.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Any, Optional, Literal, Type

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model: camelCase aliases, snake_case population"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Node types and outcomes
# ============================================================================

class NodeType(str, Enum):
    START = "start"
    TRIGGER = "trigger"
    SCHEDULE = "schedule"
    CONDITION = "condition"
    FILTER = "filter"
    SET = "set"
    DELAY = "delay"
    WEBHOOK = "webhook"
    API_REQUEST = "apiRequest"
    GEMINI = "gemini"
    AI = "ai"
    EMAIL = "email"
    TEMPLATE = "template"  # legacy builder name for email
    SOCIAL_POST = "social-post"
    MERGE = "merge"
    SPLIT_IN_BATCHES = "splitInBatches"


ENTRY_NODE_TYPES = {NodeType.START, NodeType.TRIGGER, NodeType.SCHEDULE}


class Outcome(str, Enum):
    """Discriminator a node executor returns to select the next edge"""
    DEFAULT = "default"
    TRUE = "true"
    FALSE = "false"
    STOP = "stop"
    ERROR = "error"
    LOOP = "loop"  # splitInBatches: another batch is ready


# Edge labels that count as the default (unlabeled) transition
DEFAULT_LABELS = {"", "default", "done"}


# ============================================================================
# Typed node configs
# ============================================================================

class NodeConfig(CamelModel):
    """Base for node-type-specific parameters; unknown keys are kept"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class EntryConfig(NodeConfig):
    pass


class ConditionConfig(NodeConfig):
    condition: Optional[str] = None
    # Structured rule form from the visual builder
    field: Optional[str] = None
    operator: str = "equals"
    value: Any = None
    on_error: Literal["false", "error"] = "false"

    @model_validator(mode="after")
    def _require_expression_or_rule(self):
        if not (self.condition and self.condition.strip()) and not self.field:
            raise ValueError("condition node requires 'condition' or 'field'")
        return self


class FilterConfig(NodeConfig):
    filter_condition: str

    @field_validator("filter_condition")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("filterCondition must not be empty")
        return v


class SetConfig(NodeConfig):
    set_variables: Dict[str, Any] = {}


class DelayConfig(NodeConfig):
    delay_hours: float = Field(default=24.0, ge=0)


class WebhookConfig(NodeConfig):
    url: Optional[str] = None  # no url: webhook trigger (entry node)
    method: str = "POST"
    headers: Dict[str, str] = {}
    body: Any = None
    response_key: str = "apiResponse"

    @field_validator("method")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()


class AIConfig(NodeConfig):
    prompt: str = Field(validation_alias=AliasChoices("prompt", "aiPrompt"))
    output_key: str = "aiContent"
    model: Optional[str] = None

    @field_validator("prompt")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("AI prompt must not be empty")
        return v


class EmailConfig(NodeConfig):
    template_id: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None


SocialPlatform = Literal["facebook", "instagram", "linkedin", "twitter", "youtube"]


class SocialPostConfig(NodeConfig):
    platform: SocialPlatform
    content: str
    account_id: Optional[str] = None
    media_url: Optional[str] = None


class MergeConfig(NodeConfig):
    required_nodes: List[str] = []


class SplitInBatchesConfig(NodeConfig):
    items_key: str = "items"
    batch_size: int = Field(default=1, ge=1)
    output_key: str = "batch"


NODE_CONFIG_MODELS: Dict[NodeType, Type[NodeConfig]] = {
    NodeType.START: EntryConfig,
    NodeType.TRIGGER: EntryConfig,
    NodeType.SCHEDULE: EntryConfig,
    NodeType.CONDITION: ConditionConfig,
    NodeType.FILTER: FilterConfig,
    NodeType.SET: SetConfig,
    NodeType.DELAY: DelayConfig,
    NodeType.WEBHOOK: WebhookConfig,
    NodeType.API_REQUEST: WebhookConfig,
    NodeType.GEMINI: AIConfig,
    NodeType.AI: AIConfig,
    NodeType.EMAIL: EmailConfig,
    NodeType.TEMPLATE: EmailConfig,
    NodeType.SOCIAL_POST: SocialPostConfig,
    NodeType.MERGE: MergeConfig,
    NodeType.SPLIT_IN_BATCHES: SplitInBatchesConfig,
}


def check_config_models() -> None:
    """Fail at import time if a node type has no config model"""
    missing = [t.value for t in NodeType if t not in NODE_CONFIG_MODELS]
    if missing:
        raise RuntimeError(f"No config model for node types: {', '.join(missing)}")


check_config_models()


# ============================================================================
# Workflow Definition Models
# ============================================================================

class Node(CamelModel):
    """Single node in a workflow"""
    id: str
    type: NodeType
    label: Optional[str] = None
    config: Dict[str, Any] = {}

    @model_validator(mode="before")
    @classmethod
    def _unwrap_builder_shape(cls, data: Any) -> Any:
        # Builder payloads nest type/label/config under "data"
        if isinstance(data, dict) and "type" not in data and isinstance(data.get("data"), dict):
            inner = data["data"]
            data = {
                "id": data.get("id"),
                "type": inner.get("type"),
                "label": inner.get("label"),
                "config": inner.get("config") or {},
            }
        return data

    def parsed_config(self) -> NodeConfig:
        """Validate config against the node type's config model"""
        return NODE_CONFIG_MODELS[self.type].model_validate(self.config)

    @property
    def is_entry(self) -> bool:
        if self.type in ENTRY_NODE_TYPES:
            return True
        return self.type == NodeType.WEBHOOK and not self.config.get("url")


class Edge(CamelModel):
    """Directed, optionally labeled transition between nodes"""
    id: Optional[str] = None
    source: str
    target: str
    label: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _label_from_handle(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("label") and data.get("sourceHandle"):
            data = {**data, "label": data["sourceHandle"]}
        return data

    def matches(self, outcome: str) -> bool:
        label = (self.label or "").strip().lower()
        if outcome == Outcome.DEFAULT.value:
            return label in DEFAULT_LABELS
        return label == outcome


VariableType = Literal["string", "number", "boolean", "object", "array"]


class WorkflowDefinition(CamelModel):
    """Complete workflow definition; read-only to the engine"""
    id: str
    user_id: str
    name: str
    nodes: List[Node]
    edges: List[Edge] = []
    is_active: bool = True
    target_business_type: Optional[str] = None
    keywords: List[str] = []
    timezone: str = "UTC"
    variable_schema: Dict[str, VariableType] = {}


# ============================================================================
# Execution Models
# ============================================================================

class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    STOPPED = "stopped"


TERMINAL_STATUSES = {ExecutionStatus.SUCCESS, ExecutionStatus.FAILED, ExecutionStatus.STOPPED}


class ExecutionLog(CamelModel):
    """Audit record of one workflow run"""
    id: str
    workflow_id: str
    user_id: str
    business_id: Optional[str] = None
    trigger_id: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    logs: List[str] = []
    error: Optional[str] = None
    error_node_id: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_finalized(self) -> bool:
        return self.completed_at is not None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


class Trigger(CamelModel):
    """Scheduled or event-driven cause for a workflow to start"""
    id: str
    workflow_id: str
    user_id: str
    trigger_type: str = "schedule"  # schedule | new_business | delay_completion | manual
    config: Dict[str, Any] = {}
    next_run_at: datetime
    last_run_at: Optional[datetime] = None
    is_active: bool = True


class Continuation(CamelModel):
    """Saved walker state for resuming a run after a delay node"""
    execution_id: str
    workflow_id: str
    user_id: str
    business_id: Optional[str] = None
    trigger_id: Optional[str] = None
    node_id: str
    context: Dict[str, Any] = {}  # ExecutionContext.snapshot()
    resume_at: datetime


class NodeResult(BaseModel):
    """What a node executor hands back to the walker"""
    outcome: Outcome = Outcome.DEFAULT
    logs: List[str] = []
    error: Optional[str] = None
    delay_hours: Optional[float] = None  # set by delay nodes to suspend the run
