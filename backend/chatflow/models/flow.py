# /chatflow/models/flow.py

from enum import Enum
from datetime import datetime
from typing import Optional, List, Any, Literal, Union
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from chatflow.models.conditions import ConditionsConfig


NodeType = Literal[
    "message", "ai", "function", "condition", "input", "webhook",
    "delay", "end", "template", "notify_agents", "update_contact",
]

EdgeConditionType = Literal["always", "condition", "intent", "keyword", "user_input", "wait_user_reply"]


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)


# ---------------- Condition nodes ---------------- #

class Branch(_FrozenModel):
    """One labeled outcome of a condition node."""
    name: str = Field(..., min_length=1, description="Branch name, e.g. 'all_conditions_met'")
    conditions_met: bool = Field(..., description="Taken when the node's conditions evaluate to this value")
    next_node: str = Field(..., min_length=1, description="node_id of the next node")
    message: Optional[str] = Field(default=None, description="Optional message sent when the branch is taken")


class ConditionNodeConfig(_FrozenModel):
    conditions: ConditionsConfig = Field(default_factory=ConditionsConfig)
    branches: List[Branch] = Field(..., min_length=1)
    default_branch: str = Field(..., min_length=1, description="Name of the branch taken when nothing matches")

    @model_validator(mode="after")
    def default_branch_must_exist(self):
        if self.get_branch(self.default_branch) is None:
            raise ValueError(f"default_branch '{self.default_branch}' is not one of the configured branches")
        return self

    def get_branch(self, name: str) -> Optional[Branch]:
        for branch in self.branches:
            if branch.name == name:
                return branch
        return None


# ---------------- Delay nodes ---------------- #

class TimingMode(str, Enum):
    FIXED_DELAY = "fixed_delay"
    DELAY_FROM_LAST_MESSAGE = "delay_from_last_message"
    ABSOLUTE_DATE = "absolute_date"


class ScheduledAction(_FrozenModel):
    """What happens when a non-blocking delay fires."""
    type: Literal["continue_flow", "message", "restart_flow"] = "continue_flow"
    content: Optional[str] = Field(default=None, description="Message text for type 'message'; may hold {{...}} placeholders")
    restart_from_node: Optional[str] = Field(default=None, description="node_id for type 'restart_flow'")

    @model_validator(mode="after")
    def check_payload_for_type(self):
        if self.type == "message" and not self.content:
            raise ValueError("scheduled action 'message' requires 'content'")
        if self.type == "restart_flow" and not self.restart_from_node:
            raise ValueError("scheduled action 'restart_flow' requires 'restart_from_node'")
        return self


class DelayConfig(_FrozenModel):
    seconds: int = Field(default=1, ge=0, validation_alias=AliasChoices("seconds", "delay_seconds"))
    blocking: bool = Field(default=True, description="Suspend the flow in place instead of continuing immediately")
    timing_mode: TimingMode = TimingMode.FIXED_DELAY
    reset_on_user_response: bool = False
    cancel_on_user_response: bool = False
    execute_at: Union[datetime, int, str, None] = Field(
        default=None, description="ISO-8601 datetime, epoch seconds or {{context.var}} reference"
    )
    timezone: str = Field(default="UTC", description="Timezone used for naive execute_at values")
    scheduled_action: ScheduledAction = Field(default_factory=ScheduledAction)

    @field_validator("execute_at", mode="before")
    @classmethod
    def blank_execute_at_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def absolute_date_needs_execute_at(self):
        if self.timing_mode == TimingMode.ABSOLUTE_DATE and self.execute_at is None:
            raise ValueError("timing_mode 'absolute_date' requires 'execute_at'")
        return self


NODE_CONFIG_SCHEMAS = {
    "condition": ConditionNodeConfig,
    "delay": DelayConfig,
}


class FlowNode(_FrozenModel):
    """
    A step of a flow. Condition and delay nodes get a typed config; the other
    node types are executed by the host and keep their raw config.
    """
    node_id: str = Field(..., min_length=1)
    node_type: NodeType
    config: Any = Field(default_factory=dict, description="ConditionNodeConfig, DelayConfig or the raw dict of a host-executed node")
    label: Optional[str] = None
    is_entry_node: bool = False

    @model_validator(mode="before")
    @classmethod
    def parse_config_for_node_type(cls, data):
        if isinstance(data, dict):
            schema = NODE_CONFIG_SCHEMAS.get(data.get("node_type"))
            config = data.get("config") or {}
            if schema is not None and not isinstance(config, schema):
                data = {**data, "config": schema.model_validate(config)}
        return data

    @model_validator(mode="after")
    def config_matches_node_type(self):
        schema = NODE_CONFIG_SCHEMAS.get(self.node_type)
        if schema is not None and not isinstance(self.config, schema):
            raise ValueError(f"config of a {self.node_type} node must be a {schema.__name__}")
        if schema is None and not isinstance(self.config, dict):
            raise ValueError(f"config of a {self.node_type} node must be a mapping")
        return self


# ---------------- Edges ---------------- #

class AlwaysEdgeConfig(_FrozenModel):
    pass


class ConditionEdgeConfig(_FrozenModel):
    conditions: ConditionsConfig = Field(default_factory=ConditionsConfig)


class KeywordEdgeConfig(_FrozenModel):
    keywords: List[str] = Field(default_factory=list)

    @field_validator("keywords", mode="before")
    @classmethod
    def split_comma_separated(cls, v):
        if isinstance(v, str):
            return [k.strip() for k in v.split(",") if k.strip()]
        return v


class IntentEdgeConfig(_FrozenModel):
    intent_name: str = Field(..., min_length=1, validation_alias=AliasChoices("intent_name", "intent"))
    confidence_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class UserInputEdgeConfig(_FrozenModel):
    expected_input: str = ""


class WaitUserReplyEdgeConfig(_FrozenModel):
    pass


EDGE_CONFIG_SCHEMAS = {
    "always": AlwaysEdgeConfig,
    "condition": ConditionEdgeConfig,
    "keyword": KeywordEdgeConfig,
    "intent": IntentEdgeConfig,
    "user_input": UserInputEdgeConfig,
    "wait_user_reply": WaitUserReplyEdgeConfig,
}

EdgeConfig = Union[
    AlwaysEdgeConfig, ConditionEdgeConfig, KeywordEdgeConfig,
    IntentEdgeConfig, UserInputEdgeConfig, WaitUserReplyEdgeConfig,
]


class FlowEdge(_FrozenModel):
    """A conditionally traversable connection between two nodes."""
    edge_id: str = Field(..., validation_alias=AliasChoices("edge_id", "id"))
    source: str = Field(..., validation_alias=AliasChoices("source", "source_node"))
    target: str = Field(..., validation_alias=AliasChoices("target", "target_node"))
    condition_type: EdgeConditionType = "always"
    condition_config: EdgeConfig = Field(default_factory=AlwaysEdgeConfig)
    label: Optional[str] = None
    priority: int = 0

    @model_validator(mode="before")
    @classmethod
    def parse_config_for_condition_type(cls, data):
        if isinstance(data, dict):
            schema = EDGE_CONFIG_SCHEMAS.get(data.get("condition_type") or "always")
            config = data.get("condition_config") or {}
            if schema is not None and not isinstance(config, schema):
                data = {**data, "condition_config": schema.model_validate(config)}
        return data

    @field_validator("priority", mode="before")
    @classmethod
    def none_priority_is_zero(cls, v):
        return 0 if v is None else v
