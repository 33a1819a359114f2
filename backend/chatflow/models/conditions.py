# /chatflow/models/conditions.py

"""
Condition rule models.

Stored flows keep every rule as one flat record with optional fields keyed by
``type``. Here each ``type`` is its own model carrying only the fields it may
legally use, and ``ConditionRule`` is the discriminated union of all of them.
Fields that belong to another rule type are dropped on load. Rules saved before
their field or path was picked still load; they read an absent value.
"""

from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class Operator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_EQUAL = "greater_equal"
    LESS_EQUAL = "less_equal"
    IS_EMPTY = "is_empty"
    NOT_EMPTY = "not_empty"
    IN_LIST = "in_list"
    NOT_IN_LIST = "not_in_list"
    MATCHES_REGEX = "matches_regex"


class _RuleBase(BaseModel):
    id: Optional[str] = Field(default=None, description="Rule identifier from the editor")

    model_config = ConfigDict(frozen=True, extra="ignore")


class _ValueRule(_RuleBase):
    operator: Operator = Field(default=Operator.EQUALS, description="Comparison operator")
    value: Any = Field(default=None, description="Expected value")
    case_sensitive: bool = Field(default=True, description="Case-fold both sides when False")


class ContactRule(_ValueRule):
    """Compares a contact field, or a dot path inside its JSON attributes."""
    type: Literal["contact"] = "contact"
    field: Optional[str] = Field(default=None, description="Contact field, e.g. 'blocked'")
    variable_path: Optional[str] = Field(default=None, description="e.g. 'custom_attributes.category'")


class ConversationRule(_ValueRule):
    """Compares conversation metadata such as message_count or status."""
    type: Literal["conversation"] = "conversation"
    field: Optional[str] = Field(default=None, description="message_count, duration_minutes, status")
    variable_path: Optional[str] = Field(default=None, description="Dot path for nested metadata")


class ContextVariableRule(_ValueRule):
    type: Literal["context_variable"] = "context_variable"
    variable_path: Optional[str] = Field(default=None, description="Dot path into context variables, e.g. 'user.age'")


class UserInputRule(_ValueRule):
    type: Literal["user_input"] = "user_input"


class IntentRule(_RuleBase):
    type: Literal["intent"] = "intent"
    intent_name: str = Field(..., min_length=1)
    confidence_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="Defaults to the configured threshold")


class TimeConditionRule(_RuleBase):
    type: Literal["time_condition"] = "time_condition"
    operator: Literal["between", "after", "before"] = "between"
    start_time: Optional[str] = Field(default=None, description="HH:MM for 'between'")
    end_time: Optional[str] = Field(default=None, description="HH:MM for 'between'")
    value: Optional[str] = Field(default=None, description="HH:MM for 'after' / 'before'")
    timezone: Optional[str] = Field(default=None, description="IANA timezone, defaults to UTC")


class RegexRule(_RuleBase):
    type: Literal["regex"] = "regex"
    pattern: str = Field(..., description="Regular expression searched in the target")
    target: str = Field(default="last_user_message")
    case_sensitive: bool = True


class PreviousNodeRule(_RuleBase):
    type: Literal["previous_node"] = "previous_node"
    node_id: str = Field(..., min_length=1)
    visited: bool = True


class FunctionCallRule(_RuleBase):
    type: Literal["function_call"] = "function_call"
    function_name: str = Field(..., min_length=1)
    operator: Literal["called", "not_called"] = "called"


ConditionRule = Annotated[
    Union[
        ContactRule,
        ContextVariableRule,
        UserInputRule,
        IntentRule,
        TimeConditionRule,
        RegexRule,
        PreviousNodeRule,
        ConversationRule,
        FunctionCallRule,
    ],
    Field(discriminator="type"),
]

condition_rule_adapter = TypeAdapter(ConditionRule)


class ConditionsConfig(BaseModel):
    """An ordered list of rules joined by AND or OR."""
    operator: Literal["AND", "OR"] = Field(default="AND", description="How rule results are combined")
    rules: List[ConditionRule] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @field_validator("operator", mode="before")
    @classmethod
    def uppercase_operator(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v
