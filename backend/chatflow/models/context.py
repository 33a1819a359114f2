# /chatflow/models/context.py

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, FrozenSet
from pydantic import BaseModel, ConfigDict, Field, field_validator


class FunctionCall(BaseModel):
    """A tool/function invocation recorded during the conversation."""
    name: str = Field(..., description="Function name as configured on the function node")
    called_at: datetime = Field(..., description="When the function was called")

    model_config = ConfigDict(frozen=True)


class DetectedIntent(BaseModel):
    """Output of the upstream intent classifier for the latest user message."""
    name: str = Field(..., description="Intent name, e.g. 'confirm'")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0, description="Classifier confidence")

    model_config = ConfigDict(frozen=True)


class ExecutionContext(BaseModel):
    """
    Read-only snapshot a flow decision is evaluated against.

    Built fresh by the host for every inbound conversation event and discarded
    once the decision is produced.
    """
    contact: Dict[str, Any] = Field(default_factory=dict, description="Contact record (name, phone_number, blocked, custom_attributes, ...)")
    context_variables: Dict[str, Any] = Field(default_factory=dict, description="Flow execution variables")
    last_user_message: str = Field(default="", description="Text of the latest inbound user message")
    visited_nodes: FrozenSet[str] = Field(default_factory=frozenset, description="Node ids already executed in this run")
    function_calls: List[FunctionCall] = Field(default_factory=list, description="Function calls in call order")
    now: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Evaluation time")
    conversation_meta: Dict[str, Any] = Field(default_factory=dict, description="Conversation metadata (message_count, duration_minutes, status)")
    detected_intent: Optional[DetectedIntent] = Field(default=None, description="Pre-computed intent of the last message")

    model_config = ConfigDict(frozen=True)

    @field_validator("now")
    @classmethod
    def assume_utc_for_naive_now(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("last_user_message", mode="before")
    @classmethod
    def none_message_is_empty(cls, v):
        return "" if v is None else v

    def was_called(self, function_name: str) -> bool:
        return any(call.name == function_name for call in self.function_calls)
