# /chatflow/models/timer.py

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, Literal
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, Field

from chatflow.models.flow import ScheduledAction, TimingMode


class TimerState(str, Enum):
    PENDING = "pending"
    ARMED = "armed"
    FIRED = "fired"
    CANCELLED = "cancelled"


class TimerHandle(BaseModel):
    """Identifies one timer instance. A re-armed node gets a new timer_id."""
    conversation_id: str
    node_id: str
    timer_id: str = Field(default_factory=lambda: uuid4().hex)

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> tuple:
        return (self.conversation_id, self.node_id)

    @property
    def job_id(self) -> str:
        return f"delay:{self.conversation_id}:{self.node_id}"


class Timer(BaseModel):
    """
    A delay node instance owned by the DelayScheduler.

    Mutable: the scheduler resets `due_at` and moves `state` forward under the
    per-key lock. The scheduled action is stored with its templates already
    rendered against the context it was armed with.
    """
    handle: TimerHandle
    due_at: datetime
    mode: TimingMode
    blocking: bool = False
    seconds: int = 0
    reset_on_response: bool = False
    cancel_on_response: bool = False
    scheduled_action: ScheduledAction = Field(default_factory=ScheduledAction)
    state: TimerState = TimerState.PENDING
    armed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reset_count: int = 0

    @property
    def conversation_id(self) -> str:
        return self.handle.conversation_id

    @property
    def node_id(self) -> str:
        return self.handle.node_id

    @property
    def is_live(self) -> bool:
        return self.state in (TimerState.PENDING, TimerState.ARMED)


class DelayDecision(BaseModel):
    """Returned to the host when a delay node is entered."""
    blocking: bool
    due_at: Optional[datetime] = None
    timer_handle: Optional[TimerHandle] = None


class TimerUpdate(BaseModel):
    """A reset or cancellation caused by an inbound user message."""
    handle: TimerHandle
    transition: Literal["reset", "cancelled"]
    due_at: Optional[datetime] = None


class FireResult(BaseModel):
    """The scheduled action a fired timer asks the host to perform."""
    action: Literal["continue_flow", "message", "restart_flow"]
    payload: Dict[str, Any] = Field(default_factory=dict)
    handle: TimerHandle
