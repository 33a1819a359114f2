# /chatflow/services/delay_scheduler.py

"""
Delay node state machine.

Every (conversation_id, node_id) pair owns at most one live timer:

    PENDING (blocking)  --------------------------------> FIRED
    ARMED (non-blocking) --(user message, reset)--> ARMED --> FIRED
                         --(user message, cancel)--> CANCELLED

All mutations of one pair run under that pair's asyncio.Lock, so a user
message that resets or cancels a timer cannot interleave with the same timer
firing: whichever gets the lock second observes a no-op. Re-arming a pair
replaces its timer with a new timer_id, which makes fires for the old handle
stale.

The scheduler never sleeps. The host (or TimerService) decides when to call
on_timer_fire; a call before due_at is ignored.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from chatflow.models.context import ExecutionContext
from chatflow.models.flow import DelayConfig, FlowNode, ScheduledAction, TimingMode
from chatflow.models.timer import (
    DelayDecision,
    FireResult,
    Timer,
    TimerHandle,
    TimerState,
    TimerUpdate,
)
from chatflow.utils.metrics import active_timers_gauge, timer_transitions_counter
from chatflow.workflows.context_access import (
    is_single_placeholder,
    render_template,
    resolve_single_placeholder,
)
from chatflow.workflows.exceptions import FlowMisconfiguredError

logger = logging.getLogger(__name__)

TimerKey = Tuple[str, str]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_execute_at(value: Any, tz_name: str) -> datetime:
    """
    Interpret an already-resolved execute_at value as an aware UTC datetime.
    Naive values are taken to be wall-clock time in ``tz_name``.

    Raises:
        ValueError: the value is not a date/time or the timezone is unknown
    """
    try:
        tz = ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"unknown timezone '{tz_name}'")

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"execute_at resolved to {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(timezone.utc)


def compute_due_at(config: DelayConfig, context: ExecutionContext) -> datetime:
    """
    Due time of a delay node entered at ``context.now``.

    fixed_delay and delay_from_last_message start counting now; absolute_date
    resolves execute_at (literal or {{...}} reference) once, here.
    """
    now = _as_utc(context.now)
    if config.timing_mode != TimingMode.ABSOLUTE_DATE:
        return now + timedelta(seconds=config.seconds)

    raw = config.execute_at
    if is_single_placeholder(raw):
        value = resolve_single_placeholder(raw, context)
    else:
        value = render_template(raw, context)
    tz_name = render_template(config.timezone, context) or "UTC"
    return parse_execute_at(value, tz_name)


def _render_action(action: ScheduledAction, context: ExecutionContext) -> ScheduledAction:
    if action.content is None:
        return action
    return action.model_copy(update={"content": render_template(action.content, context)})


class DelayScheduler:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or _utc_now
        self._timers: Dict[TimerKey, Timer] = {}
        self._locks: Dict[TimerKey, asyncio.Lock] = {}
        logger.info("DelayScheduler initialized.")

    def _now(self, now: Optional[datetime]) -> datetime:
        return _as_utc(now if now is not None else self._clock())

    @asynccontextmanager
    async def _locked(self, key: TimerKey):
        """Serialize every mutation of one (conversation, node) pair."""
        while True:
            lock = self._locks.setdefault(key, asyncio.Lock())
            await lock.acquire()
            # the lock may have been retired while we waited for it
            if self._locks.get(key) is lock:
                break
            lock.release()
        try:
            yield
        finally:
            if key not in self._timers:
                self._locks.pop(key, None)
            lock.release()
            active_timers_gauge.set(len(self._timers))

    def _destroy(self, timer: Timer, state: TimerState):
        timer.state = state
        self._timers.pop(timer.handle.key, None)
        timer_transitions_counter.labels(transition=state.value).inc()

    # ---------------- Host contract ---------------- #

    async def arm_delay(self, node: FlowNode, conversation_id: str, context: ExecutionContext) -> DelayDecision:
        """
        Enter a delay node.

        A blocking delay creates a PENDING timer: the host suspends the
        conversation and calls on_timer_fire once due_at has passed. A
        non-blocking delay creates an ARMED timer and the flow continues
        immediately. Arming a pair that already has a live timer replaces it.

        Raises:
            FlowMisconfiguredError: not a delay node, or the due time cannot be
            computed (unparsable execute_at, unknown timezone)
        """
        config = node.config
        if node.node_type != "delay" or not isinstance(config, DelayConfig):
            raise FlowMisconfiguredError("arm_delay requires a delay node", node_id=node.node_id)

        try:
            due_at = compute_due_at(config, context)
        except (ValueError, OverflowError, OSError) as e:
            logger.error(f"Cannot schedule delay node '{node.node_id}' for conversation {conversation_id}: {e}")
            raise FlowMisconfiguredError(f"cannot compute due time: {e}", node_id=node.node_id) from e

        handle = TimerHandle(conversation_id=conversation_id, node_id=node.node_id)
        timer = Timer(
            handle=handle,
            due_at=due_at,
            mode=config.timing_mode,
            blocking=config.blocking,
            seconds=config.seconds,
            reset_on_response=config.reset_on_user_response,
            cancel_on_response=config.cancel_on_user_response,
            scheduled_action=_render_action(config.scheduled_action, context),
            state=TimerState.PENDING if config.blocking else TimerState.ARMED,
            armed_at=_as_utc(context.now),
        )

        async with self._locked(handle.key):
            previous = self._timers.get(handle.key)
            if previous is not None:
                logger.info(f"Replacing {previous.state.value} timer {previous.handle.timer_id} for {handle.key}.")
                timer_transitions_counter.labels(transition="replaced").inc()
            self._timers[handle.key] = timer
            timer_transitions_counter.labels(transition=timer.state.value).inc()

        logger.info(
            f"Delay node '{node.node_id}' for conversation {conversation_id}: "
            f"{timer.state.value}, mode={config.timing_mode.value}, due_at={due_at.isoformat()}"
        )
        return DelayDecision(blocking=config.blocking, due_at=due_at, timer_handle=handle)

    async def on_user_message(self, conversation_id: str, now: Optional[datetime] = None) -> List[TimerUpdate]:
        """
        Apply an inbound user message to the conversation's ARMED timers.

        Cancellation wins over reset when a timer has both flags. Resets only
        apply to delay_from_last_message timers; blocking (PENDING) timers are
        never touched.
        """
        now = self._now(now)
        updates: List[TimerUpdate] = []

        keys = [key for key in list(self._timers) if key[0] == conversation_id]
        for key in keys:
            async with self._locked(key):
                timer = self._timers.get(key)
                if timer is None or timer.state != TimerState.ARMED:
                    continue

                if timer.cancel_on_response:
                    self._destroy(timer, TimerState.CANCELLED)
                    logger.info(f"Timer {timer.handle.timer_id} for {key} cancelled by user response.")
                    updates.append(TimerUpdate(handle=timer.handle, transition="cancelled"))
                elif timer.reset_on_response and timer.mode == TimingMode.DELAY_FROM_LAST_MESSAGE:
                    timer.due_at = now + timedelta(seconds=timer.seconds)
                    timer.reset_count += 1
                    timer_transitions_counter.labels(transition="reset").inc()
                    logger.info(f"Timer {timer.handle.timer_id} for {key} reset; due_at={timer.due_at.isoformat()}")
                    updates.append(TimerUpdate(handle=timer.handle, transition="reset", due_at=timer.due_at))

        return updates

    async def on_timer_fire(self, handle: TimerHandle, now: Optional[datetime] = None) -> Optional[FireResult]:
        """
        Fire a timer and return its scheduled action.

        Returns None, without side effects, when the handle is stale (timer
        replaced, cancelled or already fired) or the timer is not due yet
        (e.g. a job scheduled before the last reset).
        """
        now = self._now(now)

        async with self._locked(handle.key):
            timer = self._timers.get(handle.key)
            if timer is None or timer.handle.timer_id != handle.timer_id:
                logger.debug(f"Ignoring fire for stale timer {handle.timer_id} of {handle.key}.")
                return None
            if now < timer.due_at:
                logger.debug(f"Timer {handle.timer_id} of {handle.key} not due until {timer.due_at.isoformat()}.")
                return None

            self._destroy(timer, TimerState.FIRED)

        action = timer.scheduled_action
        if action.type == "message":
            payload = {"content": action.content, "node_id": timer.node_id}
        elif action.type == "restart_flow":
            payload = {"restart_from_node": action.restart_from_node}
        else:
            # the host resumes by resolving this node's outgoing edges
            payload = {"node_id": timer.node_id, "blocking": timer.blocking}

        logger.info(f"Timer {handle.timer_id} for {handle.key} fired: {action.type}")
        return FireResult(action=action.type, payload=payload, handle=handle)

    async def cancel(self, conversation_id: str, node_id: Optional[str] = None) -> List[TimerHandle]:
        """Host-driven cancellation, e.g. when a conversation is closed or its flow deleted."""
        cancelled: List[TimerHandle] = []
        keys = [
            key for key in list(self._timers)
            if key[0] == conversation_id and (node_id is None or key[1] == node_id)
        ]
        for key in keys:
            async with self._locked(key):
                timer = self._timers.get(key)
                if timer is None:
                    continue
                self._destroy(timer, TimerState.CANCELLED)
                cancelled.append(timer.handle)
        if cancelled:
            logger.info(f"Cancelled {len(cancelled)} timer(s) for conversation {conversation_id}.")
        return cancelled

    # ---------------- Inspection ---------------- #

    def get_timer(self, conversation_id: str, node_id: str) -> Optional[Timer]:
        timer = self._timers.get((conversation_id, node_id))
        return timer.model_copy(deep=True) if timer is not None else None

    def active_timers(self, conversation_id: Optional[str] = None) -> List[Timer]:
        return [
            timer.model_copy(deep=True) for key, timer in list(self._timers.items())
            if conversation_id is None or key[0] == conversation_id
        ]

    def due_timers(self, now: Optional[datetime] = None) -> List[TimerHandle]:
        """Handles of live timers whose due time has passed, for hosts that poll."""
        now = self._now(now)
        return [timer.handle for timer in list(self._timers.values()) if timer.due_at <= now]


# Globally accessible instance
delay_scheduler = DelayScheduler()
