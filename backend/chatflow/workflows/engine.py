# /chatflow/workflows/engine.py

"""
Flow execution engine.

This module is the host-facing entry point of the flow core. Given a node, its
outgoing edges and an ExecutionContext it decides what happens next:

- Condition nodes resolve to one of their branches
- Delay nodes arm a timer; blocking delays suspend the conversation,
  non-blocking delays continue through their outgoing edges immediately
- Every other node leaves through its highest-priority matching edge
- A fired delay timer is turned back into a transition by resume()

The engine never guesses. Configuration errors come back as a
'misconfigured' result and an edge set with no match as 'no_transition';
what the user then sees is up to the host.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, TypedDict, Union

from chatflow.models.context import ExecutionContext
from chatflow.models.flow import FlowEdge, FlowNode
from chatflow.models.timer import DelayDecision, FireResult, TimerHandle, TimerUpdate
from chatflow.services.delay_scheduler import DelayScheduler
from chatflow.services.timer_service import TimerService, timer_service
from chatflow.utils.logging import flow_log_context
from chatflow.workflows.branches import BranchDecision, resolve_branch
from chatflow.workflows.edges import resolve_edge
from chatflow.workflows.exceptions import FlowMisconfiguredError

logger = logging.getLogger(__name__)


class EngineResult(TypedDict):
    """Result of asking the engine for the next step."""
    status: str  # next | waiting | scheduled | deliver | misconfigured | no_transition
    next_node: Optional[str]
    message: Optional[str]
    edge_id: Optional[str]
    due_at: Optional[datetime]
    timer_handle: Optional[TimerHandle]
    reason: Optional[str]


def _result(status: str, **fields) -> EngineResult:
    result: EngineResult = {
        "status": status,
        "next_node": None,
        "message": None,
        "edge_id": None,
        "due_at": None,
        "timer_handle": None,
        "reason": None,
    }
    result.update(fields)
    return result


class FlowEngine:
    def __init__(self, scheduler: Union[DelayScheduler, TimerService]):
        self.scheduler = scheduler

    # ---------------- Host contract ---------------- #

    def resolve_branch(self, node: FlowNode, context: ExecutionContext) -> BranchDecision:
        return resolve_branch(node, context)

    def resolve_edge(
        self,
        edges: Iterable[FlowEdge],
        context: ExecutionContext,
        awaiting_reply: bool = False
    ) -> Optional[FlowEdge]:
        return resolve_edge(edges, context, awaiting_reply)

    async def arm_delay(self, node: FlowNode, conversation_id: str, context: ExecutionContext) -> DelayDecision:
        return await self.scheduler.arm_delay(node, conversation_id, context)

    async def on_user_message(self, conversation_id: str, now: Optional[datetime] = None) -> List[TimerUpdate]:
        return await self.scheduler.on_user_message(conversation_id, now)

    async def on_timer_fire(self, handle: TimerHandle, now: Optional[datetime] = None) -> Optional[FireResult]:
        return await self.scheduler.on_timer_fire(handle, now)

    # ---------------- Step dispatch ---------------- #

    async def next_step(
        self,
        node: FlowNode,
        edges: Iterable[FlowEdge],
        context: ExecutionContext,
        conversation_id: Optional[str] = None,
        awaiting_reply: bool = False
    ) -> EngineResult:
        """
        Decide the transition out of ``node``.

        Args:
            node: The node the conversation is currently on
            edges: The node's outgoing edges
            context: The ExecutionContext snapshot
            conversation_id: Required for delay nodes
            awaiting_reply: True when resuming the node after a user reply

        Returns:
            EngineResult describing the decision
        """
        with flow_log_context(conversation_id=conversation_id, node_id=node.node_id):
            try:
                if node.node_type == "condition":
                    decision = resolve_branch(node, context)
                    return _result("next", next_node=decision["next_node"], message=decision["message"])

                if node.node_type == "delay":
                    return await self._delay_step(node, list(edges), context, conversation_id, awaiting_reply)

                return self._follow_edges(node.node_id, edges, context, awaiting_reply)

            except FlowMisconfiguredError as e:
                logger.error(f"Flow misconfigured at node '{node.node_id}': {e.reason}")
                return _result("misconfigured", reason=str(e))

    def resume(self, fired: FireResult, edges: Iterable[FlowEdge], context: ExecutionContext) -> EngineResult:
        """
        Turn a fired delay timer into the conversation's next step.

        The delay node is not entered again, so no new timer is armed.

        Args:
            fired: Result of on_timer_fire
            edges: Outgoing edges of the delay node that fired
            context: The ExecutionContext snapshot at fire time

        Returns:
            EngineResult: 'next' to the delay node's successor (continue_flow)
            or to restart_from_node (restart_flow); 'deliver' with the
            message to send (message); 'no_transition' when continue_flow
            finds no matching edge
        """
        handle = fired.handle
        with flow_log_context(conversation_id=handle.conversation_id, node_id=handle.node_id):
            if fired.action == "restart_flow":
                target = fired.payload["restart_from_node"]
                logger.info(f"Restarting flow at node '{target}'.")
                return _result("next", next_node=target)

            if fired.action == "message":
                return _result("deliver", message=fired.payload.get("content"))

            return self._follow_edges(handle.node_id, edges, context, awaiting_reply=False)

    def _follow_edges(
        self,
        node_id: str,
        edges: Iterable[FlowEdge],
        context: ExecutionContext,
        awaiting_reply: bool
    ) -> EngineResult:
        edge = resolve_edge(edges, context, awaiting_reply)
        if edge is None:
            logger.warning(f"No outgoing edge of node '{node_id}' matched.")
            return _result("no_transition", reason=f"no outgoing edge of node '{node_id}' matched")
        return _result("next", next_node=edge.target, edge_id=edge.edge_id)

    async def _delay_step(
        self,
        node: FlowNode,
        edges: List[FlowEdge],
        context: ExecutionContext,
        conversation_id: Optional[str],
        awaiting_reply: bool
    ) -> EngineResult:
        if not conversation_id:
            raise ValueError("conversation_id is required to enter a delay node")

        decision = await self.scheduler.arm_delay(node, conversation_id, context)
        timer_fields = {"due_at": decision.due_at, "timer_handle": decision.timer_handle}

        if decision.blocking:
            return _result("waiting", **timer_fields)

        if not edges:
            return _result("scheduled", **timer_fields)

        edge = resolve_edge(edges, context, awaiting_reply)
        if edge is None:
            return _result(
                "no_transition",
                reason=f"no outgoing edge of delay node '{node.node_id}' matched",
                **timer_fields
            )
        return _result("scheduled", next_node=edge.target, edge_id=edge.edge_id, **timer_fields)


# Globally accessible instance
flow_engine = FlowEngine(timer_service)
