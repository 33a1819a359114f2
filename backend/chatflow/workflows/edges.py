# /chatflow/workflows/edges.py

"""
Edge resolution for nodes that exit through plain graph edges.

Edges are tried in descending priority; edges with equal priority keep their
declaration order. The first edge whose classifier matches wins. None means no
viable transition, which the engine reports instead of picking an edge.
"""

import logging
from typing import Callable, Dict, Iterable, Optional

from chatflow.config.settings import settings
from chatflow.models.context import ExecutionContext
from chatflow.models.flow import (
    ConditionEdgeConfig,
    FlowEdge,
    IntentEdgeConfig,
    KeywordEdgeConfig,
    UserInputEdgeConfig,
)
from chatflow.utils.metrics import edge_resolutions_counter
from chatflow.workflows.conditions import evaluate_conditions

logger = logging.getLogger(__name__)


def order_edges(edges: Iterable[FlowEdge]) -> list:
    # sorted() is stable, so equal priorities keep declaration order
    return sorted(edges, key=lambda edge: edge.priority, reverse=True)


def _match_always(edge: FlowEdge, context: ExecutionContext, awaiting_reply: bool) -> bool:
    return True


def _match_condition(edge: FlowEdge, context: ExecutionContext, awaiting_reply: bool) -> bool:
    config: ConditionEdgeConfig = edge.condition_config
    return evaluate_conditions(config.conditions, context)


def _match_keyword(edge: FlowEdge, context: ExecutionContext, awaiting_reply: bool) -> bool:
    config: KeywordEdgeConfig = edge.condition_config
    message = (context.last_user_message or "").casefold()
    if not message:
        return False
    return any(keyword.strip() and keyword.strip().casefold() in message for keyword in config.keywords)


def _match_intent(edge: FlowEdge, context: ExecutionContext, awaiting_reply: bool) -> bool:
    config: IntentEdgeConfig = edge.condition_config
    detected = context.detected_intent
    if detected is None:
        return False
    threshold = config.confidence_threshold
    if threshold is None:
        threshold = settings.default_confidence_threshold
    return detected.name == config.intent_name and detected.confidence >= threshold


def _match_user_input(edge: FlowEdge, context: ExecutionContext, awaiting_reply: bool) -> bool:
    config: UserInputEdgeConfig = edge.condition_config
    user_input = (context.last_user_message or "").strip()
    expected = config.expected_input.strip()
    if not expected:
        return bool(user_input)
    return user_input == expected


def _match_wait_user_reply(edge: FlowEdge, context: ExecutionContext, awaiting_reply: bool) -> bool:
    return awaiting_reply


EDGE_MATCHERS: Dict[str, Callable[[FlowEdge, ExecutionContext, bool], bool]] = {
    "always": _match_always,
    "condition": _match_condition,
    "keyword": _match_keyword,
    "intent": _match_intent,
    "user_input": _match_user_input,
    "wait_user_reply": _match_wait_user_reply,
}


def edge_matches(edge: FlowEdge, context: ExecutionContext, awaiting_reply: bool = False) -> bool:
    matcher = EDGE_MATCHERS.get(edge.condition_type)
    if matcher is None:
        logger.error(f"Edge '{edge.edge_id}' has unknown condition_type '{edge.condition_type}'.")
        return False
    try:
        return bool(matcher(edge, context, awaiting_reply))
    except Exception as e:
        logger.warning(f"Edge '{edge.edge_id}' ({edge.condition_type}) treated as no match after error: {e}")
        return False


def resolve_edge(
    edges: Iterable[FlowEdge],
    context: ExecutionContext,
    awaiting_reply: bool = False
) -> Optional[FlowEdge]:
    """
    Pick the outgoing edge to follow.

    Args:
        edges: Outgoing edges of the current node
        context: The ExecutionContext snapshot
        awaiting_reply: True when the host resumes the node after a user reply;
            only then can 'wait_user_reply' edges match

    Returns:
        The first matching edge in priority order, or None
    """
    for edge in order_edges(edges):
        if edge_matches(edge, context, awaiting_reply):
            logger.debug(f"Edge '{edge.edge_id}' ({edge.condition_type}, priority {edge.priority}) matched.")
            edge_resolutions_counter.labels(outcome=edge.condition_type).inc()
            return edge

    edge_resolutions_counter.labels(outcome="none").inc()
    return None
