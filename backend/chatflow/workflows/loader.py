# /chatflow/workflows/loader.py

"""
Turns persisted node and edge records into validated models.

Schema violations (unknown node, rule or edge type, missing default branch,
absolute_date delay without execute_at, ...) surface as FlowMisconfiguredError
at load time, never at evaluation time.
"""

import logging
from typing import Any, Dict, Iterable, List, Tuple

from pydantic import ValidationError

from chatflow.models.flow import FlowEdge, FlowNode
from chatflow.workflows.exceptions import FlowMisconfiguredError

logger = logging.getLogger(__name__)


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "; ".join(parts)


def load_node(record: Dict[str, Any]) -> FlowNode:
    try:
        return FlowNode.model_validate(record)
    except ValidationError as e:
        node_id = record.get("node_id") if isinstance(record, dict) else None
        logger.error(f"Invalid node record '{node_id}': {_describe(e)}")
        raise FlowMisconfiguredError(f"invalid node config: {_describe(e)}", node_id=node_id) from e


def load_edge(record: Dict[str, Any]) -> FlowEdge:
    try:
        return FlowEdge.model_validate(record)
    except ValidationError as e:
        edge_id = None
        if isinstance(record, dict):
            edge_id = record.get("edge_id") or record.get("id")
        logger.error(f"Invalid edge record '{edge_id}': {_describe(e)}")
        raise FlowMisconfiguredError(f"invalid edge '{edge_id}': {_describe(e)}") from e


def load_flow(
    node_records: Iterable[Dict[str, Any]],
    edge_records: Iterable[Dict[str, Any]]
) -> Tuple[Dict[str, FlowNode], Dict[str, List[FlowEdge]]]:
    """
    Load a whole flow.

    Returns:
        (nodes by node_id, outgoing edges by source node_id in declaration order)
    """
    nodes: Dict[str, FlowNode] = {}
    for record in node_records:
        node = load_node(record)
        if node.node_id in nodes:
            raise FlowMisconfiguredError("duplicate node id", node_id=node.node_id)
        nodes[node.node_id] = node

    outgoing: Dict[str, List[FlowEdge]] = {}
    for record in edge_records:
        edge = load_edge(record)
        outgoing.setdefault(edge.source, []).append(edge)

    return nodes, outgoing
