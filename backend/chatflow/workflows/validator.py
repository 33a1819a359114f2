# /chatflow/workflows/validator.py

"""
Pure validation functions for loaded flow definitions.

These checks go beyond what a single node or edge schema can express:
branch coverage, fallback edges, and references between nodes.

All functions are:
- Pure (no side effects)
- Deterministic (same input = same output)
- No logging
"""

from collections import Counter
from typing import Iterable, List, Optional, TypedDict

from chatflow.models.flow import ConditionNodeConfig, FlowEdge, FlowNode


class ValidationResult(TypedDict):
    """Result of a validation check."""
    is_valid: bool
    error_code: Optional[str]
    message: Optional[str]


def _ok() -> ValidationResult:
    return {
        "is_valid": True,
        "error_code": None,
        "message": None
    }


def _error(error_code: str, message: str) -> ValidationResult:
    return {
        "is_valid": False,
        "error_code": error_code,
        "message": message
    }


def validate_branches(config: ConditionNodeConfig) -> ValidationResult:
    """
    Validate that a condition node covers both outcomes and that its default
    branch is one of its branches.

    Args:
        config: The condition node's config

    Returns:
        ValidationResult with is_valid=True if the branches are usable
    """
    if config.get_branch(config.default_branch) is None:
        return _error(
            "UNKNOWN_DEFAULT_BRANCH",
            f"Default branch '{config.default_branch}' is not defined"
        )

    names = [branch.name for branch in config.branches]
    duplicates = sorted(name for name, count in Counter(names).items() if count > 1)
    if duplicates:
        return _error("DUPLICATE_BRANCH", f"Duplicate branch names: {', '.join(duplicates)}")

    met = [branch for branch in config.branches if branch.conditions_met]
    not_met = [branch for branch in config.branches if not branch.conditions_met]

    if len(met) != 1:
        return _error(
            "CONDITIONS_MET_BRANCH_COUNT",
            f"Exactly one branch must have conditions_met=true, found {len(met)}"
        )

    if not not_met:
        return _error(
            "MISSING_FAILED_BRANCH",
            "At least one branch must have conditions_met=false"
        )

    return _ok()


def validate_outgoing_edges(edges: Iterable[FlowEdge]) -> ValidationResult:
    """
    Validate the outgoing edges of one node.

    A node whose edges are all conditional can end up with no viable
    transition at runtime; this is reported as NO_FALLBACK_EDGE.

    Args:
        edges: Outgoing edges of a single node

    Returns:
        ValidationResult with is_valid=True if an 'always' edge exists
    """
    edges = list(edges)
    if not edges:
        return _error("NO_OUTGOING_EDGES", "Node has no outgoing edges")

    sources = {edge.source for edge in edges}
    if len(sources) > 1:
        return _error("MIXED_SOURCES", f"Edges belong to different source nodes: {sorted(sources)}")

    if not any(edge.condition_type == "always" for edge in edges):
        return _error(
            "NO_FALLBACK_EDGE",
            f"Node '{edges[0].source}' has no 'always' edge; a message matching no edge stops the flow"
        )

    return _ok()


def validate_flow(nodes: Iterable[FlowNode], edges: Iterable[FlowEdge]) -> List[ValidationResult]:
    """
    Validate references across a whole flow.

    Args:
        nodes: All nodes of the flow
        edges: All edges of the flow

    Returns:
        List of failed ValidationResults; empty when the flow is consistent
    """
    nodes = list(nodes)
    edges = list(edges)
    problems: List[ValidationResult] = []

    node_ids = [node.node_id for node in nodes]
    known = set(node_ids)

    duplicates = sorted(node_id for node_id, count in Counter(node_ids).items() if count > 1)
    if duplicates:
        problems.append(_error("DUPLICATE_NODE_ID", f"Duplicate node ids: {', '.join(duplicates)}"))

    entry_nodes = [node.node_id for node in nodes if node.is_entry_node]
    if len(entry_nodes) > 1:
        problems.append(_error("MULTIPLE_ENTRY_NODES", f"More than one entry node: {', '.join(entry_nodes)}"))

    for edge in edges:
        for endpoint in (edge.source, edge.target):
            if endpoint not in known:
                problems.append(_error(
                    "UNKNOWN_EDGE_ENDPOINT",
                    f"Edge '{edge.edge_id}' references unknown node '{endpoint}'"
                ))

    for node in nodes:
        if isinstance(node.config, ConditionNodeConfig):
            result = validate_branches(node.config)
            if not result["is_valid"]:
                problems.append(_error(result["error_code"], f"Node '{node.node_id}': {result['message']}"))
            for branch in node.config.branches:
                if branch.next_node not in known:
                    problems.append(_error(
                        "UNKNOWN_BRANCH_TARGET",
                        f"Node '{node.node_id}' branch '{branch.name}' targets unknown node '{branch.next_node}'"
                    ))
        elif node.node_type == "delay":
            action = node.config.scheduled_action
            if action.type == "restart_flow" and action.restart_from_node not in known:
                problems.append(_error(
                    "UNKNOWN_RESTART_NODE",
                    f"Node '{node.node_id}' restarts from unknown node '{action.restart_from_node}'"
                ))

    return problems
