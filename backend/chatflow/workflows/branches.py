# /chatflow/workflows/branches.py

import logging
from typing import Optional, TypedDict

from chatflow.models.context import ExecutionContext
from chatflow.models.flow import ConditionNodeConfig, FlowNode
from chatflow.utils.metrics import branch_resolutions_counter
from chatflow.workflows.conditions import trace_conditions
from chatflow.workflows.context_access import render_template
from chatflow.workflows.exceptions import FlowMisconfiguredError

logger = logging.getLogger(__name__)


class BranchDecision(TypedDict):
    """Result of resolving a condition node."""
    next_node: str
    message: Optional[str]
    branch_name: str
    conditions_met: bool
    used_default: bool


def resolve_branch(node: FlowNode, context: ExecutionContext) -> BranchDecision:
    """
    Evaluate a condition node and pick its outgoing branch.

    The first branch whose ``conditions_met`` equals the evaluation result wins;
    otherwise the node's ``default_branch`` is taken. The branch message, if
    any, is returned with its {{...}} placeholders rendered.

    Raises:
        FlowMisconfiguredError: the node is not a condition node or has no
        usable default branch
    """
    config = node.config
    if node.node_type != "condition" or not isinstance(config, ConditionNodeConfig):
        raise FlowMisconfiguredError("branch resolution requires a condition node", node_id=node.node_id)

    result, trace = trace_conditions(config.conditions, context)
    logger.debug(f"Condition node '{node.node_id}' evaluated to {result}; rules: {trace}")

    branch = next((b for b in config.branches if b.conditions_met == result), None)
    used_default = branch is None
    if branch is None:
        branch = config.get_branch(config.default_branch)
    if branch is None:
        branch_resolutions_counter.labels(outcome="misconfigured").inc()
        raise FlowMisconfiguredError(
            f"no branch for result {result} and default branch '{config.default_branch}' is missing",
            node_id=node.node_id,
        )

    branch_resolutions_counter.labels(outcome="default" if used_default else "matched").inc()
    return {
        "next_node": branch.next_node,
        "message": render_template(branch.message, context) if branch.message else None,
        "branch_name": branch.name,
        "conditions_met": result,
        "used_default": used_default,
    }
