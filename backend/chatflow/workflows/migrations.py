# /chatflow/workflows/migrations.py

"""
One-off transforms for stored flow documents.

Condition nodes saved by older editors rely on an implicit default branch (the
first branch with conditions_met=false). The loader now requires that choice
to be written down as ``default_branch``; add_default_branches() records it.
"""

import copy
from typing import Any, Dict, List, Tuple


def infer_default_branch(config: Dict[str, Any]) -> str | None:
    for branch in config.get("branches") or []:
        if isinstance(branch, dict) and branch.get("conditions_met") is False and branch.get("name"):
            return branch["name"]
    return None


def add_default_branches(flow: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str], List[str]]:
    """
    Return a copy of ``flow`` where every condition node has a default_branch.

    Returns:
        (updated flow, node ids that were fixed, node ids that could not be fixed)
    """
    updated = copy.deepcopy(flow)
    fixed: List[str] = []
    unfixable: List[str] = []

    for node in updated.get("nodes") or []:
        if node.get("node_type") != "condition":
            continue
        config = node.setdefault("config", {})
        if config.get("default_branch"):
            continue
        default = infer_default_branch(config)
        if default is None:
            unfixable.append(str(node.get("node_id")))
            continue
        config["default_branch"] = default
        fixed.append(str(node.get("node_id")))

    return updated, fixed, unfixable
