# /chatflow/workflows/conditions.py

"""
Condition group evaluation.

AND stops at the first False rule and is True for an empty rule list.
OR stops at the first True rule and is False for an empty rule list.
Pure and deterministic for a given context.
"""

from typing import List, Optional, Tuple

from chatflow.models.conditions import ConditionsConfig
from chatflow.models.context import ExecutionContext
from chatflow.workflows.rules import evaluate_rule


def trace_conditions(config: ConditionsConfig, context: ExecutionContext) -> Tuple[bool, List[Tuple[Optional[str], bool]]]:
    """
    Evaluate ``config`` and also return the (rule id, result) pairs that were
    actually evaluated before short-circuiting.
    """
    trace: List[Tuple[Optional[str], bool]] = []

    if config.operator == "OR":
        for rule in config.rules:
            result = evaluate_rule(rule, context)
            trace.append((rule.id, result))
            if result:
                return True, trace
        return False, trace

    for rule in config.rules:
        result = evaluate_rule(rule, context)
        trace.append((rule.id, result))
        if not result:
            return False, trace
    return True, trace


def evaluate_conditions(config: ConditionsConfig, context: ExecutionContext) -> bool:
    """Combine the config's rules with its AND/OR operator."""
    result, _ = trace_conditions(config, context)
    return result
