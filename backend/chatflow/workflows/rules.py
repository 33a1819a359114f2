# /chatflow/workflows/rules.py

"""
Rule evaluator.

evaluate_rule() dispatches on the rule model to one evaluator per rule type.
Evaluation never raises: malformed regexes, unparsable times, unknown
timezones and non-numeric comparisons all evaluate to False, are logged and
counted, and the flow carries on.
"""

import logging
import re
from datetime import time
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

from chatflow.config.settings import settings
from chatflow.models.conditions import (
    ContactRule,
    ContextVariableRule,
    ConversationRule,
    FunctionCallRule,
    IntentRule,
    PreviousNodeRule,
    RegexRule,
    TimeConditionRule,
    UserInputRule,
)
from chatflow.models.context import ExecutionContext
from chatflow.utils.metrics import rule_evaluation_errors_counter, rule_evaluations_counter
from chatflow.workflows.context_access import resolve_path
from chatflow.workflows.operators import apply_operator

logger = logging.getLogger(__name__)

ATTRIBUTE_FIELDS = ("additional_attributes", "custom_attributes")

_TIME_OF_DAY_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::(\d{2}))?\s*$")


def attribute_path(field: Optional[str], variable_path: Optional[str]) -> Optional[str]:
    """
    Path used to look up a contact/conversation value. A variable_path given
    for a JSON attributes field is accepted both with and without the field
    prefix ('custom_attributes.category' or just 'category').
    """
    if not variable_path:
        return field
    if field in ATTRIBUTE_FIELDS and variable_path.split(".", 1)[0] not in ATTRIBUTE_FIELDS:
        return f"{field}.{variable_path}"
    return variable_path


def parse_time_of_day(text: Any) -> Optional[time]:
    if not isinstance(text, str):
        return None
    match = _TIME_OF_DAY_RE.match(text)
    if not match:
        return None
    hour, minute, second = int(match.group(1)), int(match.group(2)), int(match.group(3) or 0)
    if hour > 23 or minute > 59 or second > 59:
        return None
    return time(hour, minute, second)


# ---------------- Per-type evaluators ---------------- #

def _eval_contact(rule: ContactRule, context: ExecutionContext) -> bool:
    actual = resolve_path(context.contact, attribute_path(rule.field, rule.variable_path))
    return apply_operator(rule.operator, actual, rule.value, rule.case_sensitive)


def _eval_conversation(rule: ConversationRule, context: ExecutionContext) -> bool:
    actual = resolve_path(context.conversation_meta, attribute_path(rule.field, rule.variable_path))
    return apply_operator(rule.operator, actual, rule.value, rule.case_sensitive)


def _eval_context_variable(rule: ContextVariableRule, context: ExecutionContext) -> bool:
    actual = resolve_path(context.context_variables, rule.variable_path)
    return apply_operator(rule.operator, actual, rule.value, rule.case_sensitive)


def _eval_user_input(rule: UserInputRule, context: ExecutionContext) -> bool:
    return apply_operator(rule.operator, context.last_user_message, rule.value, rule.case_sensitive)


def _eval_intent(rule: IntentRule, context: ExecutionContext) -> bool:
    detected = context.detected_intent
    if detected is None:
        return False
    threshold = rule.confidence_threshold
    if threshold is None:
        threshold = settings.default_confidence_threshold
    return detected.name == rule.intent_name and detected.confidence >= threshold


def _eval_time_condition(rule: TimeConditionRule, context: ExecutionContext) -> bool:
    tz = ZoneInfo(rule.timezone or settings.default_timezone)
    current = context.now.astimezone(tz).time().replace(microsecond=0)

    if rule.operator == "between":
        start, end = parse_time_of_day(rule.start_time), parse_time_of_day(rule.end_time)
        if start is None or end is None:
            logger.warning(f"Rule '{rule.id}': malformed time window '{rule.start_time}'-'{rule.end_time}'.")
            return False
        if start <= end:
            return start <= current < end
        # window wraps past midnight, e.g. 22:00-06:00
        return current >= start or current < end

    boundary = parse_time_of_day(rule.value)
    if boundary is None:
        logger.warning(f"Rule '{rule.id}': malformed time '{rule.value}'.")
        return False
    if rule.operator == "after":
        return current > boundary
    return current < boundary


def _eval_regex(rule: RegexRule, context: ExecutionContext) -> bool:
    if rule.target != "last_user_message":
        logger.warning(f"Rule '{rule.id}': unsupported regex target '{rule.target}'.")
        return False
    flags = 0 if rule.case_sensitive else re.IGNORECASE
    try:
        compiled = re.compile(rule.pattern, flags)
    except re.error as e:
        logger.warning(f"Rule '{rule.id}': invalid regex '{rule.pattern}': {e}")
        return False
    return compiled.search(context.last_user_message or "") is not None


def _eval_previous_node(rule: PreviousNodeRule, context: ExecutionContext) -> bool:
    return (rule.node_id in context.visited_nodes) == rule.visited


def _eval_function_call(rule: FunctionCallRule, context: ExecutionContext) -> bool:
    return context.was_called(rule.function_name) == (rule.operator == "called")


RULE_EVALUATORS: Dict[type, Callable[[Any, ExecutionContext], bool]] = {
    ContactRule: _eval_contact,
    ContextVariableRule: _eval_context_variable,
    UserInputRule: _eval_user_input,
    IntentRule: _eval_intent,
    TimeConditionRule: _eval_time_condition,
    RegexRule: _eval_regex,
    PreviousNodeRule: _eval_previous_node,
    ConversationRule: _eval_conversation,
    FunctionCallRule: _eval_function_call,
}


def evaluate_rule(rule, context: ExecutionContext) -> bool:
    """
    Evaluate a single condition rule against the context.

    Args:
        rule: Any ConditionRule variant
        context: The ExecutionContext snapshot

    Returns:
        The rule's boolean result; False whenever evaluation fails
    """
    rule_type = getattr(rule, "type", "unknown")
    evaluator = RULE_EVALUATORS.get(type(rule))
    if evaluator is None:
        logger.error(f"No evaluator for rule type '{rule_type}'.")
        rule_evaluation_errors_counter.labels(rule_type=rule_type).inc()
        return False

    try:
        result = bool(evaluator(rule, context))
    except Exception as e:
        logger.warning(f"Rule '{getattr(rule, 'id', None)}' ({rule_type}) evaluated to False after error: {e}")
        rule_evaluation_errors_counter.labels(rule_type=rule_type).inc()
        result = False

    rule_evaluations_counter.labels(rule_type=rule_type, result=str(result).lower()).inc()
    return result
