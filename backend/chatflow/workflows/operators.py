# /chatflow/workflows/operators.py

"""
Comparison operators shared by the value-based rule types
(contact, context_variable, user_input, conversation).

A resolved value of None (missing field, missing variable) satisfies
``is_empty`` and ``not_equals`` and fails every other operator. Numeric
operators coerce both sides to numbers and evaluate to False when either side
is not numeric. Regex errors evaluate to False.
"""

import operator as _op
import re
from typing import Any, Optional

from chatflow.models.conditions import Operator


_NUMERIC_COMPARATORS = {
    Operator.GREATER_THAN: _op.gt,
    Operator.LESS_THAN: _op.lt,
    Operator.GREATER_EQUAL: _op.ge,
    Operator.LESS_EQUAL: _op.le,
}


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def to_number(value: Any) -> Optional[float]:
    """Coerce ints, floats and numeric strings; bools and everything else are not numbers."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _fold(text: str, case_sensitive: bool) -> str:
    return text if case_sensitive else text.casefold()


def values_equal(actual: Any, expected: Any, case_sensitive: bool = True) -> bool:
    if actual is None or expected is None:
        return actual is None and expected is None

    if isinstance(actual, bool) or isinstance(expected, bool):
        left, right = _as_bool(actual), _as_bool(expected)
        return left is not None and left == right

    left_num, right_num = to_number(actual), to_number(expected)
    if left_num is not None and right_num is not None:
        return left_num == right_num

    if isinstance(actual, str) or isinstance(expected, str):
        return _fold(str(actual), case_sensitive) == _fold(str(expected), case_sensitive)

    return actual == expected


def _as_list(expected: Any) -> list:
    if expected is None:
        return []
    if isinstance(expected, (list, tuple, set, frozenset)):
        return list(expected)
    if isinstance(expected, str):
        return [item.strip() for item in expected.split(",") if item.strip()]
    return [expected]


def _contains(actual: Any, expected: Any, case_sensitive: bool) -> bool:
    if expected is None:
        return False
    if isinstance(actual, (list, tuple, set, frozenset)):
        return any(values_equal(item, expected, case_sensitive) for item in actual)
    if isinstance(actual, dict):
        return expected in actual
    return _fold(str(expected), case_sensitive) in _fold(str(actual), case_sensitive)


def apply_operator(operator: Operator | str, actual: Any, expected: Any, case_sensitive: bool = True) -> bool:
    """
    Apply ``operator`` to the resolved ``actual`` value and the rule's
    ``expected`` value. Raises ValueError only for an unknown operator name.
    """
    op = Operator(operator)

    if op == Operator.IS_EMPTY:
        return is_empty_value(actual)
    if op == Operator.NOT_EMPTY:
        return not is_empty_value(actual)

    if actual is None:
        return op == Operator.NOT_EQUALS

    if op == Operator.EQUALS:
        return values_equal(actual, expected, case_sensitive)
    if op == Operator.NOT_EQUALS:
        return not values_equal(actual, expected, case_sensitive)

    if op == Operator.CONTAINS:
        return _contains(actual, expected, case_sensitive)
    if op == Operator.NOT_CONTAINS:
        return expected is not None and not _contains(actual, expected, case_sensitive)

    if op in (Operator.STARTS_WITH, Operator.ENDS_WITH):
        if expected is None:
            return False
        text = _fold(str(actual), case_sensitive)
        affix = _fold(str(expected), case_sensitive)
        return text.startswith(affix) if op == Operator.STARTS_WITH else text.endswith(affix)

    if op in _NUMERIC_COMPARATORS:
        left, right = to_number(actual), to_number(expected)
        if left is None or right is None:
            return False
        return _NUMERIC_COMPARATORS[op](left, right)

    if op == Operator.IN_LIST:
        return any(values_equal(actual, item, case_sensitive) for item in _as_list(expected))
    if op == Operator.NOT_IN_LIST:
        return not any(values_equal(actual, item, case_sensitive) for item in _as_list(expected))

    if op == Operator.MATCHES_REGEX:
        if not expected:
            return False
        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            return re.search(str(expected), str(actual), flags) is not None
        except re.error:
            return False

    return False
