# backend/tests/unit/test_operators.py
import pytest

from chatflow.workflows.operators import apply_operator, is_empty_value, to_number, values_equal


@pytest.mark.parametrize("value, expected", [
    (None, True),
    ("", True),
    ("   ", True),
    ([], True),
    ({}, True),
    (0, False),
    (False, False),
    ("x", False),
])
def test_is_empty_value(value, expected):
    assert is_empty_value(value) is expected


def test_to_number_rejects_bools_and_text():
    assert to_number(" 42 ") == 42.0
    assert to_number(3) == 3.0
    assert to_number(True) is None
    assert to_number("abc") is None


def test_values_equal_coerces_numbers_and_booleans():
    assert values_equal(25, "25")
    assert values_equal(True, "true")
    assert values_equal("False", False)
    assert not values_equal(True, 1)
    assert values_equal("Yes", "yes", case_sensitive=False)
    assert not values_equal("Yes", "yes")


def test_absent_value_only_satisfies_is_empty_and_not_equals():
    assert apply_operator("is_empty", None, None)
    assert apply_operator("not_equals", None, "x")
    for op in ("equals", "contains", "not_contains", "starts_with", "ends_with", "greater_than",
               "less_equal", "not_empty", "in_list", "not_in_list", "matches_regex"):
        assert not apply_operator(op, None, "x"), op


def test_contains_on_text_and_lists():
    assert apply_operator("contains", "yes I do", "YES", case_sensitive=False)
    assert not apply_operator("contains", "yes I do", "YES")
    assert apply_operator("contains", ["gold", "returning"], "gold")
    assert apply_operator("not_contains", ["gold"], "silver")


def test_starts_and_ends_with():
    assert apply_operator("starts_with", "972501234567", "972")
    assert apply_operator("ends_with", "Order #123", "#123")
    assert not apply_operator("starts_with", "hello", "HE")


def test_numeric_operators_fail_closed_on_non_numbers():
    assert apply_operator("greater_than", 25, "18")
    assert apply_operator("less_equal", "18", 18)
    assert not apply_operator("greater_than", 25, "abc")
    assert not apply_operator("greater_than", "many", 3)


def test_list_membership_accepts_comma_separated_strings():
    assert apply_operator("in_list", "vip", "gold, vip")
    assert apply_operator("in_list", 2, [1, 2, 3])
    assert apply_operator("not_in_list", "bronze", ["gold", "vip"])


def test_matches_regex_never_raises():
    assert apply_operator("matches_regex", "0501234567", r"^[0-9]{10}$")
    assert not apply_operator("matches_regex", "abc", r"^[0-9]{10}$")
    assert not apply_operator("matches_regex", "abc", "((")
    assert apply_operator("matches_regex", "HELLO", "hello", case_sensitive=False)


def test_unknown_operator_is_rejected():
    with pytest.raises(ValueError):
        apply_operator("roughly_equals", 1, 1)
