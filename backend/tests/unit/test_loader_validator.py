# backend/tests/unit/test_loader_validator.py
from datetime import datetime, timezone

import pytest

from chatflow.models.flow import ConditionNodeConfig, DelayConfig, FlowEdge, TimingMode
from chatflow.services.delay_scheduler import compute_due_at
from chatflow.workflows.exceptions import FlowMisconfiguredError
from chatflow.workflows.loader import load_edge, load_flow, load_node
from chatflow.workflows.validator import validate_branches, validate_flow, validate_outgoing_edges

CONDITION_NODE = {
    "node_id": "check_age",
    "node_type": "condition",
    "is_entry_node": True,
    "config": {
        "conditions": {"operator": "AND", "rules": [
            {"id": "r1", "type": "context_variable", "variable_path": "user.age",
             "operator": "greater_than", "value": 18, "intent_name": "ignored"},
        ]},
        "branches": [
            {"name": "all_conditions_met", "conditions_met": True, "next_node": "adult"},
            {"name": "conditions_not_met", "conditions_met": False, "next_node": "minor"},
        ],
        "default_branch": "conditions_not_met",
    },
}

NODES = [
    CONDITION_NODE,
    {"node_id": "adult", "node_type": "message", "config": {"message": "Welcome"}},
    {"node_id": "minor", "node_type": "end", "config": {}},
    {"node_id": "wait", "node_type": "delay", "config": {"delay_seconds": 3600, "blocking": False}},
]

EDGES = [
    {"id": "e1", "source_node": "adult", "target_node": "wait", "condition_type": "always"},
    {"edge_id": "e2", "source": "wait", "target": "minor", "condition_type": "keyword",
     "condition_config": {"keywords": "stop"}, "priority": 2},
]


# --- Loader ---

def test_load_flow_builds_typed_nodes_and_outgoing_edges():
    nodes, outgoing = load_flow(NODES, EDGES)

    assert isinstance(nodes["check_age"].config, ConditionNodeConfig)
    assert isinstance(nodes["wait"].config, DelayConfig)
    assert nodes["wait"].config.seconds == 3600
    assert nodes["wait"].config.timing_mode == TimingMode.FIXED_DELAY
    assert nodes["adult"].config == {"message": "Welcome"}
    assert [e.edge_id for e in outgoing["wait"]] == ["e2"]
    assert outgoing["adult"][0].target == "wait"


def test_delay_defaults():
    config = load_node({"node_id": "d", "node_type": "delay", "config": {}}).config
    assert config.seconds == 1
    assert config.blocking is True
    assert config.reset_on_user_response is False
    assert config.cancel_on_user_response is False
    assert config.scheduled_action.type == "continue_flow"


@pytest.mark.parametrize("execute_at, tz_name, expected_type", [
    (datetime(2025, 3, 12, 9, 0), "Asia/Jerusalem", datetime),
    ("2025-03-12T09:00:00", "Asia/Jerusalem", str),
    (1741762800, "UTC", int),
])
def test_absolute_delay_accepts_datetime_epoch_and_text(context, execute_at, tz_name, expected_type):
    """A datetime, epoch seconds or ISO text all schedule the same instant."""
    node = load_node({"node_id": "d", "node_type": "delay", "config": {
        "timing_mode": "absolute_date", "execute_at": execute_at, "timezone": tz_name,
    }})
    assert type(node.config.execute_at) is expected_type
    assert compute_due_at(node.config, context) == datetime(2025, 3, 12, 7, 0, tzinfo=timezone.utc)


def test_duplicate_node_ids_are_rejected():
    with pytest.raises(FlowMisconfiguredError) as exc_info:
        load_flow([NODES[1], NODES[1]], [])
    assert exc_info.value.node_id == "adult"


@pytest.mark.parametrize("record", [
    {"node_id": "x", "node_type": "teleport", "config": {}},
    {"node_id": "x", "node_type": "condition", "config": {
        "branches": [{"name": "a", "conditions_met": True, "next_node": "y"}]}},
    {"node_id": "x", "node_type": "condition", "config": {
        "conditions": {"rules": [{"type": "weather"}]},
        "branches": [{"name": "a", "conditions_met": True, "next_node": "y"}], "default_branch": "a"}},
    {"node_id": "x", "node_type": "delay", "config": {"timing_mode": "absolute_date"}},
    {"node_id": "x", "node_type": "delay", "config": {"scheduled_action": {"type": "message"}}},
    {"node_id": "x", "node_type": "delay", "config": {"seconds": -5}},
])
def test_invalid_node_records_raise_at_load(record):
    with pytest.raises(FlowMisconfiguredError) as exc_info:
        load_node(record)
    assert exc_info.value.node_id == "x"


def test_invalid_edge_record_raises_at_load():
    with pytest.raises(FlowMisconfiguredError):
        load_edge({"id": "e9", "source": "a", "target": "b", "condition_type": "sometimes"})
    with pytest.raises(FlowMisconfiguredError):
        load_edge({"id": "e9", "source": "a", "target": "b", "condition_type": "intent", "condition_config": {}})


def test_misconfigured_error_message():
    error = FlowMisconfiguredError("no default branch", node_id="n1")
    assert str(error) == "Node 'n1': no default branch"
    assert str(FlowMisconfiguredError("bad edge")) == "bad edge"


# --- Validator ---

def branches_config(branches, default):
    return ConditionNodeConfig.model_validate({"branches": branches, "default_branch": default})


def test_validate_branches_ok():
    nodes, _ = load_flow(NODES, EDGES)
    assert validate_branches(nodes["check_age"].config)["is_valid"]


@pytest.mark.parametrize("branches, default, error_code", [
    ([{"name": "a", "conditions_met": True, "next_node": "x"},
      {"name": "a", "conditions_met": False, "next_node": "y"}], "a", "DUPLICATE_BRANCH"),
    ([{"name": "a", "conditions_met": True, "next_node": "x"},
      {"name": "b", "conditions_met": True, "next_node": "y"},
      {"name": "c", "conditions_met": False, "next_node": "z"}], "c", "CONDITIONS_MET_BRANCH_COUNT"),
    ([{"name": "a", "conditions_met": True, "next_node": "x"}], "a", "MISSING_FAILED_BRANCH"),
])
def test_validate_branches_errors(branches, default, error_code):
    result = validate_branches(branches_config(branches, default))
    assert result["is_valid"] is False
    assert result["error_code"] == error_code


def test_validate_outgoing_edges():
    always = FlowEdge.model_validate({"id": "e1", "source": "a", "target": "b"})
    keyword = FlowEdge.model_validate({"id": "e2", "source": "a", "target": "c", "condition_type": "keyword",
                                       "condition_config": {"keywords": ["yes"]}})
    other = FlowEdge.model_validate({"id": "e3", "source": "z", "target": "c"})

    assert validate_outgoing_edges([keyword, always])["is_valid"]
    assert validate_outgoing_edges([])["error_code"] == "NO_OUTGOING_EDGES"
    assert validate_outgoing_edges([keyword])["error_code"] == "NO_FALLBACK_EDGE"
    assert validate_outgoing_edges([always, other])["error_code"] == "MIXED_SOURCES"


def test_validate_flow_consistent():
    nodes, outgoing = load_flow(NODES, EDGES)
    edges = [edge for group in outgoing.values() for edge in group]
    assert validate_flow(nodes.values(), edges) == []


def test_validate_flow_reports_dangling_references():
    nodes, _ = load_flow(
        NODES + [
            {"node_id": "second_entry", "node_type": "message", "is_entry_node": True, "config": {}},
            {"node_id": "restart", "node_type": "delay", "config": {
                "blocking": False, "scheduled_action": {"type": "restart_flow", "restart_from_node": "gone"}}},
        ],
        [],
    )
    dangling = FlowEdge.model_validate({"id": "e7", "source": "adult", "target": "nowhere"})

    codes = sorted(problem["error_code"] for problem in validate_flow(nodes.values(), [dangling]))
    assert codes == ["MULTIPLE_ENTRY_NODES", "UNKNOWN_EDGE_ENDPOINT", "UNKNOWN_RESTART_NODE"]
