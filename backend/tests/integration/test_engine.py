# backend/tests/integration/test_engine.py
from datetime import timedelta

import pytest

from chatflow.services.delay_scheduler import DelayScheduler
from chatflow.workflows.engine import FlowEngine
from chatflow.workflows.loader import load_flow

CONV = "conv-engine"

NODES = [
    {"node_id": "start", "node_type": "message", "is_entry_node": True, "config": {"message": "Hi! Reply 1 for sales."}},
    {"node_id": "check_vip", "node_type": "condition", "config": {
        "conditions": {"operator": "AND", "rules": [
            {"type": "contact", "field": "custom_attributes", "variable_path": "category", "operator": "equals", "value": "vip"},
        ]},
        "branches": [
            {"name": "all_conditions_met", "conditions_met": True, "next_node": "vip_menu",
             "message": "Welcome back, {{contact.name}}!"},
            {"name": "conditions_not_met", "conditions_met": False, "next_node": "sales"},
        ],
        "default_branch": "conditions_not_met",
    }},
    {"node_id": "vip_menu", "node_type": "message", "config": {}},
    {"node_id": "sales", "node_type": "message", "config": {}},
    {"node_id": "pause", "node_type": "delay", "config": {"seconds": 120}},
    {"node_id": "after_pause", "node_type": "message", "config": {"message": "Thanks for waiting."}},
    {"node_id": "come_back", "node_type": "delay", "config": {
        "seconds": 3600, "blocking": False,
        "scheduled_action": {"type": "restart_flow", "restart_from_node": "start"},
    }},
    {"node_id": "nudge", "node_type": "delay", "config": {
        "seconds": 900, "blocking": False, "timing_mode": "delay_from_last_message",
        "reset_on_user_response": True,
        "scheduled_action": {"type": "message", "content": "Still there, {{contact.name}}?"},
    }},
    {"node_id": "broken_date", "node_type": "delay", "config": {
        "timing_mode": "absolute_date", "execute_at": "{{context.not_set}}"}},
]

EDGES = [
    {"id": "e1", "source": "start", "target": "check_vip", "condition_type": "user_input",
     "condition_config": {"expected_input": "1"}},
    {"id": "e2", "source": "nudge", "target": "sales", "condition_type": "always"},
    {"id": "e3", "source": "start", "target": "start", "condition_type": "wait_user_reply", "priority": -1},
    {"id": "e4", "source": "pause", "target": "after_pause", "condition_type": "always"},
]


@pytest.fixture
def flow():
    return load_flow(NODES, EDGES)


@pytest.fixture
def engine(t0):
    return FlowEngine(DelayScheduler(clock=lambda: t0))


@pytest.mark.asyncio
async def test_condition_node_goes_to_branch(engine, flow, context):
    nodes, outgoing = flow
    result = await engine.next_step(nodes["check_vip"], outgoing.get("check_vip", []), context)

    assert result["status"] == "next"
    assert result["next_node"] == "vip_menu"
    assert result["message"] == "Welcome back, Dana Levi!"


@pytest.mark.asyncio
async def test_message_node_follows_matching_edge(engine, flow, make_context):
    nodes, outgoing = flow

    result = await engine.next_step(nodes["start"], outgoing["start"], make_context(last_user_message="1"))
    assert result["status"] == "next"
    assert (result["next_node"], result["edge_id"]) == ("check_vip", "e1")

    waiting = await engine.next_step(nodes["start"], outgoing["start"], make_context(last_user_message="2"),
                                     awaiting_reply=True)
    assert waiting["next_node"] == "start"

    stuck = await engine.next_step(nodes["start"], outgoing["start"], make_context(last_user_message="2"))
    assert stuck["status"] == "no_transition"
    assert stuck["next_node"] is None


@pytest.mark.asyncio
async def test_blocking_delay_waits_then_resumes(engine, flow, context, t0):
    nodes, outgoing = flow
    result = await engine.next_step(nodes["pause"], outgoing["pause"], context, conversation_id=CONV)

    assert result["status"] == "waiting"
    assert result["next_node"] is None
    assert result["due_at"] == t0 + timedelta(seconds=120)

    fired = await engine.on_timer_fire(result["timer_handle"], now=result["due_at"])
    assert fired.payload == {"node_id": "pause", "blocking": True}

    resumed = engine.resume(fired, outgoing["pause"], context)
    assert resumed["status"] == "next"
    assert (resumed["next_node"], resumed["edge_id"]) == ("after_pause", "e4")
    assert engine.scheduler.active_timers(CONV) == []


@pytest.mark.asyncio
async def test_resume_without_matching_edge_reports_no_transition(engine, flow, context):
    nodes, _ = flow
    result = await engine.next_step(nodes["pause"], [], context, conversation_id=CONV)
    fired = await engine.on_timer_fire(result["timer_handle"], now=result["due_at"])

    resumed = engine.resume(fired, [], context)
    assert resumed["status"] == "no_transition"
    assert "pause" in resumed["reason"]


@pytest.mark.asyncio
async def test_resume_restart_flow_jumps_to_restart_node(engine, flow, context, t0):
    nodes, _ = flow
    result = await engine.next_step(nodes["come_back"], [], context, conversation_id=CONV)
    assert result["status"] == "scheduled"

    fired = await engine.on_timer_fire(result["timer_handle"], now=t0 + timedelta(seconds=3600))
    resumed = engine.resume(fired, [], context)
    assert resumed["status"] == "next"
    assert resumed["next_node"] == "start"


@pytest.mark.asyncio
async def test_resume_message_action_is_delivered(engine, flow, context, t0):
    nodes, outgoing = flow
    result = await engine.next_step(nodes["nudge"], outgoing["nudge"], context, conversation_id=CONV)
    fired = await engine.on_timer_fire(result["timer_handle"], now=t0 + timedelta(seconds=900))

    resumed = engine.resume(fired, outgoing["nudge"], context)
    assert resumed["status"] == "deliver"
    assert resumed["message"] == "Still there, Dana Levi?"
    assert resumed["next_node"] is None


@pytest.mark.asyncio
async def test_non_blocking_delay_continues_and_fires_later(engine, flow, context, t0):
    nodes, outgoing = flow
    result = await engine.next_step(nodes["nudge"], outgoing["nudge"], context, conversation_id=CONV)

    assert result["status"] == "scheduled"
    assert result["next_node"] == "sales"
    handle = result["timer_handle"]

    updates = await engine.on_user_message(CONV, now=t0 + timedelta(seconds=600))
    assert updates[0].due_at == t0 + timedelta(seconds=1500)

    assert await engine.on_timer_fire(handle, now=t0 + timedelta(seconds=900)) is None
    fired = await engine.on_timer_fire(handle, now=t0 + timedelta(seconds=1500))
    assert fired.action == "message"
    assert fired.payload["content"] == "Still there, Dana Levi?"


@pytest.mark.asyncio
async def test_misconfigured_delay_is_reported(engine, flow, context):
    nodes, _ = flow
    result = await engine.next_step(nodes["broken_date"], [], context, conversation_id=CONV)

    assert result["status"] == "misconfigured"
    assert "broken_date" in result["reason"]
    assert result["next_node"] is None


@pytest.mark.asyncio
async def test_delay_requires_conversation_id(engine, flow, context):
    nodes, _ = flow
    with pytest.raises(ValueError):
        await engine.next_step(nodes["pause"], [], context)


def test_engine_exposes_branch_and_edge_resolution(engine, flow, make_context):
    nodes, outgoing = flow
    ctx = make_context(contact={"name": "Sam"}, last_user_message="1")

    assert engine.resolve_branch(nodes["check_vip"], ctx)["next_node"] == "sales"
    assert engine.resolve_edge(outgoing["start"], ctx).edge_id == "e1"
