# backend/tests/conftest.py
from datetime import datetime, timezone
from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load the test environment FIRST, before any chatflow imports, so that the
# settings object is built from it.
load_dotenv(dotenv_path=Path(__file__).resolve().parent.parent / ".env.test")

from chatflow.models.context import DetectedIntent, ExecutionContext, FunctionCall  # noqa: E402
from chatflow.models.flow import FlowEdge, FlowNode  # noqa: E402
from chatflow.services.delay_scheduler import DelayScheduler  # noqa: E402

T0 = datetime(2025, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def make_context():
    """Builds an ExecutionContext with sensible defaults; override any field by keyword."""
    def _make(**overrides):
        data = {
            "contact": {
                "name": "Dana Levi",
                "phone_number": "972501234567",
                "blocked": False,
                "custom_attributes": {"category": "vip", "tags": ["gold", "returning"]},
                "additional_attributes": {"source": "instagram"},
            },
            "context_variables": {"user": {"age": 25, "plan": "pro"}, "appointment_datetime": "2025-03-12T09:00:00"},
            "last_user_message": "",
            "visited_nodes": frozenset(),
            "function_calls": [],
            "now": T0,
            "conversation_meta": {"message_count": 4, "duration_minutes": 12, "status": "open"},
            "detected_intent": None,
        }
        if "intent" in overrides:
            name, confidence = overrides.pop("intent")
            overrides["detected_intent"] = DetectedIntent(name=name, confidence=confidence)
        if "called" in overrides:
            overrides["function_calls"] = [FunctionCall(name=n, called_at=T0) for n in overrides.pop("called")]
        data.update(overrides)
        return ExecutionContext(**data)
    return _make


@pytest.fixture
def context(make_context):
    return make_context()


@pytest.fixture
def scheduler():
    return DelayScheduler(clock=lambda: T0)


@pytest.fixture
def make_edge():
    counter = {"n": 0}

    def _make(condition_type="always", priority=0, target=None, **condition_config):
        counter["n"] += 1
        n = counter["n"]
        return FlowEdge.model_validate({
            "edge_id": f"e{n}",
            "source_node": "start",
            "target_node": target or f"node_{n}",
            "condition_type": condition_type,
            "condition_config": condition_config,
            "priority": priority,
        })
    return _make


@pytest.fixture
def make_delay_node():
    def _make(node_id="delay_1", **config):
        return FlowNode.model_validate({"node_id": node_id, "node_type": "delay", "config": config})
    return _make
