# backend/tests/unit/test_migrations.py
import importlib.util
import json
from pathlib import Path

from chatflow.workflows.loader import load_flow
from chatflow.workflows.migrations import add_default_branches, infer_default_branch

_SCRIPT = Path(__file__).resolve().parents[2] / "scripts" / "migrate_default_branch.py"
_spec = importlib.util.spec_from_file_location("migrate_default_branch", _SCRIPT)
migration_script = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(migration_script)
main, migrate_file = migration_script.main, migration_script.migrate_file


def legacy_flow():
    return {
        "name": "Support",
        "nodes": [
            {"node_id": "check", "node_type": "condition", "config": {
                "conditions": {"operator": "OR", "rules": []},
                "branches": [
                    {"name": "all_conditions_met", "conditions_met": True, "next_node": "agent"},
                    {"name": "conditions_not_met", "conditions_met": False, "next_node": "bot"},
                ],
            }},
            {"node_id": "only_true", "node_type": "condition", "config": {
                "branches": [{"name": "yes", "conditions_met": True, "next_node": "agent"}],
            }},
            {"node_id": "agent", "node_type": "notify_agents", "config": {}},
            {"node_id": "bot", "node_type": "message", "config": {"message": "Hi"}},
        ],
        "edges": [],
    }


def test_infer_default_branch():
    assert infer_default_branch(legacy_flow()["nodes"][0]["config"]) == "conditions_not_met"
    assert infer_default_branch(legacy_flow()["nodes"][1]["config"]) is None


def test_add_default_branches_does_not_mutate_input():
    flow = legacy_flow()
    updated, fixed, unfixable = add_default_branches(flow)

    assert fixed == ["check"]
    assert unfixable == ["only_true"]
    assert "default_branch" not in flow["nodes"][0]["config"]
    assert updated["nodes"][0]["config"]["default_branch"] == "conditions_not_met"


def test_migrated_nodes_load():
    updated, _, _ = add_default_branches(legacy_flow())
    nodes, _ = load_flow([n for n in updated["nodes"] if n["node_id"] != "only_true"], [])
    assert nodes["check"].config.default_branch == "conditions_not_met"


def test_migration_is_idempotent():
    once, _, _ = add_default_branches(legacy_flow())
    twice, fixed, _ = add_default_branches(once)
    assert fixed == []
    assert twice == once


def test_migrate_file(tmp_path):
    path = tmp_path / "flow.json"
    path.write_text(json.dumps(legacy_flow()), encoding="utf-8")

    assert migrate_file(path, dry_run=True) is False
    assert "default_branch" not in path.read_text(encoding="utf-8")

    migrate_file(path, dry_run=False)
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["nodes"][0]["config"]["default_branch"] == "conditions_not_met"


def test_main_exit_codes(tmp_path):
    good = tmp_path / "good.json"
    good.write_text(json.dumps({"nodes": legacy_flow()["nodes"][:1]}), encoding="utf-8")
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")

    assert main([str(good)]) == 0
    assert main([str(good), str(broken)]) == 1
