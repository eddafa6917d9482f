"""Tests for gateflow.cli module."""

import json
from unittest.mock import patch

import pytest

from gateflow.cli import main
from gateflow.lib.errors import TrackerError
from gateflow.runner.plan_store import PlanStore
from gateflow.tracker.base import Issue, IssueNode
from gateflow.workflow.flows import Runtime
from tests.fakes import ScriptedGateAgent, ScriptedWorker, gate_fail, quiet_config, simple_table


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def units_file(tmp_path):
    path = tmp_path / "units.json"
    path.write_text(json.dumps([
        {"id": "1", "title": "Schema", "scope_files": ["src/schema.py"]},
        {"id": "2", "title": "API", "scope_files": ["src/api.py"], "blocked_by": ["1"]},
    ]))
    return path


def _cli(state_dir, *args):
    return main(["--state-dir", str(state_dir), *args])


def _runtime(state_dir, agent=None):
    return Runtime(
        store=PlanStore(state_dir),
        config=quiet_config(),
        gate_table=simple_table(retry_limits={"G1": 0}),
        worker=ScriptedWorker(),
        gate_agent=agent or ScriptedGateAgent(),
        tracker=None,
    )


class TestBuild:
    def test_build_from_file(self, state_dir, units_file, capsys):
        assert _cli(state_dir, "build", "demo", str(units_file)) == 0
        assert "Built plan demo: 2 unit(s), strategy shared-branch" in capsys.readouterr().out
        assert PlanStore(state_dir).exists("demo")

    def test_existing_plan_needs_force(self, state_dir, units_file):
        _cli(state_dir, "build", "demo", str(units_file))
        assert _cli(state_dir, "build", "demo", str(units_file)) == 2
        assert _cli(state_dir, "build", "demo", str(units_file), "--force") == 0

    def test_cycle_is_a_config_error(self, state_dir, tmp_path, capsys):
        path = tmp_path / "cycle.json"
        path.write_text(json.dumps([
            {"id": "a", "title": "A", "blocked_by": ["b"]},
            {"id": "b", "title": "B", "blocked_by": ["a"]},
        ]))
        assert _cli(state_dir, "build", "demo", str(path)) == 2
        assert "Cyclic dependency" in capsys.readouterr().out
        assert not PlanStore(state_dir).exists("demo")

    def test_needs_a_source(self, state_dir):
        assert _cli(state_dir, "build", "demo") == 2

    def test_unreadable_file(self, state_dir, tmp_path):
        assert _cli(state_dir, "build", "demo", str(tmp_path / "missing.json")) == 2

    @patch("gateflow.commands.build.GitHubTracker")
    def test_build_from_issue(self, mock_tracker, state_dir):
        mock_tracker.return_value.query_dependency_tree.return_value = [
            IssueNode(Issue("11", "Leaf", "Files: src/a.py")),
        ]
        assert _cli(state_dir, "build", "demo", "--issue", "10", "--repo", "acme/app") == 0
        mock_tracker.assert_called_once_with(repo="acme/app", cwd=None)
        plan = PlanStore(state_dir).load("demo")
        assert plan.source == "github:#10"
        assert plan.units["11"].issue_id == "11"

    @patch("gateflow.commands.build.GitHubTracker")
    def test_tracker_failure(self, mock_tracker, state_dir):
        mock_tracker.return_value.query_dependency_tree.side_effect = TrackerError("gh down")
        assert _cli(state_dir, "build", "demo", "--issue", "10") == 1


class TestRunRetryArchive:
    def test_run_to_completion(self, state_dir, units_file, capsys):
        _cli(state_dir, "build", "demo", str(units_file))
        with patch("gateflow.commands.run.build_runtime", return_value=_runtime(state_dir)):
            assert _cli(state_dir, "run", "demo") == 0
        assert "Plan demo: passed" in capsys.readouterr().out

    def test_failed_run_then_retry(self, state_dir, units_file, capsys):
        _cli(state_dir, "build", "demo", str(units_file))
        failing = ScriptedGateAgent({"G1": [gate_fail("G1", "schema broken")]})
        with patch("gateflow.commands.run.build_runtime", return_value=_runtime(state_dir, failing)):
            assert _cli(state_dir, "run", "demo") == 3
        out = capsys.readouterr().out
        assert "ESCALATED 1 at G1" in out

        assert _cli(state_dir, "retry", "demo") == 0
        assert "Reopened 1 unit(s): 1" in capsys.readouterr().out

        with patch("gateflow.commands.run.build_runtime", return_value=_runtime(state_dir)):
            assert _cli(state_dir, "run", "demo") == 3
        plan = PlanStore(state_dir).load("demo")
        assert plan.units["1"].status.value == "completed"
        assert plan.units["2"].status.value == "skipped"

    def test_max_parallel_override(self, state_dir, units_file):
        _cli(state_dir, "build", "demo", str(units_file))
        runtime = _runtime(state_dir)
        with patch("gateflow.commands.run.build_runtime", return_value=runtime):
            assert _cli(state_dir, "run", "demo", "--max-parallel", "2") == 0
        assert runtime.config.max_parallel == 2

    def test_max_parallel_below_one_is_rejected(self, state_dir, units_file, capsys):
        _cli(state_dir, "build", "demo", str(units_file))
        capsys.readouterr()
        with patch("gateflow.commands.run.build_runtime") as mock_build:
            assert _cli(state_dir, "run", "demo", "--max-parallel", "0") == 2
            assert _cli(state_dir, "run", "demo", "--max-parallel", "-1") == 2
        mock_build.assert_not_called()
        assert "--max-parallel must be >= 1, got -1" in capsys.readouterr().out

    def test_retry_unknown_unit(self, state_dir, units_file):
        _cli(state_dir, "build", "demo", str(units_file))
        assert _cli(state_dir, "retry", "demo", "9") == 2

    def test_archive_requires_finished_plan(self, state_dir, units_file, capsys):
        _cli(state_dir, "build", "demo", str(units_file))
        assert _cli(state_dir, "archive", "demo") == 2
        assert _cli(state_dir, "archive", "demo", "--force") == 0
        assert PlanStore(state_dir).list_archived() == ["demo"]


class TestStatusList:
    def test_status_table(self, state_dir, units_file, capsys):
        _cli(state_dir, "build", "demo", str(units_file))
        capsys.readouterr()
        assert _cli(state_dir, "status", "demo") == 0
        out = capsys.readouterr().out
        assert "Strategy: shared-branch" in out
        assert "Progress: 2 pending" in out

    def test_status_json(self, state_dir, units_file, capsys):
        _cli(state_dir, "build", "demo", str(units_file))
        capsys.readouterr()
        _cli(state_dir, "status", "demo", "--json")
        data = json.loads(capsys.readouterr().out)
        assert data["edges"] == [["1", "2"]]

    def test_status_of_missing_plan(self, state_dir):
        assert _cli(state_dir, "status", "nope") == 4

    def test_list(self, state_dir, units_file, capsys):
        _cli(state_dir, "build", "demo", str(units_file))
        capsys.readouterr()
        assert _cli(state_dir, "list") == 0
        assert "demo" in capsys.readouterr().out

    def test_list_archived_empty(self, state_dir, capsys):
        assert _cli(state_dir, "list", "--archived") == 0
        assert "No archived plans" in capsys.readouterr().out

    def test_invalid_engine_env(self, state_dir, units_file):
        _cli(state_dir, "build", "demo", str(units_file))
        config_dir = state_dir / "config"
        config_dir.mkdir(parents=True)
        (config_dir / "engine.env").write_text("MAX_PARALLEL=many\n")
        assert _cli(state_dir, "status", "demo") == 2

    def test_state_dir_from_environment(self, state_dir, units_file, monkeypatch):
        monkeypatch.setenv("GATEFLOW_STATE_DIR", str(state_dir))
        assert main(["build", "demo", str(units_file)]) == 0
        assert PlanStore(state_dir).exists("demo")
