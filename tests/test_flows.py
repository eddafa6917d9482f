"""Tests for gateflow.workflow.flows module."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from gateflow.agents.command import CommandGateAgent, CommandWorker
from gateflow.lib.config import EngineConfig
from gateflow.tracker.github import GitHubTracker
from gateflow.workflow.flows import RunRequest, build_runtime, make_tracker


class TestBuildRuntime:
    def test_defaults(self, tmp_path):
        runtime = build_runtime(tmp_path)
        assert runtime.config == EngineConfig()
        assert runtime.tracker is None
        assert isinstance(runtime.worker, CommandWorker)
        assert isinstance(runtime.gate_agent, CommandGateAgent)
        assert runtime.store.state_dir == tmp_path

    def test_reads_config_dir(self, tmp_path):
        config_dir = tmp_path / "conf"
        config_dir.mkdir()
        (config_dir / "engine.env").write_text(
            "TRACKER=github\nREPO_PATH=/srv/app\nWORKER_TIMEOUT=60\nGATE_TIMEOUT=30\n"
        )
        (config_dir / "agents.yaml").write_text("agents:\n  worker: my-worker\n")

        runtime = build_runtime(tmp_path, config_dir)

        assert isinstance(runtime.tracker, GitHubTracker)
        assert str(runtime.tracker.cwd) == "/srv/app"
        assert runtime.worker.timeout == 60
        assert runtime.gate_agent.timeout == 30
        assert runtime.worker.config.commands["worker"] == "my-worker"


class TestMakeTracker:
    def test_none(self):
        assert make_tracker(EngineConfig()) is None

    def test_github(self):
        assert isinstance(make_tracker(EngineConfig(tracker="github")), GitHubTracker)


class TestRunRequest:
    def test_requires_plan_id(self):
        with pytest.raises(PydanticValidationError):
            RunRequest(plan_id="", state_dir="/tmp/state")

    def test_optional_config_dir(self):
        assert RunRequest(plan_id="demo", state_dir="/tmp/state").config_dir is None
