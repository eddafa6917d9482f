"""Tests for gateflow.lib.agents_config module."""

import json

import pytest

from gateflow.lib.agents_config import (
    DEFAULT_AGENT_COMMANDS,
    AgentsConfig,
    build_agent_command,
    load_agents_config,
)


class TestLoadAgentsConfig:
    """Test load_agents_config function."""

    def test_returns_defaults_when_no_config_dir(self):
        config = load_agents_config(None)
        assert config.commands == DEFAULT_AGENT_COMMANDS

    def test_returns_defaults_when_file_missing(self, tmp_path):
        assert load_agents_config(tmp_path).commands == DEFAULT_AGENT_COMMANDS

    def test_merges_file_over_defaults(self, tmp_path):
        (tmp_path / "agents.yaml").write_text(
            "agents:\n"
            "  worker: my-worker --unit {unit_id}\n"
            "  gate.security-auditor: audit --json {request}\n"
        )
        config = load_agents_config(tmp_path)
        assert config.commands["worker"] == "my-worker --unit {unit_id}"
        assert config.commands["gate"] == DEFAULT_AGENT_COMMANDS["gate"]
        assert config.commands["gate.security-auditor"] == "audit --json {request}"

    def test_invalid_yaml_falls_back_to_defaults(self, tmp_path, caplog):
        (tmp_path / "agents.yaml").write_text("agents: [unclosed\n")
        config = load_agents_config(tmp_path)
        assert config.commands == DEFAULT_AGENT_COMMANDS
        assert "Failed to parse" in caplog.text

    def test_ignores_empty_command(self, tmp_path, caplog):
        (tmp_path / "agents.yaml").write_text("agents:\n  worker: ''\n")
        config = load_agents_config(tmp_path)
        assert config.commands["worker"] == DEFAULT_AGENT_COMMANDS["worker"]
        assert "Ignoring empty" in caplog.text


class TestTemplateFor:
    def test_gate_falls_back_to_generic_gate(self):
        config = AgentsConfig({"worker": "w", "gate": "g", "gate.lint": "lint"})
        assert config.template_for("gate.lint") == "lint"
        assert config.template_for("gate.tests") == "g"

    def test_missing_role(self):
        with pytest.raises(ValueError, match="No agent command"):
            AgentsConfig({"worker": "w"}).template_for("gate.tests")


class TestBuildAgentCommand:
    """Test build_agent_command function."""

    def test_request_on_stdin_by_default(self):
        config = AgentsConfig({"worker": "run-worker --unit {unit_id}"})
        command = build_agent_command(config, "worker", {"unit_id": "7", "request": "{}"})
        assert command.cmd == ["run-worker", "--unit", "7"]
        assert command.request_via_stdin
        assert command.get_stdin_input("{}") == "{}"

    def test_request_as_single_argument(self):
        request = json.dumps({"unitId": "7", "blockingIssues": ["don't use 'eval'"]})
        config = AgentsConfig({"gate": "audit --gate {gate} --payload {request}"})
        command = build_agent_command(config, "gate.security", {"gate": "security", "request": request})
        assert command.cmd == ["audit", "--gate", "security", "--payload", request]
        assert not command.request_via_stdin
        assert command.get_stdin_input(request) is None

    def test_values_are_not_split(self):
        config = AgentsConfig({"worker": "w --unit {unit_id}"})
        command = build_agent_command(config, "worker", {"unit_id": "a b; rm -rf /"})
        assert command.cmd == ["w", "--unit", "a b; rm -rf /"]

    def test_unsubstituted_variable(self):
        config = AgentsConfig({"worker": "w --plan {plan_id}"})
        with pytest.raises(ValueError, match="plan_id"):
            build_agent_command(config, "worker", {"unit_id": "1"})
