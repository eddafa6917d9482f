"""
Agent command configuration.

Loads agents.yaml to determine which CLI command runs the worker and each
quality gate. If no config file exists, defaults are used.

COMMAND TEMPLATES
=================

agents.yaml has one mapping, "agents":

    agents:
      worker: claude -p --output-format json
      gate: claude -p --output-format json
      gate.security-auditor: my-auditor --json {request}

Lookup for a gate named G is "gate.G", falling back to "gate".

Variables use {name} syntax:
- {unit_id}: The work unit being processed.
- {gate}: The gate name (gate commands only).
- {request}: The JSON request. If present in the template it is passed as a
  CLI argument; otherwise the request goes to the command on stdin.
"""

import logging
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

AGENTS_YAML = "agents.yaml"

DEFAULT_AGENT_COMMANDS = {
    "worker": "claude -p --output-format json",
    # Any gate without its own entry
    "gate": "claude -p --output-format json",
}

_REQUEST_PLACEHOLDER = "__GATEFLOW_REQUEST__"


@dataclass
class AgentsConfig:
    """Agent configuration from agents.yaml."""
    commands: dict[str, str] = field(default_factory=lambda: DEFAULT_AGENT_COMMANDS.copy())

    def template_for(self, role: str) -> str:
        """Template for "worker" or "gate.<name>", with the gate fallback."""
        if role in self.commands:
            return self.commands[role]
        if role.startswith("gate.") and "gate" in self.commands:
            return self.commands["gate"]
        raise ValueError(f"No agent command configured for '{role}'")


def load_agents_config(config_dir: Optional[Path]) -> AgentsConfig:
    """Load agents.yaml and return AgentsConfig.

    If config_dir is None or the file doesn't exist, returns defaults.
    A file that fails to parse is logged and ignored.
    """
    if config_dir is None:
        return AgentsConfig()

    config_path = config_dir / AGENTS_YAML
    if not config_path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return AgentsConfig()

    commands = DEFAULT_AGENT_COMMANDS.copy()
    if isinstance(data, dict) and isinstance(data.get("agents"), dict):
        for role, template in data["agents"].items():
            if not isinstance(template, str) or not template.strip():
                logger.warning(f"Ignoring empty or non-string command for '{role}' in {config_path}")
                continue
            commands[str(role)] = template
    return AgentsConfig(commands=commands)


@dataclass
class AgentCommand:
    """Result of building an agent command."""
    cmd: list[str]           # Command ready for subprocess
    request_via_stdin: bool  # True if the request JSON goes on stdin

    def get_stdin_input(self, request: str) -> str | None:
        return request if self.request_via_stdin else None


def build_agent_command(
    config: AgentsConfig,
    role: str,
    context: dict[str, str] | None = None,
) -> AgentCommand:
    """Build the command list for an agent role with variable substitution.

    Args:
        config: AgentsConfig instance
        role: "worker" or "gate.<name>"
        context: Variables for substitution, e.g. {"unit_id": "3", "request": "{...}"}

    Raises:
        ValueError: If the role has no template or a variable is left unsubstituted

    Example:
        >>> config = AgentsConfig({"worker": "run-worker --unit {unit_id}"})
        >>> build_agent_command(config, "worker", {"unit_id": "7", "request": "{}"}).cmd
        ['run-worker', '--unit', '7']
    """
    template = config.template_for(role)
    context = context or {}

    request_via_stdin = "{request}" not in template

    # The request is JSON; keep it away from the shell lexer
    request_value = context.get("request")
    if not request_via_stdin:
        template = template.replace("{request}", _REQUEST_PLACEHOLDER)

    for key, value in context.items():
        if key != "request":
            template = template.replace(f"{{{key}}}", shlex.quote(str(value)))

    remaining = re.findall(r'\{(\w+)\}', template)
    if remaining:
        raise ValueError(f"Agent command for '{role}' has unsubstituted variables: {remaining}")

    cmd = shlex.split(template)
    if not request_via_stdin:
        cmd = [(request_value or "") if arg == _REQUEST_PLACEHOLDER else arg for arg in cmd]

    return AgentCommand(cmd=cmd, request_via_stdin=request_via_stdin)
