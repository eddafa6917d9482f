"""
Command-template agents.

Runs the worker and gate agents as external CLI commands configured in
agents.yaml. The JSON request is passed on stdin (or as an argument when
the template has {request}); the command prints a JSON object.
"""

import json
import logging
import subprocess
from pathlib import Path
from typing import Any, Optional

from gateflow.lib.agents_config import AgentsConfig, build_agent_command
from gateflow.lib.errors import AgentError, ValidationError

logger = logging.getLogger(__name__)


def extract_json(stdout: str, schema_name: str) -> Any:
    """Decode agent output.

    Accepts a bare JSON object, or a CLI wrapper {"result": "..."} whose
    result holds the JSON, optionally inside a markdown code fence with
    prose around it.

    Raises:
        ValidationError: If no JSON can be decoded
    """
    text = stdout.strip()
    if not text:
        raise ValidationError(schema_name, "agent produced no output")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(schema_name, f"agent output is not JSON: {e}") from None

    if not (isinstance(data, dict) and isinstance(data.get("result"), str)):
        return data

    inner = data["result"].strip()
    if "```" in inner:
        start = inner.find("```json")
        if start == -1:
            start = inner.find("```")
        newline = inner.find("\n", start)
        if newline != -1:
            close = inner.find("\n```", newline)
            if close != -1:
                inner = inner[newline + 1:close].strip()

    try:
        return json.loads(inner)
    except json.JSONDecodeError as e:
        raise ValidationError(schema_name, f"agent result is not JSON: {e}") from None


class _CommandAgent:
    def __init__(self, config: AgentsConfig, timeout: int, cwd: Optional[Path] = None,
                 log_dir: Optional[Path] = None):
        self.config = config
        self.timeout = timeout
        self.cwd = cwd
        self.log_dir = log_dir

    def _run(self, role: str, request: dict, variables: dict[str, str], schema_name: str,
             log_name: str) -> Any:
        payload = json.dumps(request)
        command = build_agent_command(self.config, role, {**variables, "request": payload})

        logger.debug(f"[AGENT] {role}: {' '.join(command.cmd[:3])}...")
        try:
            result = subprocess.run(
                command.cmd,
                cwd=str(self.cwd) if self.cwd else None,
                input=command.get_stdin_input(payload),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise AgentError(f"{role} timed out after {self.timeout}s") from None
        except FileNotFoundError:
            raise AgentError(f"{role} command not found: {command.cmd[0]}") from None

        if self.log_dir:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            (self.log_dir / log_name).write_text(
                f"=== COMMAND ===\n{' '.join(command.cmd)}\n\n"
                f"=== EXIT CODE ===\n{result.returncode}\n\n"
                f"=== STDOUT ===\n{result.stdout}\n\n"
                f"=== STDERR ===\n{result.stderr}\n"
            )

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()[:500]
            raise AgentError(f"{role} exited {result.returncode}: {stderr}")

        return extract_json(result.stdout, schema_name)


class CommandWorker(_CommandAgent):
    """Worker backed by the "worker" command template."""

    def execute(self, request: dict) -> Any:
        unit_id = str(request.get("unitId", ""))
        attempt = request.get("attempt", 1)
        return self._run(
            "worker", request, {"unit_id": unit_id}, "worker_result",
            f"worker-{unit_id}-{attempt}.log",
        )


class CommandGateAgent(_CommandAgent):
    """Gate agent backed by "gate.<name>" templates (fallback "gate")."""

    def run_gate(self, gate_name: str, request: dict) -> Any:
        unit_id = str(request.get("unitId", ""))
        attempt = request.get("attempt", 1)
        return self._run(
            f"gate.{gate_name}", request, {"unit_id": unit_id, "gate": gate_name},
            "gate_response", f"gate-{unit_id}-{gate_name}-{attempt}.log",
        )
