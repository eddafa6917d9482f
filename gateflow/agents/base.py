"""
Agent interfaces.

The engine never runs work itself. A Worker applies a unit's changes and
reports what it touched; a GateAgent inspects the result for one gate.
Both return decoded JSON that the engine validates against its contract.
"""

from typing import Any, Protocol


class Worker(Protocol):
    def execute(self, request: dict) -> Any:
        """Run a unit.

        request: {unitId, scopeFiles, restriction, qualityTargets,
        blockingIssues, attempt}. Returns {filesModified, validationPassed,
        narrativeSummary}. Raises AgentError if the worker cannot run.
        """
        ...


class GateAgent(Protocol):
    def run_gate(self, gate_name: str, request: dict) -> Any:
        """Run one quality gate.

        request: {unitId, gateName, scopeFiles, filesModified, attempt}.
        Returns {gateName, allChecksPassed, blockingIssues, metrics}.
        Raises AgentError if the agent cannot run.
        """
        ...
