"""
Worker dispatch with contract and scope enforcement.

A worker result is trusted only after it validates against
worker_result.schema.json and stays inside the unit's declared scope.
Malformed results and scope violations are retried within their own
budgets; exhausting either raises RetryExhausted.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from gateflow.agents.base import Worker
from gateflow.lib.config import EngineConfig
from gateflow.lib.constants import RESTRICTION_EXCLUSIVE, RESTRICTION_SHARED
from gateflow.lib.errors import AgentError, RetryExhausted, ScopeViolation, ValidationError
from gateflow.lib.models import Plan, Strategy, WorkUnit
from gateflow.lib.scope import outside_scope
from gateflow.lib.validate import validate_contract
from gateflow.runner.context import RunContext

logger = logging.getLogger(__name__)


@dataclass
class WorkerOutcome:
    """A validated, in-scope worker result."""
    files_modified: list[str]
    validation_passed: bool
    summary: str


class WorkerDispatcher:
    def __init__(self, worker: Worker, plan: Plan, config: EngineConfig,
                 context: Optional[RunContext] = None):
        self.worker = worker
        self.plan = plan
        self.config = config
        self.context = context

    @property
    def restriction(self) -> str:
        if self.plan.strategy is Strategy.ISOLATED_WORKTREES:
            return RESTRICTION_EXCLUSIVE
        return RESTRICTION_SHARED

    def build_request(self, unit: WorkUnit, quality_targets: list[str],
                      blocking_issues: list[str], attempt: int) -> dict:
        return {
            "unitId": unit.id,
            "scopeFiles": list(unit.scope_files),
            "restriction": self.restriction,
            "qualityTargets": list(quality_targets),
            "blockingIssues": list(blocking_issues),
            "attempt": attempt,
        }

    def run(self, unit: WorkUnit, quality_targets: list[str],
            blocking_issues: Optional[list[str]] = None) -> WorkerOutcome:
        """Run the worker until it returns a valid, in-scope result.

        On success the files it modified are merged into unit.scope_files.

        Raises:
            RetryExhausted: If the contract or scope budget runs out
        """
        declared = list(unit.scope_files)
        base_issues = list(blocking_issues or [])
        issues = list(base_issues)
        history: list[dict] = []
        contract_failures = 0
        scope_failures = 0

        while True:
            unit.dispatch_count += 1
            attempt = unit.dispatch_count
            request = self.build_request(unit, quality_targets, issues, attempt)
            self._log(f"Dispatch {unit.id} attempt {attempt} ({len(issues)} blocking issue(s))")

            try:
                raw = self.worker.execute(request)
                data = validate_contract(raw, "worker_result", f"worker for unit {unit.id}")
            except (AgentError, ValidationError) as e:
                contract_failures += 1
                history.append({"attempt": attempt, "error": str(e)})
                logger.warning(f"[DISPATCH] {unit.id}: {e}")
                self._log(f"Worker error for {unit.id}: {e}")
                if contract_failures > self.config.worker_retry_limit:
                    raise RetryExhausted(unit.id, f"worker failed: {e}", history=history) from e
                continue

            files = list(data["filesModified"])
            if declared:
                stray = outside_scope(files, declared)
                if stray:
                    violation = ScopeViolation(unit.id, stray)
                    scope_failures += 1
                    history.append({"attempt": attempt, "error": str(violation)})
                    logger.warning(f"[DISPATCH] {violation}")
                    self._log(str(violation))
                    if scope_failures > self.config.scope_violation_limit:
                        raise RetryExhausted(unit.id, str(violation), history=history)
                    issues = base_issues + [
                        f"Scope violation: revert changes to {', '.join(stray)}; "
                        f"only {', '.join(declared)} may be modified"
                    ]
                    continue

            if not data["validationPassed"]:
                logger.warning(f"[DISPATCH] {unit.id}: worker reports its own validation failed")

            for path in files:
                if path not in unit.scope_files:
                    unit.scope_files.append(path)

            self._log(f"Worker finished {unit.id}: {len(files)} file(s) modified")
            return WorkerOutcome(
                files_modified=files,
                validation_passed=data["validationPassed"],
                summary=data["narrativeSummary"],
            )

    def _log(self, message: str) -> None:
        if self.context:
            self.context.log(message)
