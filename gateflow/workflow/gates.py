"""
Quality gate runner.

Two stages per unit:
- gate1: blocking gates, run in order. A failure sends the unit back to its
  worker with that gate's blocking issues, then gate1 runs again.
- gate2: run concurrently once gate1 passes. Failures are merged into one
  redispatch, then only gates that failed or whose observed files the fix
  touched run again.

A gate that passed is not re-executed while none of the files it observed
have changed (dirty-bit). Each gate may fail retry_limits[gate] times; the
next failure exhausts the unit.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional

from gateflow.agents.base import GateAgent
from gateflow.lib.config import EngineConfig
from gateflow.lib.errors import AgentError, GateFailure, RetryExhausted, ValidationError
from gateflow.lib.models import GateProfile, GateResult, UnitStatus, WorkUnit
from gateflow.lib.scope import paths_overlap
from gateflow.lib.validate import validate_contract
from gateflow.runner.context import RunContext
from gateflow.workflow.dispatch import WorkerDispatcher
from gateflow.workflow.state_machine import TransitionRecorder

logger = logging.getLogger(__name__)


def is_clean(unit: WorkUnit, gate_name: str, changed_files: list[str]) -> bool:
    """True if the gate's last run passed and the latest changes missed its observed files."""
    last = unit.last_result(gate_name)
    if last is None or not last.passed:
        return False
    if not last.observed_files:
        return False
    return not paths_overlap(last.observed_files, changed_files)


def attempt_history(unit: WorkUnit) -> list[dict]:
    """Every gate result recorded for the unit, oldest first."""
    return [r.to_dict() for r in unit.gate_results]


class GateRunner:
    def __init__(self, gate_agent: GateAgent, dispatcher: WorkerDispatcher,
                 recorder: TransitionRecorder, config: EngineConfig,
                 context: Optional[RunContext] = None):
        self.gate_agent = gate_agent
        self.dispatcher = dispatcher
        self.recorder = recorder
        self.config = config
        self.context = context

    def run(self, unit: WorkUnit, profile: GateProfile, changed_files: list[str]) -> None:
        """Drive a GateRunning unit through every gate in its profile.

        Returns when all gates pass. The unit may pass through Dispatched
        again on the way (worker redispatch after a failure).

        Raises:
            RetryExhausted: If a gate's budget runs out or a gate agent keeps
                returning malformed responses
        """
        changed = list(changed_files)
        changed = self._run_blocking(unit, profile, changed)
        self._run_parallel(unit, profile, changed)
        self._log(f"All gates passed for {unit.id}")

    def retry_limit(self, profile: GateProfile, gate_name: str) -> int:
        return profile.retry_limits.get(gate_name, self.config.default_retry_limit)

    # --- Stages ---

    def _run_blocking(self, unit: WorkUnit, profile: GateProfile, changed: list[str]) -> list[str]:
        while True:
            failed = None
            for gate in profile.gate1:
                if is_clean(unit, gate, changed):
                    logger.info(f"[GATE] {unit.id}/{gate}: unchanged since pass, skipping")
                    continue
                result = self._invoke(unit, gate, changed)
                self._record(unit, result)
                if not result.passed:
                    failed = result
                    break

            if failed is None:
                return changed

            self._check_budget(unit, profile, failed)
            changed = self._redispatch(unit, profile, list(failed.blocking_issues))

    def _run_parallel(self, unit: WorkUnit, profile: GateProfile, changed: list[str]) -> None:
        while True:
            to_run = [g for g in profile.gate2 if not is_clean(unit, g, changed)]
            for gate in profile.gate2:
                if gate not in to_run:
                    logger.info(f"[GATE] {unit.id}/{gate}: unchanged since pass, skipping")
            if not to_run:
                return

            results: dict[str, GateResult] = {}
            exhausted: Optional[RetryExhausted] = None
            with ThreadPoolExecutor(max_workers=len(to_run)) as executor:
                futures = {executor.submit(self._invoke, unit, g, changed): g for g in to_run}
                for future in as_completed(futures):
                    try:
                        results[futures[future]] = future.result()
                    except RetryExhausted as e:
                        exhausted = exhausted or e

            for gate in to_run:
                if gate in results:
                    self._record(unit, results[gate])
            if exhausted:
                exhausted.history = attempt_history(unit)
                raise exhausted

            failures = [results[g] for g in to_run if not results[g].passed]
            if not failures:
                return

            for failure in failures:
                self._check_budget(unit, profile, failure)

            issues: list[str] = []
            for failure in failures:
                for issue in failure.blocking_issues:
                    if issue not in issues:
                        issues.append(issue)
            changed = self._redispatch(unit, profile, issues)

    # --- Single gate ---

    def _invoke(self, unit: WorkUnit, gate: str, changed: list[str]) -> GateResult:
        """Run one gate attempt. Does not mutate the unit."""
        attempt = unit.attempts_for(gate) + 1
        request = {
            "unitId": unit.id,
            "gateName": gate,
            "scopeFiles": list(unit.scope_files),
            "filesModified": list(changed),
            "attempt": attempt,
        }

        malformed = 0
        while True:
            try:
                raw = self.gate_agent.run_gate(gate, request)
                data = validate_contract(raw, "gate_response", f"gate {gate}")
                if data["gateName"] != gate:
                    raise ValidationError("gate_response", f"gate {gate} answered as '{data['gateName']}'")
                break
            except ValidationError as e:
                malformed += 1
                logger.warning(f"[GATE] {unit.id}/{gate}: malformed response ({malformed}): {e}")
                if malformed > self.config.gate_validation_retries:
                    raise RetryExhausted(
                        unit.id, f"malformed gate response: {e}", gate_name=gate,
                        history=attempt_history(unit),
                    ) from e
            except AgentError as e:
                logger.warning(f"[GATE] {unit.id}/{gate}: agent error: {e}")
                return GateResult(
                    gate_name=gate,
                    passed=False,
                    blocking_issues=(f"{gate} could not complete: {e}",),
                    attempt_number=attempt,
                    observed_files=tuple(unit.scope_files),
                )

        issues = tuple(data["blockingIssues"])
        passed = data["allChecksPassed"]
        if not passed and not issues:
            issues = (f"{gate} reported failure without blocking issues",)
        elif passed and issues:
            logger.warning(f"[GATE] {unit.id}/{gate}: passed with {len(issues)} non-blocking note(s)")

        metrics = dict(data["metrics"])
        observed = metrics.get("observedFiles")
        if not (isinstance(observed, list) and all(isinstance(p, str) for p in observed)):
            observed = unit.scope_files

        return GateResult(
            gate_name=gate,
            passed=passed,
            blocking_issues=issues,
            metrics=metrics,
            attempt_number=attempt,
            observed_files=tuple(observed),
        )

    def _record(self, unit: WorkUnit, result: GateResult) -> None:
        unit.gate_results.append(result)
        self.recorder.save_unit(unit)
        status = "passed" if result.passed else f"failed ({len(result.blocking_issues)} issue(s))"
        logger.info(f"[GATE] {unit.id}/{result.gate_name} attempt {result.attempt_number}: {status}")
        self._log(f"Gate {result.gate_name} for {unit.id} attempt {result.attempt_number}: {status}")

    def _check_budget(self, unit: WorkUnit, profile: GateProfile, failed: GateResult) -> None:
        limit = self.retry_limit(profile, failed.gate_name)
        failures = unit.failures_for(failed.gate_name)
        if failures > limit:
            failure = GateFailure(failed.gate_name, list(failed.blocking_issues))
            raise RetryExhausted(
                unit.id,
                f"{failure} ({failures} failures, limit {limit})",
                gate_name=failed.gate_name,
                history=attempt_history(unit),
            )

    def _redispatch(self, unit: WorkUnit, profile: GateProfile, issues: list[str]) -> list[str]:
        self.recorder.move(unit, UnitStatus.DISPATCHED, reason="gate failure")
        outcome = self.dispatcher.run(unit, profile.all_gates, issues)
        self.recorder.move(unit, UnitStatus.GATE_RUNNING, reason="worker fix returned")
        return outcome.files_modified

    def _log(self, message: str) -> None:
        if self.context:
            self.context.log(message)
