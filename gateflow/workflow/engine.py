"""Orchestration engine for plan execution.

Runs a plan to completion:
1. Requeue units an interrupted run left in flight
2. Promote Pending units whose blockers completed (skip those whose blockers failed)
3. Dispatch the scheduler's next batch to workers
4. Route each worker result through its quality gates
5. Commit Completed or Failed through the plan store, then loop

Every status change is persisted before the loop moves on, so a crash
never loses a completion and never re-runs a Completed unit.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from gateflow.agents.base import GateAgent, Worker
from gateflow.lib.config import EngineConfig
from gateflow.lib.constants import EXIT_OK, EXIT_UNITS_FAILED
from gateflow.lib.errors import GateflowError, RetryExhausted, TrackerError
from gateflow.lib.models import IN_FLIGHT_STATUSES, Plan, UnitStatus, WorkUnit
from gateflow.lib.profiles import GateTable
from gateflow.notifications import notify_complete, notify_escalation
from gateflow.runner.context import RunContext
from gateflow.runner.locking import run_lock
from gateflow.runner.plan_store import PlanStore
from gateflow.tracker.base import TaskTracker
from gateflow.workflow.dispatch import WorkerDispatcher
from gateflow.workflow.gates import GateRunner, attempt_history
from gateflow.workflow.scheduler import Scheduler
from gateflow.workflow.state_machine import TransitionRecorder

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """Outcome of a run."""
    plan_id: str
    statuses: dict[str, str] = field(default_factory=dict)
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    escalations: list[dict] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return EXIT_UNITS_FAILED if (self.failed or self.skipped) else EXIT_OK

    @property
    def status(self) -> str:
        return "failed" if (self.failed or self.skipped) else "passed"

    @classmethod
    def from_plan(cls, plan: Plan, escalations: list[dict]) -> "RunReport":
        return cls(
            plan_id=plan.plan_id,
            statuses={u.id: u.status.value for u in plan.units.values()},
            completed=[u.id for u in plan.with_status(UnitStatus.COMPLETED)],
            failed=[u.id for u in plan.with_status(UnitStatus.FAILED)],
            skipped=[u.id for u in plan.with_status(UnitStatus.SKIPPED)],
            escalations=list(escalations),
        )

    def to_dict(self) -> dict:
        return {
            "plan_id": self.plan_id,
            "status": self.status,
            "exit_code": self.exit_code,
            "units": dict(self.statuses),
            "completed": list(self.completed),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
            "escalations": list(self.escalations),
        }


class Orchestrator:
    """Per-plan control loop."""

    def __init__(
        self,
        plan: Plan,
        config: EngineConfig,
        worker: Worker,
        gate_agent: GateAgent,
        store: Optional[PlanStore] = None,
        gate_table: Optional[GateTable] = None,
        tracker: Optional[TaskTracker] = None,
        context: Optional[RunContext] = None,
    ):
        self.plan = plan
        self.config = config
        self.tracker = tracker
        self.context = context
        self.gate_table = gate_table or GateTable.default()

        self.recorder = TransitionRecorder(plan, store)
        self.scheduler = Scheduler(plan, self.recorder, config.max_parallel)
        self.dispatcher = WorkerDispatcher(worker, plan, config, context)
        self.gates = GateRunner(gate_agent, self.dispatcher, self.recorder, config, context)

        self.escalations: list[dict] = []
        self._lock = threading.Lock()

    def recover(self) -> list[str]:
        """Requeue units left Dispatched or GateRunning by an interrupted run."""
        requeued = []
        for unit in self.plan.units.values():
            if unit.status in IN_FLIGHT_STATUSES:
                self.recorder.move(unit, UnitStatus.READY, reason="recovered after interruption")
                requeued.append(unit.id)
        if requeued:
            logger.warning(f"[ENGINE] Requeued interrupted units: {requeued}")
            self._log(f"Requeued interrupted units: {', '.join(requeued)}")
        return requeued

    def run(self) -> RunReport:
        """Run until every unit is Completed, Failed or Skipped.

        Raises:
            PlanStoreError: If the store rejects a transition (halts the run)
            SchedulerStalled: If work remains that can never be scheduled
        """
        self._log(f"Starting run of plan {self.plan.plan_id} ({self.plan.strategy.value})")
        self.recover()

        with ThreadPoolExecutor(max_workers=self.config.max_parallel) as executor:
            futures: dict[Future, str] = {}
            while True:
                self.scheduler.promote()

                for unit in self.scheduler.next_batch():
                    self.recorder.move(unit, UnitStatus.DISPATCHED, reason="scheduled")
                    futures[executor.submit(self._process_unit, unit)] = unit.id

                if not futures:
                    if self.plan.is_finished():
                        break
                    self.scheduler.check_stalled()
                    continue

                done, _ = wait(futures, return_when=FIRST_COMPLETED)
                for future in done:
                    futures.pop(future)
                    # Store integrity errors surface here and halt the run
                    future.result()

        report = RunReport.from_plan(self.plan, self.escalations)
        logger.info(
            f"[ENGINE] Plan {self.plan.plan_id} finished: {len(report.completed)} completed, "
            f"{len(report.failed)} failed, {len(report.skipped)} skipped"
        )
        self._log(f"Run finished: {report.status}")
        if self.config.notify:
            notify_complete(self.plan.plan_id, len(report.completed), len(report.failed), len(report.skipped))
        return report

    def _process_unit(self, unit: WorkUnit) -> None:
        """Worker dispatch and gates for one Dispatched unit."""
        try:
            targets = self.gate_table.select(unit.scope_files).all_gates
            outcome = self.dispatcher.run(unit, targets)
            self.recorder.move(unit, UnitStatus.GATE_RUNNING, reason="worker result accepted")

            profile = self.gate_table.select(outcome.files_modified)
            self._log(
                f"Unit {unit.id} classified as {', '.join(profile.work_types)}: "
                f"gate1={profile.gate1} gate2={profile.gate2}"
            )
            self.gates.run(unit, profile, outcome.files_modified)

            self.recorder.move(unit, UnitStatus.COMPLETED, reason="all gates passed")
            self._log(f"Unit {unit.id} completed")
        except RetryExhausted as e:
            self._escalate(unit, e)
            return

        self._close_issue(unit)

    def _escalate(self, unit: WorkUnit, error: RetryExhausted) -> None:
        record = {
            "unit_id": unit.id,
            "plan_id": self.plan.plan_id,
            "reason": error.reason,
            "gate": error.gate_name,
            "dispatch_count": unit.dispatch_count,
            "history": attempt_history(unit),
            "escalated_at": datetime.now().isoformat(),
        }
        if error.gate_name is None and error.history:
            record["worker_attempts"] = error.history

        unit.escalation = record
        self.recorder.move(unit, UnitStatus.FAILED, reason=error.reason)
        with self._lock:
            self.escalations.append(record)

        logger.error(f"[ENGINE] Escalating {unit.id}: {error}")
        if self.context:
            self.context.write_escalation(unit.id, record)
            self.context.log(f"Escalated {unit.id}: {error}")
        if self.config.notify:
            notify_escalation(self.plan.plan_id, unit.id, error.reason)

    def _close_issue(self, unit: WorkUnit) -> None:
        if not (self.tracker and unit.issue_id and self.config.close_issues):
            return
        try:
            self.tracker.close_issue(unit.issue_id, comment=f"Completed in plan {self.plan.plan_id}")
        except TrackerError as e:
            logger.warning(f"[ENGINE] Could not close issue #{unit.issue_id} for {unit.id}: {e}")

    def _log(self, message: str) -> None:
        if self.context:
            self.context.log(message)


def run_plan(
    store: PlanStore,
    plan_id: str,
    config: EngineConfig,
    worker: Worker,
    gate_agent: GateAgent,
    gate_table: Optional[GateTable] = None,
    tracker: Optional[TaskTracker] = None,
) -> tuple[RunReport, RunContext]:
    """Load a plan and run it under the run lock, writing run artifacts.

    Raises:
        LockTimeout: If another run of the plan is active
        PlanStoreError: If the plan cannot be loaded or a write is rejected
    """
    with run_lock(store.state_dir, plan_id):
        plan = store.load(plan_id)
        ctx = RunContext.create(store.plans_dir, plan_id)
        orchestrator = Orchestrator(
            plan, config, worker, gate_agent,
            store=store, gate_table=gate_table, tracker=tracker, context=ctx,
        )
        try:
            report = orchestrator.run()
        except GateflowError as e:
            ctx.log(f"Run halted: {e}")
            ctx.write_result(plan, "halted", orchestrator.escalations, error=str(e))
            raise

        ctx.write_result(plan, report.status, report.escalations)
        return report, ctx


def reopen_units(store: PlanStore, plan_id: str, unit_ids: Optional[list[str]] = None) -> list[str]:
    """Send Failed units back to Pending with a fresh retry budget.

    Their gate history is kept. Units already Skipped because of them stay
    Skipped; Skipped is terminal.

    Raises:
        ValueError: If a named unit is unknown or not Failed
        LockTimeout: If the plan is being run
    """
    with run_lock(store.state_dir, plan_id):
        plan = store.load(plan_id)
        if unit_ids:
            for uid in unit_ids:
                if uid not in plan.units:
                    raise ValueError(f"Unknown unit '{uid}' in plan {plan_id}")
                if plan.units[uid].status is not UnitStatus.FAILED:
                    raise ValueError(f"Unit '{uid}' is {plan.units[uid].status.value}, not failed")
            targets = [plan.units[uid] for uid in unit_ids]
        else:
            targets = plan.with_status(UnitStatus.FAILED)

        recorder = TransitionRecorder(plan, store)
        for unit in targets:
            unit.escalation = None
            unit.budget_offset = len(unit.gate_results)
            recorder.move(unit, UnitStatus.PENDING, reason="operator retry")

    return [u.id for u in targets]
