"""
Unit scheduling for gateflow.

Decides which Pending units become Ready and which Ready units are
dispatched next. Never dispatches a unit before all of its blockers are
Completed, and never runs more than one unit at a time unless the plan's
strategy isolates units from each other.
"""

import logging

from gateflow.lib.errors import SchedulerStalled
from gateflow.lib.models import IN_FLIGHT_STATUSES, Plan, UnitStatus, WorkUnit
from gateflow.lib.scope import paths_overlap
from gateflow.workflow.state_machine import TransitionRecorder

logger = logging.getLogger(__name__)

SKIP_NOTE_PREFIX = "dependency_failed:"


def failed_blocker(unit: WorkUnit, plan: Plan) -> str | None:
    """First blocker that is Failed or Skipped, if any."""
    for dep in unit.blocked_by:
        blocker = plan.units.get(dep)
        if blocker and blocker.status in (UnitStatus.FAILED, UnitStatus.SKIPPED):
            return dep
    return None


def blockers_completed(unit: WorkUnit, plan: Plan) -> bool:
    return all(
        dep in plan.units and plan.units[dep].status is UnitStatus.COMPLETED
        for dep in unit.blocked_by
    )


def dispatch_order(plan: Plan, units: list[WorkUnit]) -> list[WorkUnit]:
    """Tie-break: lowest group number, then declaration order."""
    order = {uid: i for i, uid in enumerate(plan.units)}
    return sorted(units, key=lambda u: (u.group_number, order[u.id]))


def can_run_together(unit: WorkUnit, others: list[WorkUnit]) -> bool:
    """Isolation check for concurrent dispatch.

    Units may run concurrently only when no dependency edge joins them and
    their declared scopes are disjoint. An empty declared scope overlaps
    everything.
    """
    for other in others:
        if other.id in unit.blocked_by or unit.id in other.blocked_by:
            return False
        if not unit.scope_files or not other.scope_files:
            return False
        if paths_overlap(unit.scope_files, other.scope_files):
            return False
    return True


class Scheduler:
    """Eligibility and batch selection over a single plan."""

    def __init__(self, plan: Plan, recorder: TransitionRecorder, max_parallel: int = 1):
        self.plan = plan
        self.recorder = recorder
        self.max_parallel = max(1, max_parallel)

    def promote(self) -> tuple[list[str], list[str]]:
        """Move Pending units to Ready or Skipped.

        A unit becomes Ready when all its blockers are Completed, and Skipped
        when a blocker is Failed or Skipped (it could never become Ready).
        Skips cascade down the graph.

        Returns:
            (ready_ids, skipped_ids)
        """
        ready, skipped = [], []
        changed = True
        while changed:
            changed = False
            for unit in self.plan.with_status(UnitStatus.PENDING):
                dep = failed_blocker(unit, self.plan)
                if dep is not None:
                    unit.notes = f"{SKIP_NOTE_PREFIX}{dep}"
                    self.recorder.move(unit, UnitStatus.SKIPPED, reason=unit.notes)
                    skipped.append(unit.id)
                    changed = True
                elif blockers_completed(unit, self.plan):
                    self.recorder.move(unit, UnitStatus.READY, reason="blockers completed")
                    ready.append(unit.id)
                    changed = True

        if ready or skipped:
            logger.info(f"[SCHED] ready={ready} skipped={skipped}")
        return ready, skipped

    def in_flight(self) -> list[WorkUnit]:
        return [u for u in self.plan.units.values() if u.status in IN_FLIGHT_STATUSES]

    def next_batch(self) -> list[WorkUnit]:
        """Ready units to dispatch now, respecting the plan strategy."""
        in_flight = self.in_flight()
        ready = dispatch_order(self.plan, self.plan.with_status(UnitStatus.READY))
        if not ready:
            return []

        if not self.plan.strategy.allows_parallel:
            return [] if in_flight else ready[:1]

        capacity = self.max_parallel - len(in_flight)
        batch: list[WorkUnit] = []
        for unit in ready:
            if len(batch) >= capacity:
                break
            if can_run_together(unit, in_flight + batch):
                batch.append(unit)

        if batch:
            logger.debug(f"[SCHED] batch={[u.id for u in batch]} in_flight={[u.id for u in in_flight]}")
        return batch

    def check_stalled(self) -> None:
        """Raise SchedulerStalled if work remains but nothing can move."""
        remaining = self.plan.non_terminal()
        if not remaining or self.in_flight():
            return
        if self.plan.with_status(UnitStatus.READY):
            return
        raise SchedulerStalled([u.id for u in remaining])
