"""Work unit state machine using transitions library.

Provides the per-unit lifecycle:
- Explicit triggers (named actions)
- Guards (a unit cannot become ready or be dispatched before its blockers complete)
- After-change callback that mirrors the FSM state onto the WorkUnit

Usage:
    from gateflow.workflow.fsm import UnitFSM

    fsm = UnitFSM(unit, plan)
    fsm.mark_ready()    # pending -> ready
    fsm.dispatch()      # ready -> dispatched
    fsm.start_gates()   # dispatched -> gate_running
    fsm.complete()      # gate_running -> completed
"""

import logging
from typing import Callable, Optional

from transitions import Machine

from gateflow.lib.models import Plan, UnitStatus, WorkUnit

logger = logging.getLogger(__name__)


# State values must match UnitStatus enum
STATES = [s.value for s in UnitStatus]

# Transitions defined as (trigger, source, dest)
# Each trigger becomes a method on the FSM
TRANSITIONS = [
    # Dependency resolution
    {"trigger": "mark_ready", "source": "pending", "dest": "ready", "conditions": "blockers_completed"},
    {"trigger": "skip", "source": "pending", "dest": "skipped"},

    # Dispatch to a worker
    {"trigger": "dispatch", "source": "ready", "dest": "dispatched", "conditions": "blockers_completed"},

    # Worker returned a valid result
    {"trigger": "start_gates", "source": "dispatched", "dest": "gate_running"},

    # Gate failure sends the unit back to its worker with blocking issues
    {"trigger": "redispatch", "source": "gate_running", "dest": "dispatched"},

    # Outcomes
    {"trigger": "complete", "source": "gate_running", "dest": "completed"},
    {"trigger": "fail", "source": "gate_running", "dest": "failed"},
    {"trigger": "fail", "source": "dispatched", "dest": "failed"},  # Worker contract budget exhausted

    # Crash recovery: interrupted units go back to the queue
    {"trigger": "requeue", "source": "dispatched", "dest": "ready"},
    {"trigger": "requeue", "source": "gate_running", "dest": "ready"},

    # Operator retry of an escalated unit
    {"trigger": "reopen", "source": "failed", "dest": "pending"},
]


# Pre-computed lookup: (source, dest) -> trigger name
def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        key = (t["source"], t["dest"])
        if key not in lookup:
            lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


class UnitFSM:
    """State machine for a single work unit.

    Wraps the transitions library with unit-specific logic:
    - Initial state is the unit's current status
    - Guards consult the plan for blocker status
    - The unit's status follows every transition
    """

    def __init__(
        self,
        unit: WorkUnit,
        plan: Optional[Plan] = None,
        on_transition: Callable[[str, str, str], None] | None = None,
    ):
        """Initialize FSM for a unit.

        Args:
            unit: The unit whose status this machine drives
            plan: Plan used to check blockers; guards pass when omitted
            on_transition: Optional callback(from_state, to_state, trigger) called after transitions
        """
        self.unit = unit
        self.plan = plan
        self.on_transition = on_transition

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=unit.status.value,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def blockers_completed(self, event=None) -> bool:
        """Guard: every blocker of the unit is completed."""
        if self.plan is None:
            return True
        for dep in self.unit.blocked_by:
            blocker = self.plan.units.get(dep)
            if blocker is None or blocker.status is not UnitStatus.COMPLETED:
                logger.debug(f"[FSM] {self.unit.id}: blocker {dep} not completed")
                return False
        return True

    def on_state_change(self, event) -> None:
        """Callback after any state transition.

        Mirrors the new state onto the unit and logs the transition.
        """
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        self.unit.status = UnitStatus(to_state)
        logger.info(f"[FSM] {self.unit.id}: {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)
