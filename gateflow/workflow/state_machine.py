"""Work unit transitions with validation and persistence.

Thin layer over the FSM in fsm.py:
- transition() validates and applies a status change in memory
- TransitionRecorder applies a change and makes it durable in the plan store

Usage:
    from gateflow.workflow.state_machine import transition, UnitStatus

    transition(unit, UnitStatus.READY, plan=plan, reason="blockers done")
"""

import logging
import threading
from typing import TYPE_CHECKING, Optional

from gateflow.lib.errors import InvalidTransition
from gateflow.lib.models import Plan, UnitStatus, WorkUnit

if TYPE_CHECKING:
    from gateflow.runner.plan_store import PlanStore

logger = logging.getLogger(__name__)


def transition(
    unit: WorkUnit,
    to_status: UnitStatus,
    plan: Optional[Plan] = None,
    reason: str = "",
) -> None:
    """Transition a unit to a new status with validation.

    Args:
        unit: Unit to transition (its status is updated in place)
        to_status: Target status
        plan: Plan used for blocker guards
        reason: Optional reason for the transition (for logging)

    Raises:
        InvalidTransition: If the FSM has no such edge or a guard rejects it
    """
    from gateflow.workflow.fsm import UnitFSM, TRIGGER_FOR

    current = unit.status.value
    reason_str = f" ({reason})" if reason else ""

    trigger = TRIGGER_FOR.get((current, to_status.value))
    if trigger is None:
        raise InvalidTransition(unit.id, current, to_status.value)

    fsm = UnitFSM(unit, plan)
    logger.debug(f"[STATE] {unit.id}: {current} -> {to_status.value}{reason_str}")
    if not getattr(fsm, trigger)():
        raise InvalidTransition(unit.id, current, to_status.value, "blockers not completed")


class TransitionRecorder:
    """Applies unit transitions in memory and commits them to the plan store.

    The in-memory change is rolled back if the store rejects it, so the
    caller never proceeds on state that did not become durable.
    """

    def __init__(self, plan: Plan, store: Optional["PlanStore"] = None):
        self.plan = plan
        self.store = store
        self._lock = threading.Lock()

    def move(self, unit: WorkUnit, to_status: UnitStatus, reason: str = "") -> None:
        """Transition a unit and persist the change.

        Raises:
            InvalidTransition: If the FSM or the persisted state rejects the move
        """
        with self._lock:
            from_status = unit.status
            transition(unit, to_status, plan=self.plan, reason=reason)
            if self.store is None:
                return
            try:
                self.store.record_transition(self.plan.plan_id, unit.id, from_status, to_status, unit=unit)
            except Exception:
                unit.status = from_status
                raise

    def save_unit(self, unit: WorkUnit) -> None:
        """Persist a unit's gate results, scope and escalation record."""
        if self.store is None:
            return
        with self._lock:
            self.store.record_unit(self.plan.plan_id, unit)
