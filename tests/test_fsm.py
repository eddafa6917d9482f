"""Tests for gateflow.workflow.fsm module."""

import pytest
from transitions import MachineError

from gateflow.lib.models import UnitStatus
from gateflow.workflow.fsm import STATES, TRANSITIONS, TRIGGER_FOR, UnitFSM
from tests.fakes import make_plan, make_unit


class TestFSMStates:
    """Tests for FSM state definitions."""

    def test_states_match_unit_status(self):
        assert set(STATES) == {s.value for s in UnitStatus}

    def test_terminal_states_have_no_exits_except_reopen(self):
        exits = {(t["source"], t["trigger"]) for t in TRANSITIONS}
        assert not any(src in ("completed", "skipped") for src, _ in exits)
        assert [trig for src, trig in exits if src == "failed"] == ["reopen"]

    def test_trigger_lookup(self):
        assert TRIGGER_FOR[("pending", "ready")] == "mark_ready"
        assert TRIGGER_FOR[("gate_running", "dispatched")] == "redispatch"
        assert TRIGGER_FOR[("dispatched", "failed")] == "fail"
        assert ("pending", "dispatched") not in TRIGGER_FOR


class TestUnitFSM:
    """Transitions and guards."""

    def test_initial_state_from_unit(self):
        unit = make_unit("1", status=UnitStatus.GATE_RUNNING)
        assert UnitFSM(unit).state == "gate_running"

    def test_happy_path_updates_unit_status(self):
        unit = make_unit("1")
        fsm = UnitFSM(unit, make_plan([unit]))
        fsm.mark_ready()
        fsm.dispatch()
        fsm.start_gates()
        fsm.complete()
        assert unit.status is UnitStatus.COMPLETED

    def test_guard_blocks_ready_until_blockers_complete(self):
        blocker = make_unit("1")
        unit = make_unit("2", blocked_by=["1"])
        plan = make_plan([blocker, unit])
        fsm = UnitFSM(unit, plan)

        assert fsm.mark_ready() is False
        assert unit.status is UnitStatus.PENDING

        blocker.status = UnitStatus.COMPLETED
        assert fsm.mark_ready() is True
        assert unit.status is UnitStatus.READY

    def test_guard_blocks_dispatch_when_blocker_regressed(self):
        blocker = make_unit("1", status=UnitStatus.FAILED)
        unit = make_unit("2", blocked_by=["1"], status=UnitStatus.READY)
        fsm = UnitFSM(unit, make_plan([blocker, unit]))
        assert fsm.dispatch() is False
        assert unit.status is UnitStatus.READY

    def test_invalid_trigger_raises(self):
        unit = make_unit("1", status=UnitStatus.COMPLETED)
        fsm = UnitFSM(unit)
        with pytest.raises(MachineError):
            fsm.dispatch()

    def test_on_transition_callback(self):
        calls = []
        unit = make_unit("1", status=UnitStatus.GATE_RUNNING)
        fsm = UnitFSM(unit, on_transition=lambda a, b, t: calls.append((a, b, t)))
        fsm.redispatch()
        assert calls == [("gate_running", "dispatched", "redispatch")]

    def test_requeue_from_gate_running(self):
        unit = make_unit("1", status=UnitStatus.GATE_RUNNING)
        UnitFSM(unit).requeue()
        assert unit.status is UnitStatus.READY
