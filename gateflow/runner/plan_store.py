"""
Durable plan storage for gateflow.

Plans are stored as JSON in:
  <state_dir>/plans/<plan_id>/plan.json
Run artifacts live beside them in:
  <state_dir>/plans/<plan_id>/runs/<run_id>/
Finished plans are moved, never deleted, to:
  <state_dir>/plans/_archived/<plan_id>/

Every write replaces plan.json atomically (temp file + fsync + rename) under
the plan lock, so a crash leaves either the old or the new plan on disk.
"""

import json
import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path

from gateflow.lib.constants import ARCHIVE_DIR_NAME
from gateflow.lib.errors import (
    CorruptPlan,
    InvalidTransition,
    PlanNotFinished,
    PlanNotFound,
    ValidationError,
)
from gateflow.lib.models import Plan, UnitStatus, WorkUnit
from gateflow.lib.validate import validate, validate_before_write
from gateflow.runner.locking import plan_lock

logger = logging.getLogger(__name__)

PLAN_FILE_NAME = "plan.json"


class PlanStore:
    """Single source of truth for plan state."""

    def __init__(self, state_dir: Path, lock_timeout: float = 60):
        self.state_dir = Path(state_dir)
        self.lock_timeout = lock_timeout

    @property
    def plans_dir(self) -> Path:
        return self.state_dir / "plans"

    @property
    def archive_dir(self) -> Path:
        return self.plans_dir / ARCHIVE_DIR_NAME

    def plan_dir(self, plan_id: str) -> Path:
        return self.plans_dir / plan_id

    def plan_path(self, plan_id: str) -> Path:
        return self.plan_dir(plan_id) / PLAN_FILE_NAME

    def exists(self, plan_id: str) -> bool:
        return self.plan_path(plan_id).exists()

    def list_plans(self) -> list[str]:
        """List IDs of active (non-archived) plans."""
        if not self.plans_dir.exists():
            return []
        return sorted(
            d.name for d in self.plans_dir.iterdir()
            if d.is_dir() and not d.name.startswith("_") and (d / PLAN_FILE_NAME).exists()
        )

    def list_archived(self) -> list[str]:
        if not self.archive_dir.exists():
            return []
        return sorted(d.name for d in self.archive_dir.iterdir() if d.is_dir())

    # --- Read/write ---

    def save(self, plan: Plan) -> None:
        """Write the full plan atomically."""
        with plan_lock(self.state_dir, plan.plan_id, self.lock_timeout):
            self._write(plan)
        logger.info(f"[STORE] Saved plan {plan.plan_id} ({len(plan.units)} units)")

    def load(self, plan_id: str) -> Plan:
        """Reconstruct a plan from disk.

        Raises:
            PlanNotFound: If no plan.json exists
            CorruptPlan: If the file cannot be parsed or is inconsistent
        """
        return self._read(plan_id)

    def record_transition(
        self,
        plan_id: str,
        unit_id: str,
        from_status: UnitStatus,
        to_status: UnitStatus,
        unit: WorkUnit | None = None,
    ) -> None:
        """Persist a status transition, checked against the persisted status.

        If unit is given, its other fields (dispatch count, scope, gate results,
        escalation) are written together with the new status.

        Raises:
            InvalidTransition: If the persisted status is not from_status, or the
                FSM has no edge from_status -> to_status
        """
        from gateflow.workflow.fsm import TRIGGER_FOR

        if (from_status.value, to_status.value) not in TRIGGER_FOR:
            raise InvalidTransition(unit_id, from_status.value, to_status.value)

        with plan_lock(self.state_dir, plan_id, self.lock_timeout):
            plan = self._read(plan_id)
            persisted = plan.units.get(unit_id)
            if persisted is None:
                raise InvalidTransition(
                    unit_id, from_status.value, to_status.value, "unit not in persisted plan"
                )
            if persisted.status is not from_status:
                raise InvalidTransition(
                    unit_id, from_status.value, to_status.value,
                    f"persisted status is {persisted.status.value}"
                )

            if unit is not None:
                persisted = WorkUnit.from_dict(unit.to_dict())
                plan.units[unit_id] = persisted
            persisted.status = to_status
            self._write(plan)

        logger.debug(f"[STORE] {plan_id}/{unit_id}: {from_status.value} -> {to_status.value}")

    def record_unit(self, plan_id: str, unit: WorkUnit) -> None:
        """Persist a unit's non-status fields. Status only changes via record_transition."""
        with plan_lock(self.state_dir, plan_id, self.lock_timeout):
            plan = self._read(plan_id)
            persisted = plan.units.get(unit.id)
            if persisted is None:
                raise CorruptPlan(plan_id, f"unit {unit.id} missing from persisted plan")
            updated = WorkUnit.from_dict(unit.to_dict())
            updated.status = persisted.status
            plan.units[unit.id] = updated
            self._write(plan)

    def archive(self, plan_id: str, force: bool = False) -> Path:
        """Move a finished plan (and its runs) into the archive.

        Raises:
            PlanNotFinished: If non-terminal units remain and force is False
        """
        with plan_lock(self.state_dir, plan_id, self.lock_timeout):
            plan = self._read(plan_id)
            pending = [u.id for u in self.resumable_units(plan)]
            if pending and not force:
                raise PlanNotFinished(plan_id, pending)

            dest = self.archive_dir / plan_id
            if dest.exists():
                dest = self.archive_dir / f"{plan_id}-{datetime.now().strftime('%Y%m%d-%H%M%S')}"
            self.archive_dir.mkdir(parents=True, exist_ok=True)
            shutil.move(str(self.plan_dir(plan_id)), str(dest))

        logger.info(f"[STORE] Archived plan {plan_id} to {dest}")
        return dest

    @staticmethod
    def resumable_units(plan: Plan) -> list[WorkUnit]:
        """Units that still require work after a restart."""
        return plan.non_terminal()

    # --- Internals (callers hold the lock for writes) ---

    def _read(self, plan_id: str) -> Plan:
        path = self.plan_path(plan_id)
        if not path.exists():
            raise PlanNotFound(plan_id)

        try:
            data = json.loads(path.read_text())
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CorruptPlan(plan_id, f"invalid JSON: {e}") from None

        try:
            validate(data, "plan")
        except ValidationError as e:
            raise CorruptPlan(plan_id, str(e)) from None

        if data["plan_id"] != plan_id:
            raise CorruptPlan(plan_id, f"file declares plan_id '{data['plan_id']}'")

        ids = [u["id"] for u in data["units"]]
        if len(ids) != len(set(ids)):
            raise CorruptPlan(plan_id, "duplicate unit ids")

        known = set(ids)
        derived = set()
        for u in data["units"]:
            for dep in u["blocked_by"]:
                if dep not in known:
                    raise CorruptPlan(plan_id, f"unit {u['id']} blocked by unknown unit {dep}")
                derived.add((dep, u["id"]))
        if {tuple(e) for e in data["edges"]} != derived:
            raise CorruptPlan(plan_id, "edge list does not match blocked_by")

        return Plan.from_dict(data)

    def _write(self, plan: Plan) -> None:
        path = self.plan_path(plan.plan_id)
        data = plan.to_dict()
        validate_before_write(data, "plan", path)

        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".plan-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(json.dumps(data, indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
