"""
Run context and run directory management for gateflow.
"""

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from gateflow.lib.models import Plan
from gateflow.lib.validate import validate_before_write


@dataclass
class RunContext:
    """Context for a single run of a plan."""
    run_id: str
    run_dir: Path
    plan_id: str
    start_time: datetime = field(default_factory=datetime.now)
    _log_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def create(cls, plans_dir: Path, plan_id: str) -> 'RunContext':
        """Create a new run context with a fresh run directory."""
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        run_id = f"{timestamp}_{plan_id}"

        run_dir = plans_dir / plan_id / "runs" / run_id
        run_dir.mkdir(parents=True, exist_ok=True)

        return cls(run_id=run_id, run_dir=run_dir, plan_id=plan_id)

    def log(self, message: str):
        """Append to run log. Safe to call from worker threads."""
        timestamp = datetime.now().isoformat()
        with self._log_lock:
            with open(self.run_dir / "run.log", "a") as f:
                f.write(f"[{timestamp}] {message}\n")

    def write_escalation(self, unit_id: str, record: dict) -> Path:
        """Write escalation-<unit>.json for the operator."""
        path = self.run_dir / f"escalation-{unit_id}.json"
        path.write_text(json.dumps(record, indent=2))
        return path

    def write_result(self, plan: Plan, status: str, escalations: list[dict] | None = None,
                     error: str | None = None) -> dict:
        """Write result.json summarising the run."""
        end_time = datetime.now()
        duration = (end_time - self.start_time).total_seconds()

        result = {
            "version": 1,
            "plan_id": plan.plan_id,
            "run_id": self.run_id,
            "status": status,
            "strategy": plan.strategy.value,
            "units": {u.id: u.status.value for u in plan.units.values()},
            "escalations": escalations or [],
            "timestamps": {
                "started": self.start_time.isoformat(),
                "ended": end_time.isoformat(),
                "duration_seconds": duration,
            },
        }
        if error:
            result["error"] = error

        validate_before_write(result, "result", self.run_dir / "result.json")

        (self.run_dir / "result.json").write_text(json.dumps(result, indent=2))
        return result
