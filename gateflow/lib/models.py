"""
Data models for plans, work units and gate results.

Plans are stored as a flat unit table. Group labels are back-references
only; the blocked_by edges are the only graph edges.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class UnitStatus(Enum):
    """All valid work unit states.

    Values match the FSM state strings.
    """

    PENDING = "pending"
    READY = "ready"
    DISPATCHED = "dispatched"
    GATE_RUNNING = "gate_running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset({UnitStatus.COMPLETED, UnitStatus.FAILED, UnitStatus.SKIPPED})
IN_FLIGHT_STATUSES = frozenset({UnitStatus.DISPATCHED, UnitStatus.GATE_RUNNING})


class Strategy(Enum):
    """Concurrency/isolation mode for a plan."""

    SINGLE_UNIT = "single-unit"
    SHARED_BRANCH = "shared-branch"
    ISOLATED_WORKTREES = "isolated-worktrees"

    @property
    def allows_parallel(self) -> bool:
        return self is Strategy.ISOLATED_WORKTREES


@dataclass
class SizeMetrics:
    """Estimated size of a work unit."""
    files: int = 0
    loc: int = 0
    hours: float = 0.0

    def to_dict(self) -> dict:
        return {"files": self.files, "loc": self.loc, "hours": self.hours}

    @classmethod
    def from_dict(cls, data: dict | None) -> "SizeMetrics":
        data = data or {}
        return cls(
            files=int(data.get("files", 0)),
            loc=int(data.get("loc", 0)),
            hours=float(data.get("hours", 0.0)),
        )


@dataclass(frozen=True)
class GateResult:
    """One gate execution attempt. Immutable once recorded."""
    gate_name: str
    passed: bool
    blocking_issues: tuple[str, ...] = ()
    metrics: dict[str, Any] = field(default_factory=dict)
    attempt_number: int = 1
    observed_files: tuple[str, ...] = ()  # Unit scope the gate examined

    def to_dict(self) -> dict:
        return {
            "gate_name": self.gate_name,
            "passed": self.passed,
            "blocking_issues": list(self.blocking_issues),
            "metrics": dict(self.metrics),
            "attempt_number": self.attempt_number,
            "observed_files": list(self.observed_files),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GateResult":
        return cls(
            gate_name=data["gate_name"],
            passed=bool(data["passed"]),
            blocking_issues=tuple(data.get("blocking_issues", [])),
            metrics=dict(data.get("metrics", {})),
            attempt_number=int(data.get("attempt_number", 1)),
            observed_files=tuple(data.get("observed_files", [])),
        )


@dataclass
class GateProfile:
    """Gates required for a classified changeset."""
    gate1: list[str] = field(default_factory=list)  # Blocking, run in order
    gate2: list[str] = field(default_factory=list)  # Run concurrently after gate1
    retry_limits: dict[str, int] = field(default_factory=dict)
    work_types: list[str] = field(default_factory=list)

    @property
    def all_gates(self) -> list[str]:
        return self.gate1 + [g for g in self.gate2 if g not in self.gate1]


@dataclass
class WorkUnit:
    """An atomic, independently dispatchable piece of work."""
    id: str
    title: str
    description: str = ""
    scope_files: list[str] = field(default_factory=list)
    group_number: int = 0
    group_index: str = ""                      # Dotted sibling label, e.g. "1.2"
    blocked_by: list[str] = field(default_factory=list)
    status: UnitStatus = UnitStatus.PENDING
    size: SizeMetrics = field(default_factory=SizeMetrics)
    issue_id: Optional[str] = None             # External tracker reference
    gate_results: list[GateResult] = field(default_factory=list)
    dispatch_count: int = 0
    escalation: Optional[dict] = None          # Failure record for the operator
    notes: str = ""
    budget_offset: int = 0                     # Gate results before this index predate the last reopen

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def effective_file_count(self) -> int:
        return max(self.size.files, len(self.scope_files))

    def last_result(self, gate_name: str) -> Optional[GateResult]:
        """Most recent recorded result for a gate, if any."""
        for result in reversed(self.gate_results):
            if result.gate_name == gate_name:
                return result
        return None

    def attempts_for(self, gate_name: str) -> int:
        return sum(1 for r in self.gate_results if r.gate_name == gate_name)

    def failures_for(self, gate_name: str) -> int:
        """Failures counted against the current retry budget."""
        return sum(
            1 for r in self.gate_results[self.budget_offset:]
            if r.gate_name == gate_name and not r.passed
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "scope_files": list(self.scope_files),
            "group_number": self.group_number,
            "group_index": self.group_index,
            "blocked_by": list(self.blocked_by),
            "status": self.status.value,
            "size": self.size.to_dict(),
            "issue_id": self.issue_id,
            "gate_results": [r.to_dict() for r in self.gate_results],
            "dispatch_count": self.dispatch_count,
            "escalation": self.escalation,
            "notes": self.notes,
            "budget_offset": self.budget_offset,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WorkUnit":
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description", ""),
            scope_files=list(data.get("scope_files", [])),
            group_number=int(data.get("group_number", 0)),
            group_index=data.get("group_index", ""),
            blocked_by=list(data.get("blocked_by", [])),
            status=UnitStatus(data.get("status", UnitStatus.PENDING.value)),
            size=SizeMetrics.from_dict(data.get("size")),
            issue_id=data.get("issue_id"),
            gate_results=[GateResult.from_dict(r) for r in data.get("gate_results", [])],
            dispatch_count=int(data.get("dispatch_count", 0)),
            escalation=data.get("escalation"),
            notes=data.get("notes", ""),
            budget_offset=int(data.get("budget_offset", 0)),
        )


@dataclass
class Plan:
    """The full execution unit: a flat table of work units plus a strategy."""
    plan_id: str
    units: dict[str, WorkUnit] = field(default_factory=dict)  # Declaration order
    strategy: Strategy = Strategy.SINGLE_UNIT
    created: str = field(default_factory=lambda: datetime.now().isoformat())
    source: str = ""

    def get(self, unit_id: str) -> WorkUnit:
        return self.units[unit_id]

    def non_terminal(self) -> list[WorkUnit]:
        return [u for u in self.units.values() if not u.is_terminal]

    def with_status(self, *statuses: UnitStatus) -> list[WorkUnit]:
        return [u for u in self.units.values() if u.status in statuses]

    def edges(self) -> list[tuple[str, str]]:
        """Dependency edges as (blocker, blocked) pairs in declaration order."""
        return [(dep, u.id) for u in self.units.values() for dep in u.blocked_by]

    def is_finished(self) -> bool:
        return not self.non_terminal()

    def to_dict(self) -> dict:
        from gateflow.lib.constants import PLAN_FILE_VERSION

        return {
            "version": PLAN_FILE_VERSION,
            "plan_id": self.plan_id,
            "strategy": self.strategy.value,
            "created": self.created,
            "source": self.source,
            "units": [u.to_dict() for u in self.units.values()],
            "edges": [list(e) for e in self.edges()],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Plan":
        units = [WorkUnit.from_dict(u) for u in data.get("units", [])]
        return cls(
            plan_id=data["plan_id"],
            units={u.id: u for u in units},
            strategy=Strategy(data["strategy"]),
            created=data.get("created", ""),
            source=data.get("source", ""),
        )
