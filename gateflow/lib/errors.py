"""
Error taxonomy for gateflow.

Structural errors (PlanBuildError subclasses) are raised before any dispatch.
Per-unit runtime errors are recovered up to their budget. Plan store errors
always halt the current run.
"""


class GateflowError(Exception):
    """Base class for all gateflow errors."""


# --- Plan build (structural, fatal to plan acceptance) ---

class PlanBuildError(GateflowError):
    """The decomposition cannot be turned into an acceptable plan."""


class CyclicDependency(PlanBuildError):
    """The blocked_by graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cyclic dependency: {' -> '.join(cycle)}")


class OversizedUnit(PlanBuildError):
    """A unit exceeds the fixed size ceilings and must be split."""

    def __init__(self, unit_id: str, violations: list[str]):
        self.unit_id = unit_id
        self.violations = violations
        super().__init__(f"Unit {unit_id} is oversized: {'; '.join(violations)}")


class UnknownDependency(PlanBuildError):
    """A unit is blocked by an id that does not exist in the input."""

    def __init__(self, unit_id: str, missing: str):
        self.unit_id = unit_id
        self.missing = missing
        super().__init__(f"Unit {unit_id} is blocked by unknown id '{missing}'")


# --- Contracts ---

class ValidationError(GateflowError):
    """Data failed schema validation (plan file, worker result, gate response)."""

    def __init__(self, schema_name: str, message: str, path: str | None = None):
        self.schema_name = schema_name
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


class ScopeViolation(GateflowError):
    """A worker modified files outside its declared scope."""

    def __init__(self, unit_id: str, files: list[str]):
        self.unit_id = unit_id
        self.files = files
        super().__init__(f"Unit {unit_id} modified files outside its scope: {', '.join(files)}")


class AgentError(GateflowError):
    """A worker or gate agent could not produce a result (crash, timeout)."""


class ProfileConflict(GateflowError):
    """Two gate profiles define different retry limits for the same gate."""

    def __init__(self, gate_name: str, limits: list[int]):
        self.gate_name = gate_name
        self.limits = limits
        super().__init__(
            f"Conflicting retry limits for gate '{gate_name}': {sorted(set(limits))}"
        )


# --- Gate outcomes ---

class GateFailure(GateflowError):
    """A gate reported blocking issues."""

    def __init__(self, gate_name: str, blocking_issues: list[str]):
        self.gate_name = gate_name
        self.blocking_issues = blocking_issues
        super().__init__(f"Gate {gate_name} failed with {len(blocking_issues)} blocking issue(s)")


class RetryExhausted(GateflowError):
    """A retry budget ran out. The unit becomes Failed and is escalated."""

    def __init__(self, unit_id: str, reason: str, gate_name: str | None = None,
                 history: list[dict] | None = None):
        self.unit_id = unit_id
        self.reason = reason
        self.gate_name = gate_name
        self.history = history or []
        where = f" at gate {gate_name}" if gate_name else ""
        super().__init__(f"Unit {unit_id} exhausted retries{where}: {reason}")


# --- Plan store integrity (always fatal to the run) ---

class PlanStoreError(GateflowError):
    """Plan store integrity error."""


class InvalidTransition(PlanStoreError):
    """Raised when attempting an invalid or stale status transition."""

    def __init__(self, unit_id: str, from_status: str, to_status: str, detail: str = ""):
        self.unit_id = unit_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for {unit_id}: {from_status} -> {to_status}"
            + (f" ({detail})" if detail else "")
        )


class CorruptPlan(PlanStoreError):
    """The persisted plan cannot be parsed or is internally inconsistent."""

    def __init__(self, ref: str, reason: str):
        self.ref = ref
        self.reason = reason
        super().__init__(f"Corrupt plan '{ref}': {reason}")


class PlanNotFound(PlanStoreError):
    """No persisted plan exists for the reference."""

    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(f"Plan not found: {ref}")


class PlanNotFinished(PlanStoreError):
    """Archiving was requested while units still need work."""

    def __init__(self, ref: str, pending: list[str]):
        self.ref = ref
        self.pending = pending
        super().__init__(f"Plan '{ref}' still has non-terminal units: {', '.join(pending)}")


class SchedulerStalled(GateflowError):
    """Non-terminal units remain but nothing is in flight or schedulable."""

    def __init__(self, unit_ids: list[str]):
        self.unit_ids = unit_ids
        super().__init__(f"No schedulable work but units remain: {', '.join(unit_ids)}")


class TrackerError(GateflowError):
    """The task tracker rejected or failed a request."""
