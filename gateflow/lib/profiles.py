"""
Gate profile selection for gateflow.

Classifies a changeset into work types through an ordered pattern table,
then unions the static gate profiles of every type present. Unioning never
drops a gate.
"""

import logging
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import PurePosixPath
from typing import Iterable

from gateflow.lib.errors import ProfileConflict, ValidationError
from gateflow.lib.models import GateProfile

logger = logging.getLogger(__name__)

DEFAULT_WORK_TYPE = "application_code"

# Retry budget per gate, shared by every profile that uses the gate
DEFAULT_GATE_RETRY_LIMITS = {
    "test-runner": 3,
    "code-reviewer": 2,
    "security-auditor": 1,
    "migration-validator": 1,
    "infra-validator": 2,
    "pipeline-validator": 2,
    "spec-reviewer": 2,
    "docs-reviewer": 1,
}

# work type -> (gate1, gate2)
DEFAULT_WORK_TYPES = {
    "application_code": (["test-runner"], ["code-reviewer", "security-auditor"]),
    "test_code": (["test-runner"], ["code-reviewer"]),
    "database_migration": (["migration-validator", "test-runner"], ["code-reviewer", "security-auditor"]),
    "infrastructure": (["infra-validator"], ["security-auditor", "code-reviewer"]),
    "pipeline_config": (["pipeline-validator"], ["security-auditor"]),
    "specification": ([], ["spec-reviewer"]),
    "documentation": ([], ["docs-reviewer"]),
}

# Ordered: first match wins
DEFAULT_PATTERNS = [
    ("tests/*", "test_code"),
    ("test/*", "test_code"),
    ("*/tests/*", "test_code"),
    ("test_*.py", "test_code"),
    ("*_test.py", "test_code"),
    ("*_test.go", "test_code"),
    ("*.test.[jt]s", "test_code"),
    ("*.spec.[jt]s", "test_code"),
    ("migrations/*", "database_migration"),
    ("*/migrations/*", "database_migration"),
    ("alembic/*", "database_migration"),
    ("*.sql", "database_migration"),
    (".github/workflows/*", "pipeline_config"),
    (".gitlab-ci.yml", "pipeline_config"),
    (".circleci/*", "pipeline_config"),
    ("Jenkinsfile", "pipeline_config"),
    ("Dockerfile", "infrastructure"),
    ("docker-compose*.yml", "infrastructure"),
    ("*.tf", "infrastructure"),
    ("*.tfvars", "infrastructure"),
    ("terraform/*", "infrastructure"),
    ("k8s/*", "infrastructure"),
    ("helm/*", "infrastructure"),
    ("specs/*", "specification"),
    ("*.spec.md", "specification"),
    ("openapi*.yaml", "specification"),
    ("*.proto", "specification"),
    ("docs/*", "documentation"),
    ("*.md", "documentation"),
    ("*.rst", "documentation"),
]


def union_profiles(profiles: list[GateProfile]) -> GateProfile:
    """Union several profiles.

    gate1 is the ordered union of every gate1 list. gate2 is the deduplicated
    union of every gate2 list minus gates that already block.

    Raises:
        ProfileConflict: If two profiles give the same gate different limits
    """
    gate1: list[str] = []
    gate2: list[str] = []
    limits: dict[str, list[int]] = {}
    work_types: list[str] = []

    for profile in profiles:
        for gate in profile.gate1:
            if gate not in gate1:
                gate1.append(gate)
        for gate in profile.gate2:
            if gate not in gate2:
                gate2.append(gate)
        for gate, limit in profile.retry_limits.items():
            limits.setdefault(gate, []).append(limit)
        for wt in profile.work_types:
            if wt not in work_types:
                work_types.append(wt)

    retry_limits = {}
    for gate, values in limits.items():
        if len(set(values)) > 1:
            raise ProfileConflict(gate, values)
        retry_limits[gate] = values[0]

    return GateProfile(
        gate1=gate1,
        gate2=[g for g in gate2 if g not in gate1],
        retry_limits=retry_limits,
        work_types=work_types,
    )


@dataclass
class GateTable:
    """Static work type -> gate profile table plus the path classifier."""
    profiles: dict[str, GateProfile]
    patterns: list[tuple[str, str]] = field(default_factory=list)
    default_work_type: str = DEFAULT_WORK_TYPE

    @classmethod
    def default(cls) -> "GateTable":
        profiles = {}
        for work_type, (gate1, gate2) in DEFAULT_WORK_TYPES.items():
            profiles[work_type] = _make_profile(work_type, gate1, gate2, DEFAULT_GATE_RETRY_LIMITS)
        return cls(profiles=profiles, patterns=list(DEFAULT_PATTERNS))

    def with_overrides(self, data: dict) -> "GateTable":
        """Return a new table with gates.yaml overrides applied and checked.

        Work types in the overrides replace the named fields of an existing
        profile or define a new one. Override patterns take precedence over
        the built-in ones unless replace_patterns is set, in which case they
        are the whole table.

        Raises:
            ValidationError: If a pattern or default names an unknown work type
            ProfileConflict: If the merged table disagrees on a gate's limit
        """
        profiles = {name: _copy_profile(p) for name, p in self.profiles.items()}
        for name, override in (data.get("work_types") or {}).items():
            base = profiles.get(name, GateProfile(work_types=[name]))
            gate1 = override.get("gate1", base.gate1)
            gate2 = override.get("gate2", base.gate2)
            limits = dict(base.retry_limits)
            limits.update(override.get("retry_limits", {}))
            profiles[name] = _make_profile(name, gate1, gate2, limits)

        patterns = [(p["pattern"], p["work_type"]) for p in data.get("patterns", [])]
        if not data.get("replace_patterns"):
            patterns += self.patterns

        table = GateTable(
            profiles=profiles,
            patterns=patterns,
            default_work_type=data.get("default_work_type", self.default_work_type),
        )
        table.check()
        return table

    def check(self) -> None:
        """Verify the table is usable: known work types, consistent limits."""
        for pattern, work_type in self.patterns:
            if work_type not in self.profiles:
                raise ValidationError("gates", f"Pattern '{pattern}' names unknown work type '{work_type}'")
        if self.default_work_type not in self.profiles:
            raise ValidationError("gates", f"Unknown default work type '{self.default_work_type}'")
        union_profiles(list(self.profiles.values()))

    def classify_path(self, path: str) -> str:
        """Work type of a single path."""
        posix = PurePosixPath(path.replace("\\", "/"))
        for pattern, work_type in self.patterns:
            if fnmatchcase(str(posix), pattern) or fnmatchcase(posix.name, pattern):
                return work_type
        return self.default_work_type

    def classify(self, paths: Iterable[str]) -> list[str]:
        """Distinct work types present in a changeset, in order of first appearance."""
        types: list[str] = []
        for path in paths:
            work_type = self.classify_path(path)
            if work_type not in types:
                types.append(work_type)
        return types or [self.default_work_type]

    def select(self, paths: Iterable[str]) -> GateProfile:
        """Gate profile for a changeset."""
        work_types = self.classify(paths)
        profile = union_profiles([self.profiles[wt] for wt in work_types])
        logger.debug(
            f"[PROFILE] {','.join(work_types)} -> gate1={profile.gate1} gate2={profile.gate2}"
        )
        return profile


def _make_profile(work_type: str, gate1: list[str], gate2: list[str],
                  limits: dict[str, int]) -> GateProfile:
    gates = list(gate1) + [g for g in gate2 if g not in gate1]
    return GateProfile(
        gate1=list(gate1),
        gate2=[g for g in gate2 if g not in gate1],
        retry_limits={g: limits[g] for g in gates if g in limits},
        work_types=[work_type],
    )


def _copy_profile(profile: GateProfile) -> GateProfile:
    return GateProfile(
        gate1=list(profile.gate1),
        gate2=list(profile.gate2),
        retry_limits=dict(profile.retry_limits),
        work_types=list(profile.work_types),
    )
