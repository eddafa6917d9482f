"""Tests for gateflow.lib.profiles module."""

import pytest

from gateflow.lib.errors import ProfileConflict, ValidationError
from gateflow.lib.models import GateProfile
from gateflow.lib.profiles import (
    DEFAULT_GATE_RETRY_LIMITS,
    DEFAULT_WORK_TYPES,
    GateTable,
    union_profiles,
)


class TestUnionProfiles:
    """Unioning never drops a gate."""

    def test_union_keeps_every_gate(self):
        a = GateProfile(gate1=["tests"], gate2=["review"], retry_limits={"tests": 3, "review": 2})
        b = GateProfile(gate1=["migrate", "tests"], gate2=["security"], retry_limits={"migrate": 1})
        merged = union_profiles([a, b])

        assert merged.gate1 == ["tests", "migrate"]
        assert merged.gate2 == ["review", "security"]
        assert merged.retry_limits == {"tests": 3, "review": 2, "migrate": 1}

    def test_blocking_gate_is_not_repeated_in_gate2(self):
        a = GateProfile(gate1=["lint"], gate2=[])
        b = GateProfile(gate1=[], gate2=["lint", "docs"])
        merged = union_profiles([a, b])
        assert merged.gate1 == ["lint"]
        assert merged.gate2 == ["docs"]

    def test_conflicting_limits_raise(self):
        a = GateProfile(gate1=["tests"], retry_limits={"tests": 3})
        b = GateProfile(gate1=["tests"], retry_limits={"tests": 1})
        with pytest.raises(ProfileConflict) as exc:
            union_profiles([a, b])
        assert exc.value.gate_name == "tests"

    def test_default_table_union_is_complete(self):
        table = GateTable.default()
        merged = union_profiles(list(table.profiles.values()))
        every_gate = {g for g1, g2 in DEFAULT_WORK_TYPES.values() for g in g1 + g2}
        assert set(merged.all_gates) == every_gate
        assert merged.retry_limits == {g: DEFAULT_GATE_RETRY_LIMITS[g] for g in every_gate}


class TestClassify:
    """Ordered pattern table, first match wins."""

    @pytest.fixture
    def table(self):
        return GateTable.default()

    @pytest.mark.parametrize("path,work_type", [
        ("src/app/service.py", "application_code"),
        ("tests/test_service.py", "test_code"),
        ("pkg/tests/helpers.py", "test_code"),
        ("web/button.test.ts", "test_code"),
        ("migrations/0002_add_index.py", "database_migration"),
        ("db/seed.sql", "database_migration"),
        (".github/workflows/ci.yml", "pipeline_config"),
        ("Dockerfile", "infrastructure"),
        ("deploy/main.tf", "infrastructure"),
        ("specs/auth.md", "specification"),
        ("docs/guide.md", "documentation"),
        ("README.md", "documentation"),
    ])
    def test_classify_path(self, table, path, work_type):
        assert table.classify_path(path) == work_type

    def test_empty_changeset_uses_default(self, table):
        assert table.classify([]) == ["application_code"]

    def test_mixed_changeset_unions_profiles(self, table):
        profile = table.select(["src/api.py", "migrations/0003.py", "README.md"])
        assert profile.work_types == ["application_code", "database_migration", "documentation"]
        assert profile.gate1 == ["test-runner", "migration-validator"]
        assert profile.gate2 == ["code-reviewer", "security-auditor", "docs-reviewer"]


class TestOverrides:
    """gates.yaml overrides."""

    def test_override_pattern_takes_precedence(self):
        table = GateTable.default().with_overrides({
            "patterns": [{"pattern": "src/legacy/*", "work_type": "documentation"}],
        })
        assert table.classify_path("src/legacy/old.py") == "documentation"
        assert table.classify_path("src/new.py") == "application_code"

    def test_new_work_type(self):
        table = GateTable.default().with_overrides({
            "work_types": {"notebooks": {"gate1": ["nb-runner"], "retry_limits": {"nb-runner": 1}}},
            "patterns": [{"pattern": "*.ipynb", "work_type": "notebooks"}],
        })
        profile = table.select(["analysis/report.ipynb"])
        assert profile.gate1 == ["nb-runner"]
        assert profile.retry_limits == {"nb-runner": 1}

    def test_replace_patterns(self):
        table = GateTable.default().with_overrides({
            "replace_patterns": True,
            "patterns": [{"pattern": "*.md", "work_type": "documentation"}],
        })
        assert table.classify_path("tests/test_x.py") == "application_code"

    def test_unknown_work_type_in_pattern(self):
        with pytest.raises(ValidationError, match="unknown work type"):
            GateTable.default().with_overrides({
                "patterns": [{"pattern": "*.x", "work_type": "nope"}],
            })

    def test_override_creating_conflict(self):
        with pytest.raises(ProfileConflict):
            GateTable.default().with_overrides({
                "work_types": {"test_code": {"retry_limits": {"test-runner": 9}}},
            })

    def test_overrides_do_not_mutate_base(self):
        base = GateTable.default()
        base.with_overrides({"work_types": {"documentation": {"gate2": ["docs-reviewer", "spell"]}}})
        assert base.profiles["documentation"].gate2 == ["docs-reviewer"]
