"""Tests for gateflow.lib.scope module."""

from gateflow.lib.scope import common_entries, entries_overlap, outside_scope, path_in_scope, paths_overlap


class TestPathInScope:
    def test_exact_path(self):
        assert path_in_scope("src/api.py", ["src/api.py"])
        assert path_in_scope("./src/api.py", ["src/api.py"])

    def test_directory_entry_covers_children(self):
        assert path_in_scope("src/api/routes.py", ["src/api/"])
        assert not path_in_scope("src/apiary.py", ["src/api"])

    def test_glob_entry(self):
        assert path_in_scope("src/api/routes.py", ["src/api/*.py"])
        assert not path_in_scope("src/api/routes.ts", ["src/api/*.py"])


class TestOverlap:
    def test_disjoint(self):
        assert not paths_overlap(["src/a.py"], ["src/b.py"])

    def test_directory_overlaps_file_either_way(self):
        assert paths_overlap(["src"], ["src/b.py"])
        assert paths_overlap(["src/b.py"], ["src"])

    def test_outside_scope(self):
        assert outside_scope(["src/a.py", "docs/x.md"], ["src"]) == ["docs/x.md"]
        assert outside_scope(["src/a.py"], []) == ["src/a.py"]

    def test_globs_overlap_when_prefixes_nest(self):
        # '*' crosses '/', so src/*.py also covers src/api/x.py
        assert paths_overlap(["src/*.py"], ["src/api/*"])
        assert paths_overlap(["src/api/*"], ["src/*.py"])
        assert not paths_overlap(["src/api/*"], ["docs/*.md"])

    def test_glob_against_directory_or_file(self):
        assert paths_overlap(["src/*.py"], ["src/api"])
        assert paths_overlap(["src/api"], ["src/api/*.py"])
        assert not paths_overlap(["src/apiary.py"], ["src/api/*"])
        assert not paths_overlap(["lib"], ["src/*.py"])

    def test_entries_overlap(self):
        assert entries_overlap("src/", "src/a.py")
        assert entries_overlap("*.md", "docs/guide")
        assert not entries_overlap("src/a.py", "src/a.pyc")


class TestCommonEntries:
    def test_file_shared_by_every_scope(self):
        scopes = [["src/m1.py", "src/registry.py"], ["src/m2.py", "src/registry.py"]]
        assert common_entries(scopes) == ["src/registry.py"]

    def test_directory_and_file_inside_count_once(self):
        scopes = [["src/models"], ["src/models/user.py"], ["src/models/user.py", "src/b.py"]]
        assert common_entries(scopes) == ["src/models/user.py"]

    def test_empty_scope_shares_nothing(self):
        assert common_entries([["src/a.py"], []]) == []
