"""Tests for gateflow.tracker.github module."""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from gateflow.lib.errors import TrackerError
from gateflow.tracker.github import GH_TIMEOUT_SECONDS, MAX_TREE_DEPTH, GitHubTracker


def _result(stdout="", returncode=0, stderr=""):
    result = MagicMock()
    result.stdout = stdout if isinstance(stdout, str) else json.dumps(stdout)
    result.stderr = stderr
    result.returncode = returncode
    return result


class FakeGitHub:
    """Answers gh invocations from an in-memory issue table."""

    def __init__(self, issues: dict, children: dict):
        self.issues = issues
        self.children = children
        self.commands: list[list[str]] = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        args = cmd[1:]
        if args[:2] == ["issue", "view"]:
            number = args[2]
            fields = args[args.index("--json") + 1]
            if fields == "id":
                return _result({"id": f"NODE_{number}"})
            return _result(self.issues[number])
        if args[:2] == ["api", "graphql"]:
            ids = [a for a in args if a.startswith("id=")]
            if not ids:
                return _result({"data": {}})
            node = ids[0][len("id=NODE_"):]
            nodes = [self.issues[c] for c in self.children.get(node, [])]
            return _result({"data": {"node": {"subIssues": {"nodes": nodes}}}})
        if args[:2] in (["issue", "close"], ["issue", "edit"]):
            return _result("")
        raise AssertionError(f"unexpected gh call: {cmd}")


def _issue(number, title, body="", state="OPEN"):
    return {"number": int(number), "title": title, "body": body, "state": state}


class TestGh:
    """Command plumbing."""

    @patch("gateflow.tracker.github.subprocess.run")
    def test_nonzero_exit_raises(self, mock_run):
        mock_run.return_value = _result(returncode=1, stderr="HTTP 404")
        with pytest.raises(TrackerError, match="HTTP 404"):
            GitHubTracker().fetch_issue("5")

    @patch("gateflow.tracker.github.subprocess.run")
    def test_timeout_raises(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="gh", timeout=GH_TIMEOUT_SECONDS)
        with pytest.raises(TrackerError, match="timed out"):
            GitHubTracker().fetch_issue("5")

    @patch("gateflow.tracker.github.subprocess.run")
    def test_missing_gh_raises(self, mock_run):
        mock_run.side_effect = FileNotFoundError("gh")
        with pytest.raises(TrackerError):
            GitHubTracker().fetch_issue("5")

    @patch("gateflow.tracker.github.subprocess.run")
    def test_repo_flag(self, mock_run):
        mock_run.return_value = _result(_issue(5, "Five", state="CLOSED"))
        issue = GitHubTracker(repo="acme/app").fetch_issue("5")
        cmd = mock_run.call_args[0][0]
        assert cmd[:4] == ["gh", "issue", "view", "5"]
        assert cmd[-2:] == ["--repo", "acme/app"]
        assert issue.state == "closed"


class TestIssueOperations:
    @patch("gateflow.tracker.github.subprocess.run")
    def test_close_with_comment(self, mock_run):
        mock_run.return_value = _result("")
        GitHubTracker().close_issue("7", comment="Completed in plan demo")
        assert mock_run.call_args[0][0] == ["gh", "issue", "close", "7", "--comment", "Completed in plan demo"]

    @patch("gateflow.tracker.github.subprocess.run")
    def test_create_issue_links_parent(self, mock_run):
        fake = FakeGitHub({}, {})

        def run(cmd, **kwargs):
            if cmd[1:3] == ["issue", "create"]:
                return _result("https://github.com/acme/app/issues/31\n")
            return fake(cmd, **kwargs)

        mock_run.side_effect = run
        issue = GitHubTracker().create_issue("Child", "body", parent="30")

        assert issue.id == "31"
        mutation = [c for c in fake.commands if c[1:3] == ["api", "graphql"]][0]
        assert "parent=NODE_30" in mutation
        assert "child=NODE_31" in mutation

    @patch("gateflow.tracker.github.subprocess.run")
    def test_add_dependency_appends_line(self, mock_run):
        fake = FakeGitHub({"8": _issue(8, "Eight", "Some text")}, {})
        mock_run.side_effect = fake
        GitHubTracker().add_dependency("8", "3")

        edit = fake.commands[-1]
        assert edit[1:4] == ["issue", "edit", "8"]
        assert edit[edit.index("--body") + 1] == "Some text\n\nBlocked by #3\n"

    @patch("gateflow.tracker.github.subprocess.run")
    def test_add_dependency_is_idempotent(self, mock_run):
        fake = FakeGitHub({"8": _issue(8, "Eight", "Blocked by #3")}, {})
        mock_run.side_effect = fake
        GitHubTracker().add_dependency("8", "3")
        assert not any(c[1:3] == ["issue", "edit"] for c in fake.commands)

    @patch("gateflow.tracker.github.subprocess.run")
    def test_update_issue_rejects_unknown_state(self, mock_run):
        mock_run.return_value = _result("")
        with pytest.raises(ValueError):
            GitHubTracker().update_issue("8", state="archived")


class TestDependencyTree:
    """query_dependency_tree over sub-issues."""

    @patch("gateflow.tracker.github.subprocess.run")
    def test_tree_from_sub_issues(self, mock_run):
        issues = {
            "1": _issue(1, "Epic"),
            "2": _issue(2, "Group 1", ""),
            "3": _issue(3, "Leaf A", "Files: src/a.py"),
            "4": _issue(4, "Leaf B", "Blocked by #3, #90\nFiles: src/b.py"),
            "5": _issue(5, "Leaf C", "Blocked by #91"),
            "90": _issue(90, "Done elsewhere", state="CLOSED"),
            "91": _issue(91, "Still open elsewhere"),
        }
        mock_run.side_effect = FakeGitHub(issues, {"1": ["2", "5"], "2": ["3", "4"]})

        roots = GitHubTracker().query_dependency_tree("1")

        assert [n.issue.id for n in roots] == ["2", "5"]
        group = roots[0]
        assert [c.issue.id for c in group.children] == ["3", "4"]
        assert group.children[1].to_dict()["blocked_by"] == ["3"]
        assert roots[1].to_dict()["blocked_by"] == ["91"]

    @patch("gateflow.tracker.github.subprocess.run")
    def test_root_without_children_is_a_single_leaf(self, mock_run):
        mock_run.side_effect = FakeGitHub({"7": _issue(7, "Small fix", "Files: src/x.py")}, {})
        roots = GitHubTracker().query_dependency_tree("7")
        assert [n.issue.id for n in roots] == ["7"]
        assert roots[0].children == []

    @patch("gateflow.tracker.github.subprocess.run")
    def test_cyclic_hierarchy_hits_depth_guard(self, mock_run):
        mock_run.side_effect = FakeGitHub(
            {"1": _issue(1, "A"), "2": _issue(2, "B")}, {"1": ["2"], "2": ["1"]}
        )
        with pytest.raises(TrackerError, match=f"deeper than {MAX_TREE_DEPTH}"):
            GitHubTracker().query_dependency_tree("1")
