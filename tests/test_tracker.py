"""Tests for gateflow.tracker.base module."""

import pytest

from gateflow.tracker.base import Issue, IssueNode, dependency_line


class TestIssueBody:
    """Metadata parsed from issue bodies."""

    BODY = (
        "Implement the token endpoint.\n\n"
        "Blocked by #12, #13\n"
        "Related to #9\n"
        "Files: src/auth.py, `src/tokens.py`\n"
        "Size: files=2 loc=180 hours=1.5\n"
    )

    def test_blocked_by(self):
        assert Issue("20", "Tokens", self.BODY).blocked_by == ["12", "13"]

    def test_related(self):
        assert Issue("20", "Tokens", self.BODY).related == ["9"]

    def test_scope_files(self):
        assert Issue("20", "Tokens", self.BODY).scope_files == ["src/auth.py", "src/tokens.py"]

    def test_size(self):
        assert Issue("20", "Tokens", self.BODY).size == {"files": 2, "loc": 180, "hours": 1.5}

    def test_empty_body(self):
        issue = Issue("1", "Bare")
        assert issue.blocked_by == []
        assert issue.scope_files == []
        assert issue.size is None


class TestIssueNode:
    def test_leaf_to_dict(self):
        node = IssueNode(Issue("20", "Tokens", TestIssueBody.BODY, state="closed")).to_dict()
        assert node["id"] == "20"
        assert node["issue_id"] == "20"
        assert node["state"] == "closed"
        assert node["blocked_by"] == ["12", "13"]
        assert node["size"]["loc"] == 180
        assert "children" not in node

    def test_blocked_by_override(self):
        node = IssueNode(Issue("20", "Tokens", TestIssueBody.BODY), blocked_by=["13"])
        assert node.to_dict()["blocked_by"] == ["13"]

    def test_label_with_children(self):
        label = IssueNode(Issue("1", "Group 1"), children=[IssueNode(Issue("2", "Leaf"))], group=1)
        data = label.to_dict()
        assert data["group"] == 1
        assert [c["id"] for c in data["children"]] == ["2"]


class TestDependencyLine:
    def test_kinds(self):
        assert dependency_line("blocks", "4") == "Blocked by #4"
        assert dependency_line("related", "4") == "Related to #4"

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown dependency kind"):
            dependency_line("duplicates", "4")
