"""
Task tracker interface.

The engine reads decompositions from a tracker and closes issues as units
complete; it never stores plan state there. Issue bodies carry the unit
metadata as plain lines:

    Blocked by #12, #13
    Related to #9
    Files: src/api.py, src/models.py
    Size: files=2 loc=150 hours=1.5
"""

import re
from dataclasses import dataclass, field
from typing import Optional, Protocol

BLOCKED_BY_RE = re.compile(r'^\s*blocked by\s+(.+)$', re.IGNORECASE | re.MULTILINE)
RELATED_TO_RE = re.compile(r'^\s*related to\s+(.+)$', re.IGNORECASE | re.MULTILINE)
FILES_RE = re.compile(r'^\s*(?:files|scope):\s*(.+)$', re.IGNORECASE | re.MULTILINE)
SIZE_RE = re.compile(r'^\s*size:\s*(.+)$', re.IGNORECASE | re.MULTILINE)
ISSUE_REF_RE = re.compile(r'#(\d+)')
SIZE_FIELD_RE = re.compile(r'(files|loc|hours)\s*=\s*(\d+(?:\.\d+)?)', re.IGNORECASE)

DEPENDENCY_KINDS = {"blocks": "Blocked by", "related": "Related to"}


@dataclass
class Issue:
    id: str
    title: str
    body: str = ""
    state: str = "open"  # "open" or "closed"

    @property
    def blocked_by(self) -> list[str]:
        return _refs(BLOCKED_BY_RE, self.body)

    @property
    def related(self) -> list[str]:
        return _refs(RELATED_TO_RE, self.body)

    @property
    def scope_files(self) -> list[str]:
        files = []
        for match in FILES_RE.finditer(self.body):
            files.extend(f.strip().strip("`") for f in match.group(1).split(",") if f.strip())
        return files

    @property
    def size(self) -> Optional[dict]:
        match = SIZE_RE.search(self.body)
        if not match:
            return None
        size = {}
        for key, value in SIZE_FIELD_RE.findall(match.group(1)):
            key = key.lower()
            size[key] = float(value) if key == "hours" else int(float(value))
        return size or None


@dataclass
class IssueNode:
    """One node of an issue tree. Nodes with children are grouping labels."""
    issue: Issue
    children: list["IssueNode"] = field(default_factory=list)
    group: Optional[int] = None
    blocked_by: Optional[list[str]] = None  # Overrides the refs parsed from the body

    def to_dict(self) -> dict:
        """Render as a tree.schema.json node."""
        node = {
            "id": self.issue.id,
            "issue_id": self.issue.id,
            "title": self.issue.title,
            "description": self.issue.body,
            "state": self.issue.state,
            "blocked_by": self.issue.blocked_by if self.blocked_by is None else self.blocked_by,
            "scope_files": self.issue.scope_files,
        }
        size = self.issue.size
        if size:
            node["size"] = size
        if self.group is not None:
            node["group"] = self.group
        if self.children:
            node["children"] = [c.to_dict() for c in self.children]
        return node


class TaskTracker(Protocol):
    def fetch_issue(self, issue_id: str) -> Issue: ...

    def list_children(self, issue_id: str) -> list[Issue]: ...

    def create_issue(self, title: str, body: str = "", parent: Optional[str] = None) -> Issue: ...

    def update_issue(self, issue_id: str, title: Optional[str] = None,
                     body: Optional[str] = None, state: Optional[str] = None) -> Issue: ...

    def add_dependency(self, issue_id: str, other_id: str, kind: str = "blocks") -> None:
        """Record that issue_id is blocked by (or related to) other_id."""
        ...

    def query_dependency_tree(self, root_id: str) -> list[IssueNode]:
        """Issue tree beneath root_id, as root nodes for the graph builder."""
        ...

    def close_issue(self, issue_id: str, comment: Optional[str] = None) -> None: ...


def _refs(pattern: re.Pattern, body: str) -> list[str]:
    refs: list[str] = []
    for match in pattern.finditer(body or ""):
        for ref in ISSUE_REF_RE.findall(match.group(1)):
            if ref not in refs:
                refs.append(ref)
    return refs


def dependency_line(kind: str, other_id: str) -> str:
    if kind not in DEPENDENCY_KINDS:
        raise ValueError(f"Unknown dependency kind '{kind}' (expected {', '.join(DEPENDENCY_KINDS)})")
    return f"{DEPENDENCY_KINDS[kind]} #{other_id}"
