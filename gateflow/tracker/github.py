"""
GitHub task tracker.

Talks to GitHub through the gh CLI. Parent/child structure uses GitHub
sub-issues (GraphQL subIssues / addSubIssue); dependencies are lines in
the issue body ("Blocked by #N", "Related to #N").
"""

import json
import logging
import subprocess
from pathlib import Path
from typing import Optional

from gateflow.lib.errors import TrackerError
from gateflow.tracker.base import Issue, IssueNode, dependency_line

logger = logging.getLogger(__name__)

# Timeout for GitHub CLI operations (seconds)
GH_TIMEOUT_SECONDS = 30

# GitHub returns at most this many sub-issues per parent in one query
MAX_SUB_ISSUES = 50

# Depth guard for malformed (cyclic) sub-issue hierarchies
MAX_TREE_DEPTH = 8

ISSUE_FIELDS = "id,number,title,body,state"

SUB_ISSUES_QUERY = """
query($id: ID!) {
  node(id: $id) {
    ... on Issue {
      subIssues(first: %d) {
        nodes { number title body state }
      }
    }
  }
}
""" % MAX_SUB_ISSUES

ADD_SUB_ISSUE_MUTATION = """
mutation($parent: ID!, $child: ID!) {
  addSubIssue(input: {issueId: $parent, subIssueId: $child}) {
    issue { id }
  }
}
"""


def _to_issue(data: dict) -> Issue:
    return Issue(
        id=str(data["number"]),
        title=data.get("title", ""),
        body=data.get("body") or "",
        state=str(data.get("state", "OPEN")).lower(),
    )


class GitHubTracker:
    def __init__(self, repo: Optional[str] = None, cwd: Optional[Path] = None):
        """
        Args:
            repo: OWNER/REPO; defaults to the repository gh infers from cwd
            cwd: Working directory for gh (a checkout of the repository)
        """
        self.repo = repo
        self.cwd = cwd

    def _gh(self, args: list[str]) -> str:
        try:
            result = subprocess.run(
                ["gh", *args],
                capture_output=True,
                text=True,
                cwd=str(self.cwd) if self.cwd else None,
                timeout=GH_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired:
            raise TrackerError(f"gh {args[0]} timed out") from None
        except (OSError, subprocess.SubprocessError) as e:
            raise TrackerError(f"gh {args[0]} failed: {e}") from None

        if result.returncode != 0:
            raise TrackerError(f"gh {' '.join(args[:2])} failed: {result.stderr.strip()}")
        return result.stdout

    def _issue_cmd(self, *args: str) -> list[str]:
        cmd = ["issue", *args]
        if self.repo:
            cmd += ["--repo", self.repo]
        return cmd

    def _json(self, args: list[str]) -> dict:
        output = self._gh(args)
        try:
            return json.loads(output)
        except json.JSONDecodeError:
            raise TrackerError(f"Invalid JSON from gh {' '.join(args[:2])}") from None

    def _node_id(self, issue_id: str) -> str:
        return self._json(self._issue_cmd("view", str(issue_id), "--json", "id"))["id"]

    # --- TaskTracker ---

    def fetch_issue(self, issue_id: str) -> Issue:
        data = self._json(self._issue_cmd("view", str(issue_id), "--json", ISSUE_FIELDS))
        return _to_issue(data)

    def list_children(self, issue_id: str) -> list[Issue]:
        node_id = self._node_id(issue_id)
        data = self._json([
            "api", "graphql",
            "-f", f"query={SUB_ISSUES_QUERY}",
            "-f", f"id={node_id}",
        ])
        node = (data.get("data") or {}).get("node") or {}
        nodes = (node.get("subIssues") or {}).get("nodes") or []
        if len(nodes) >= MAX_SUB_ISSUES:
            logger.warning(f"Issue #{issue_id} has {MAX_SUB_ISSUES}+ sub-issues; extras are ignored")
        return [_to_issue(n) for n in nodes]

    def create_issue(self, title: str, body: str = "", parent: Optional[str] = None) -> Issue:
        url = self._gh(self._issue_cmd("create", "--title", title, "--body", body)).strip()
        try:
            number = str(int(url.rstrip("/").split("/")[-1]))
        except (ValueError, IndexError):
            raise TrackerError(f"Unexpected gh issue create output: {url}") from None

        if parent is not None:
            self._gh([
                "api", "graphql",
                "-f", f"query={ADD_SUB_ISSUE_MUTATION}",
                "-f", f"parent={self._node_id(parent)}",
                "-f", f"child={self._node_id(number)}",
            ])
            logger.info(f"Linked #{number} as sub-issue of #{parent}")

        return Issue(id=number, title=title, body=body, state="open")

    def update_issue(self, issue_id: str, title: Optional[str] = None,
                     body: Optional[str] = None, state: Optional[str] = None) -> Issue:
        args = []
        if title is not None:
            args += ["--title", title]
        if body is not None:
            args += ["--body", body]
        if args:
            self._gh(self._issue_cmd("edit", str(issue_id), *args))

        if state == "closed":
            self.close_issue(issue_id)
        elif state == "open":
            self._gh(self._issue_cmd("reopen", str(issue_id)))
        elif state is not None:
            raise ValueError(f"Unknown issue state '{state}'")

        return self.fetch_issue(issue_id)

    def add_dependency(self, issue_id: str, other_id: str, kind: str = "blocks") -> None:
        line = dependency_line(kind, str(other_id))
        issue = self.fetch_issue(issue_id)
        existing = issue.blocked_by if kind == "blocks" else issue.related
        if str(other_id) in existing:
            return
        body = issue.body.rstrip() + ("\n\n" if issue.body.strip() else "") + line + "\n"
        self._gh(self._issue_cmd("edit", str(issue_id), "--body", body))

    def query_dependency_tree(self, root_id: str) -> list[IssueNode]:
        """Sub-issue tree beneath root_id.

        The root itself is the container: its children become the tree roots.
        A root without sub-issues is returned as a single leaf. Blockers outside
        the tree that are already closed are dropped.
        """
        root = self.fetch_issue(root_id)
        children = self._subtree(root.id, depth=1)
        nodes = children or [IssueNode(issue=root)]

        in_tree: set[str] = set()
        _collect_ids(nodes, in_tree)
        closed_external: dict[str, bool] = {}
        self._drop_satisfied_external(nodes, in_tree, closed_external)
        return nodes

    def close_issue(self, issue_id: str, comment: Optional[str] = None) -> None:
        args = ["close", str(issue_id)]
        if comment:
            args += ["--comment", comment]
        self._gh(self._issue_cmd(*args))
        logger.info(f"Closed issue #{issue_id}")

    # --- Internals ---

    def _subtree(self, issue_id: str, depth: int) -> list[IssueNode]:
        if depth > MAX_TREE_DEPTH:
            raise TrackerError(f"Sub-issue tree deeper than {MAX_TREE_DEPTH} levels at #{issue_id}")
        nodes = []
        for child in self.list_children(issue_id):
            nodes.append(IssueNode(issue=child, children=self._subtree(child.id, depth + 1)))
        return nodes

    def _drop_satisfied_external(self, nodes: list[IssueNode], in_tree: set[str],
                                 cache: dict[str, bool]) -> None:
        for node in nodes:
            kept = []
            for ref in node.issue.blocked_by:
                if ref not in in_tree:
                    if ref not in cache:
                        cache[ref] = self.fetch_issue(ref).state == "closed"
                    if cache[ref]:
                        continue
                kept.append(ref)
            node.blocked_by = kept
            self._drop_satisfied_external(node.children, in_tree, cache)


def _collect_ids(nodes: list[IssueNode], into: set[str]) -> None:
    for node in nodes:
        into.add(node.issue.id)
        _collect_ids(node.children, into)
