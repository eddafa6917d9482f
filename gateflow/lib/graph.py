"""
Plan graph builder for gateflow.

Turns a decomposition (a flat list of unit specs or a hierarchical issue
tree) into a Plan: a flat table of leaf units whose only edges are
blocked_by references. Grouping nodes survive only as group labels.
"""

import logging
import re
from typing import Any, Iterable

from gateflow.lib.constants import (
    ISOLATED_WORKTREES_MIN_UNITS,
    MAX_PLAN_ID_LEN,
    MAX_SHARED_HOT_FILES,
    MAX_UNIT_FILES,
    MAX_UNIT_HOURS,
    MAX_UNIT_LOC,
    PLAN_ID_PATTERN,
    SHARED_BRANCH_MIN_UNITS,
)
from gateflow.lib.errors import (
    CyclicDependency,
    OversizedUnit,
    PlanBuildError,
    UnknownDependency,
)
from gateflow.lib.models import Plan, SizeMetrics, Strategy, WorkUnit
from gateflow.lib.scope import common_entries
from gateflow.lib.validate import validate

logger = logging.getLogger(__name__)

DONE_STATES = {"closed", "completed", "done"}
GROUP_NUMBER_RE = re.compile(r'(\d+)')


def validate_plan_id(plan_id: str) -> None:
    """Raise PlanBuildError unless plan_id is a safe directory name."""
    if not plan_id or len(plan_id) > MAX_PLAN_ID_LEN or not PLAN_ID_PATTERN.match(plan_id):
        raise PlanBuildError(
            f"Invalid plan id '{plan_id}': lowercase letters, digits, '-' and '_', "
            f"max {MAX_PLAN_ID_LEN} chars"
        )


def build_plan(plan_id: str, data: Any, source: str = "") -> Plan:
    """Build a plan from decoded JSON: a list of units or {"roots": [...]}."""
    if isinstance(data, dict) and "roots" in data:
        return build_from_tree(plan_id, data, source)
    return build_from_units(plan_id, data, source)


def build_from_units(plan_id: str, items: list[dict], source: str = "") -> Plan:
    """Build a plan from a flat list of unit specs.

    Each item is a leaf. Its group comes from its explicit "group" field
    (0 when absent).
    """
    validate_plan_id(plan_id)
    validate(items, "units")

    leaves = []
    for item in items:
        leaves.append(_Leaf(
            spec=item,
            group_number=int(item.get("group", 0)),
            parent_key=("group", int(item.get("group", 0))),
        ))
    return _assemble(plan_id, leaves, labels={}, source=source)


def build_from_tree(plan_id: str, tree: dict, source: str = "") -> Plan:
    """Build a plan from a hierarchical issue tree ({"roots": [...]})."""
    validate_plan_id(plan_id)
    validate(tree, "tree")

    leaves: list[_Leaf] = []
    labels: dict[str, list[str]] = {}
    _walk(tree["roots"], None, None, leaves, labels)
    return _assemble(plan_id, leaves, labels=labels, source=source)


def build_from_issue_nodes(plan_id: str, roots: Iterable, source: str = "") -> Plan:
    """Build a plan from tracker IssueNode objects (see tracker.base)."""
    return build_from_tree(plan_id, {"roots": [n.to_dict() for n in roots]}, source)


# --- Tree flattening ---

class _Leaf:
    __slots__ = ("spec", "group_number", "parent_key", "extra_blockers")

    def __init__(self, spec: dict, group_number: int, parent_key: Any,
                 extra_blockers: list[str] | None = None):
        self.spec = spec
        self.group_number = group_number
        self.parent_key = parent_key
        self.extra_blockers = extra_blockers or []

    @property
    def id(self) -> str:
        return str(self.spec["id"])


def _label_group(node: dict, position: int) -> int:
    """Group number of a grouping node: title number, explicit group, or position."""
    match = GROUP_NUMBER_RE.search(node["title"])
    if match:
        return int(match.group(1))
    if "group" in node:
        return int(node["group"])
    return position


def _walk(nodes: list[dict], group: int | None, parent_id: str | None,
          leaves: list[_Leaf], labels: dict[str, list[str]],
          inherited_blockers: list[str] | None = None) -> list[str]:
    """Depth-first flatten. Returns ids of every leaf beneath nodes."""
    beneath = []
    for position, node in enumerate(nodes, 1):
        node_id = str(node["id"])
        blockers = list(inherited_blockers or [])
        if node.get("children"):
            # Blockers on a grouping node apply to every leaf under it
            blockers += [str(b) for b in node.get("blocked_by", [])]
            child_leaves = _walk(
                node["children"], _label_group(node, position), node_id,
                leaves, labels, blockers,
            )
            labels[node_id] = child_leaves
            beneath.extend(child_leaves)
        else:
            leaves.append(_Leaf(
                spec=node,
                group_number=group if group is not None else 0,
                parent_key=("label", parent_id),
                extra_blockers=blockers,
            ))
            beneath.append(node_id)
    return beneath


# --- Assembly ---

def _is_done(spec: dict) -> bool:
    return str(spec.get("state", "open")).lower() in DONE_STATES


def _assemble(plan_id: str, leaves: list[_Leaf], labels: dict[str, list[str]],
              source: str) -> Plan:
    seen = set()
    for leaf in leaves:
        if leaf.id in seen or leaf.id in labels:
            raise PlanBuildError(f"Duplicate unit id '{leaf.id}'")
        seen.add(leaf.id)

    included = [leaf for leaf in leaves if not _is_done(leaf.spec)]
    included_ids = {leaf.id for leaf in included}
    excluded_ids = seen - included_ids
    if excluded_ids:
        logger.info(f"[GRAPH] Excluding {len(excluded_ids)} completed unit(s)")

    counters: dict[Any, int] = {}
    units: dict[str, WorkUnit] = {}
    for leaf in included:
        counters[leaf.parent_key] = counters.get(leaf.parent_key, 0) + 1
        spec = leaf.spec

        blocked_by: list[str] = []
        for raw in leaf.extra_blockers + [str(b) for b in spec.get("blocked_by", [])]:
            for dep in _resolve_dependency(leaf.id, raw, included_ids, excluded_ids, labels):
                if dep not in blocked_by:
                    blocked_by.append(dep)

        issue_id = spec.get("issue_id")
        units[leaf.id] = WorkUnit(
            id=leaf.id,
            title=spec["title"],
            description=spec.get("description", ""),
            scope_files=list(spec.get("scope_files", [])),
            group_number=leaf.group_number,
            group_index=f"{leaf.group_number}.{counters[leaf.parent_key]}",
            blocked_by=blocked_by,
            size=SizeMetrics.from_dict(spec.get("size")),
            issue_id=str(issue_id) if issue_id is not None else None,
        )

    cycle = find_cycle({uid: u.blocked_by for uid, u in units.items()})
    if cycle:
        raise CyclicDependency(cycle)

    for unit in units.values():
        violations = size_violations(unit)
        if violations:
            raise OversizedUnit(unit.id, violations)

    plan = Plan(
        plan_id=plan_id,
        units=units,
        strategy=select_strategy(list(units.values())),
        source=source,
    )
    logger.info(
        f"[GRAPH] Built plan {plan_id}: {len(units)} unit(s), "
        f"{len(plan.edges())} edge(s), strategy {plan.strategy.value}"
    )
    return plan


def _resolve_dependency(unit_id: str, dep: str, included: set[str], excluded: set[str],
                        labels: dict[str, list[str]]) -> list[str]:
    """Map a raw blocked_by reference onto included leaf ids."""
    if dep in included:
        return [dep]
    if dep in excluded:
        return []
    if dep in labels:
        return [leaf for leaf in labels[dep] if leaf in included]
    raise UnknownDependency(unit_id, dep)


def find_cycle(graph: dict[str, list[str]]) -> list[str] | None:
    """Return a dependency cycle as a path (first id repeated at the end), or None.

    graph maps each unit id to the ids it is blocked by.
    """
    visiting: set[str] = set()
    done: set[str] = set()
    path: list[str] = []

    def visit(node: str) -> list[str] | None:
        visiting.add(node)
        path.append(node)
        for dep in graph.get(node, []):
            if dep in visiting:
                return path[path.index(dep):] + [dep]
            if dep not in done:
                found = visit(dep)
                if found:
                    return found
        visiting.discard(node)
        path.pop()
        done.add(node)
        return None

    for node in graph:
        if node not in done:
            found = visit(node)
            if found:
                return found
    return None


def size_violations(unit: WorkUnit) -> list[str]:
    """List every size ceiling the unit exceeds."""
    violations = []
    if unit.effective_file_count > MAX_UNIT_FILES:
        violations.append(f"files {unit.effective_file_count} > {MAX_UNIT_FILES}")
    if unit.size.loc > MAX_UNIT_LOC:
        violations.append(f"loc {unit.size.loc} > {MAX_UNIT_LOC}")
    if unit.size.hours > MAX_UNIT_HOURS:
        violations.append(f"hours {unit.size.hours:g} > {MAX_UNIT_HOURS}")
    return violations


def select_strategy(units: list[WorkUnit]) -> Strategy:
    """Pick the plan strategy from the number of non-terminal units and their overlap."""
    active = [u for u in units if not u.is_terminal]
    if len(active) < SHARED_BRANCH_MIN_UNITS:
        return Strategy.SINGLE_UNIT
    if len(active) < ISOLATED_WORKTREES_MIN_UNITS:
        return Strategy.SHARED_BRANCH

    shared = common_entries([u.scope_files for u in active])
    if shared and len(shared) <= MAX_SHARED_HOT_FILES:
        logger.info(f"[GRAPH] Every unit touches {sorted(shared)}; using shared-branch")
        return Strategy.SHARED_BRANCH
    return Strategy.ISOLATED_WORKTREES
