"""
gateflow status / list - Show plans and their units.
"""

import json
from pathlib import Path

from gateflow.lib.config import load_engine_config
from gateflow.lib.constants import EXIT_OK
from gateflow.lib.errors import PlanStoreError
from gateflow.lib.models import UnitStatus
from gateflow.runner.locking import is_run_locked
from gateflow.runner.plan_store import PlanStore


def _gate_summary(unit) -> str:
    passed = []
    failed = []
    for result in unit.gate_results:
        if result.passed:
            if result.gate_name not in passed:
                passed.append(result.gate_name)
            if result.gate_name in failed:
                failed.remove(result.gate_name)
        elif result.gate_name not in failed:
            failed.append(result.gate_name)
    parts = [f"+{g}" for g in passed if g not in failed] + [f"-{g}" for g in failed]
    return " ".join(parts) or "-"


def cmd_status(args, state_dir: Path, config_dir: Path) -> int:
    """Show the units of one plan."""
    store = PlanStore(state_dir, lock_timeout=load_engine_config(config_dir).lock_timeout)
    plan = store.load(args.plan_id)

    if args.json:
        print(json.dumps(plan.to_dict(), indent=2))
        return EXIT_OK

    counts = {s: len(plan.with_status(s)) for s in UnitStatus}
    print(f"Plan: {plan.plan_id}")
    print(f"Strategy: {plan.strategy.value}")
    if plan.source:
        print(f"Source: {plan.source}")
    print("Progress: " + ", ".join(f"{n} {s.value}" for s, n in counts.items() if n))
    print()
    print(f"{'GROUP':<7} {'ID':<12} {'STATUS':<13} {'GATES':<40} TITLE")
    print("-" * 90)
    for unit in plan.units.values():
        print(f"{unit.group_index:<7} {unit.id:<12} {unit.status.value:<13} "
              f"{_gate_summary(unit):<40} {unit.title}")

    failed = plan.with_status(UnitStatus.FAILED)
    if failed:
        print()
        print("Escalations:")
        for unit in failed:
            reason = (unit.escalation or {}).get("reason", "unknown")
            print(f"  {unit.id}: {reason}")

    skipped = [u for u in plan.with_status(UnitStatus.SKIPPED) if u.notes]
    for unit in skipped:
        print(f"  {unit.id} skipped: {unit.notes}")
    return EXIT_OK


def cmd_list(args, state_dir: Path, config_dir: Path) -> int:
    """List active (or archived) plans."""
    store = PlanStore(state_dir)

    if args.archived:
        archived = store.list_archived()
        if not archived:
            print("No archived plans")
        for name in archived:
            print(name)
        return EXIT_OK

    plan_ids = store.list_plans()
    if not plan_ids:
        print("No plans")
        return EXIT_OK

    print(f"{'PLAN':<30} {'STRATEGY':<20} {'DONE':<8} {'FAILED':<8} STATE")
    print("-" * 80)
    for plan_id in plan_ids:
        try:
            plan = store.load(plan_id)
        except PlanStoreError as e:
            print(f"{plan_id:<30} {'?':<20} {'?':<8} {'?':<8} error: {e}")
            continue
        done = f"{len(plan.with_status(UnitStatus.COMPLETED))}/{len(plan.units)}"
        failed = len(plan.with_status(UnitStatus.FAILED))
        if is_run_locked(state_dir, plan_id):
            state = "running"
        else:
            state = "finished" if plan.is_finished() else "pending"
        print(f"{plan_id:<30} {plan.strategy.value:<20} {done:<8} {failed:<8} {state}")
    return EXIT_OK
