"""
gateflow archive - Move finished plans out of the active list.
"""

from pathlib import Path

from gateflow.lib.config import load_engine_config
from gateflow.lib.constants import EXIT_CONFIG, EXIT_OK
from gateflow.lib.errors import PlanNotFinished
from gateflow.runner.locking import is_run_locked
from gateflow.runner.plan_store import PlanStore


def cmd_archive(args, state_dir: Path, config_dir: Path) -> int:
    """Archive a plan. Refuses while units still need work unless --force."""
    store = PlanStore(state_dir, lock_timeout=load_engine_config(config_dir).lock_timeout)

    if is_run_locked(state_dir, args.plan_id):
        print(f"ERROR: Plan '{args.plan_id}' is running")
        return EXIT_CONFIG

    try:
        dest = store.archive(args.plan_id, force=args.force)
    except PlanNotFinished as e:
        print(f"ERROR: {e}")
        print("  Finish or retry those units, or archive anyway with --force")
        return EXIT_CONFIG

    print(f"Archived {args.plan_id} -> {dest}")
    return EXIT_OK
