"""
gateflow retry - Reopen escalated units for another run.
"""

from pathlib import Path

from gateflow.lib.config import load_engine_config
from gateflow.lib.constants import EXIT_CONFIG, EXIT_OK
from gateflow.runner.plan_store import PlanStore
from gateflow.workflow.engine import reopen_units


def cmd_retry(args, state_dir: Path, config_dir: Path) -> int:
    """Move Failed units back to Pending with a fresh retry budget."""
    store = PlanStore(state_dir, lock_timeout=load_engine_config(config_dir).lock_timeout)

    try:
        reopened = reopen_units(store, args.plan_id, args.units or None)
    except ValueError as e:
        print(f"ERROR: {e}")
        return EXIT_CONFIG

    if not reopened:
        print(f"No failed units in plan {args.plan_id}")
        return EXIT_OK

    print(f"Reopened {len(reopened)} unit(s): {', '.join(reopened)}")
    print(f"Run again with: gateflow run {args.plan_id}")
    return EXIT_OK
