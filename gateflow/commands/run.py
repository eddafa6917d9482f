"""
gateflow run - Run a plan until every unit is terminal.
"""

import logging
from pathlib import Path

from gateflow.lib.constants import EXIT_ERROR
from gateflow.workflow.engine import run_plan
from gateflow.workflow.flows import RunRequest, build_runtime, run_plan_flow

logger = logging.getLogger(__name__)


def cmd_run(args, state_dir: Path, config_dir: Path) -> int:
    """Run a plan, directly or as a Prefect flow."""
    if args.max_parallel is not None and args.max_parallel < 1:
        raise ValueError(f"--max-parallel must be >= 1, got {args.max_parallel}")

    if args.prefect:
        result = run_plan_flow(RunRequest(
            plan_id=args.plan_id,
            state_dir=str(state_dir),
            config_dir=str(config_dir),
        ))
        _print_summary(args.plan_id, result)
        return result["exit_code"]

    runtime = build_runtime(state_dir, config_dir)
    if args.max_parallel is not None:
        runtime.config.max_parallel = args.max_parallel

    report, ctx = run_plan(
        runtime.store, args.plan_id, runtime.config,
        runtime.worker, runtime.gate_agent,
        gate_table=runtime.gate_table, tracker=runtime.tracker,
    )
    _print_summary(args.plan_id, {**report.to_dict(), "run_id": ctx.run_id})
    return report.exit_code


def _print_summary(plan_id: str, result: dict) -> None:
    print(f"Plan {plan_id}: {result['status']} (run {result.get('run_id', '?')})")
    print(f"  completed: {len(result['completed'])}")
    print(f"  failed:    {len(result['failed'])}")
    print(f"  skipped:   {len(result['skipped'])}")
    for record in result.get("escalations", []):
        gate = f" at {record['gate']}" if record.get("gate") else ""
        print(f"  ESCALATED {record['unit_id']}{gate}: {record['reason']}")
    if result.get("exit_code", EXIT_ERROR) != 0:
        print(f"Retry failed units with: gateflow retry {plan_id}")
