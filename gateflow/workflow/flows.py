"""Prefect flow wrapper for plan runs.

Wraps a full plan run in a Prefect @flow for observability. The engine
itself is plain Python; this module only wires configuration, agents and
tracker together and reports progress through the Prefect run logger.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from prefect import flow, get_run_logger
from pydantic import BaseModel, Field

from gateflow.agents.command import CommandGateAgent, CommandWorker
from gateflow.lib.agents_config import load_agents_config
from gateflow.lib.config import (
    EngineConfig,
    default_config_dir,
    load_engine_config,
    load_gate_table,
)
from gateflow.lib.profiles import GateTable
from gateflow.runner.plan_store import PlanStore
from gateflow.tracker.base import TaskTracker
from gateflow.tracker.github import GitHubTracker
from gateflow.workflow.engine import run_plan


class RunRequest(BaseModel):
    """Parameters of a plan run."""
    plan_id: str = Field(min_length=1)
    state_dir: str
    config_dir: Optional[str] = None


@dataclass
class Runtime:
    """Everything a run needs, built from the config directory."""
    store: PlanStore
    config: EngineConfig
    gate_table: GateTable
    worker: CommandWorker
    gate_agent: CommandGateAgent
    tracker: Optional[TaskTracker]


def make_tracker(config: EngineConfig) -> Optional[TaskTracker]:
    if config.tracker == "github":
        return GitHubTracker(cwd=config.repo_path)
    return None


def build_runtime(state_dir: Path, config_dir: Optional[Path] = None) -> Runtime:
    """Load configuration and construct store, agents and tracker.

    Raises:
        ValueError: If engine.env is invalid
        ValidationError: If gates.yaml is invalid
        ProfileConflict: If the gate table has conflicting retry limits
    """
    config_dir = config_dir or default_config_dir(state_dir)
    config = load_engine_config(config_dir)
    agents = load_agents_config(config_dir)
    return Runtime(
        store=PlanStore(state_dir, lock_timeout=config.lock_timeout),
        config=config,
        gate_table=load_gate_table(config_dir),
        worker=CommandWorker(agents, timeout=config.worker_timeout, cwd=config.repo_path),
        gate_agent=CommandGateAgent(agents, timeout=config.gate_timeout, cwd=config.repo_path),
        tracker=make_tracker(config),
    )


@flow(
    name="plan-run",
    retries=0,
)
def run_plan_flow(request: RunRequest) -> dict:
    """Run a persisted plan to completion.

    Returns:
        The run report as a dict (status, exit_code, per-unit statuses,
        escalations) plus the run id
    """
    log = get_run_logger()
    log.info(f"Starting plan run: {request.plan_id}")

    runtime = build_runtime(
        Path(request.state_dir),
        Path(request.config_dir) if request.config_dir else None,
    )
    report, ctx = run_plan(
        runtime.store, request.plan_id, runtime.config,
        runtime.worker, runtime.gate_agent,
        gate_table=runtime.gate_table, tracker=runtime.tracker,
    )

    for record in report.escalations:
        log.warning(f"Unit {record['unit_id']} escalated: {record['reason']}")
    log.info(
        f"Plan {request.plan_id} {report.status}: {len(report.completed)} completed, "
        f"{len(report.failed)} failed, {len(report.skipped)} skipped"
    )
    return {**report.to_dict(), "run_id": ctx.run_id}
