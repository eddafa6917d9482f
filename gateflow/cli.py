#!/usr/bin/env python3
"""gateflow CLI entrypoint."""

import argparse
import logging
import os
import sys
from pathlib import Path

from gateflow.commands import archive as cmd_archive_module
from gateflow.commands import build as cmd_build_module
from gateflow.commands import retry as cmd_retry_module
from gateflow.commands import run as cmd_run_module
from gateflow.commands import status as cmd_status_module
from gateflow.lib.config import default_config_dir
from gateflow.lib.constants import (
    EXIT_CONFIG,
    EXIT_ERROR,
    EXIT_LOCK_TIMEOUT,
    EXIT_STORE_INTEGRITY,
)
from gateflow.lib.errors import (
    GateflowError,
    PlanStoreError,
    ProfileConflict,
    ValidationError,
)
from gateflow.runner.locking import LockTimeout

DEFAULT_STATE_DIR = ".gateflow"


def get_dirs(args) -> tuple[Path, Path]:
    """Resolve state and config directories from args or environment."""
    state_dir = Path(args.state_dir or os.environ.get("GATEFLOW_STATE_DIR") or DEFAULT_STATE_DIR)
    config_dir = Path(args.config_dir) if args.config_dir else default_config_dir(state_dir)
    return state_dir, config_dir


def _dispatch(handler):
    def run(args):
        state_dir, config_dir = get_dirs(args)
        return handler(args, state_dir, config_dir)
    return run


def main(argv=None):
    parser = argparse.ArgumentParser(prog='gateflow', description='Gated work-unit orchestration')
    parser.add_argument('--state-dir', help=f'State directory (default: $GATEFLOW_STATE_DIR or {DEFAULT_STATE_DIR})')
    parser.add_argument('--config-dir', help='Config directory (default: <state-dir>/config)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # gateflow build
    p_build = subparsers.add_parser('build', help='Build a plan from a decomposition')
    p_build.add_argument('plan_id', help='Plan ID (lowercase, digits, - and _)')
    p_build.add_argument('file', nargs='?', help='JSON file: unit list or {"roots": [...]} tree')
    p_build.add_argument('--issue', help='Build from a GitHub issue and its sub-issues')
    p_build.add_argument('--repo', help='OWNER/REPO for --issue (default: inferred by gh)')
    p_build.add_argument('--force', action='store_true', help='Replace an existing plan')
    p_build.set_defaults(func=_dispatch(cmd_build_module.cmd_build))

    # gateflow run
    p_run = subparsers.add_parser('run', help='Run a plan until every unit is terminal')
    p_run.add_argument('plan_id', help='Plan ID')
    p_run.add_argument('--max-parallel', type=int, help='Override MAX_PARALLEL')
    p_run.add_argument('--prefect', action='store_true', help='Run as a Prefect flow')
    p_run.set_defaults(func=_dispatch(cmd_run_module.cmd_run))

    # gateflow status
    p_status = subparsers.add_parser('status', help='Show plan units and gates')
    p_status.add_argument('plan_id', help='Plan ID')
    p_status.add_argument('--json', action='store_true', help='Print the stored plan as JSON')
    p_status.set_defaults(func=_dispatch(cmd_status_module.cmd_status))

    # gateflow list
    p_list = subparsers.add_parser('list', help='List plans')
    p_list.add_argument('--archived', action='store_true', help='List archived plans')
    p_list.set_defaults(func=_dispatch(cmd_status_module.cmd_list))

    # gateflow retry
    p_retry = subparsers.add_parser('retry', help='Reopen failed units')
    p_retry.add_argument('plan_id', help='Plan ID')
    p_retry.add_argument('units', nargs='*', help='Unit IDs (default: every failed unit)')
    p_retry.set_defaults(func=_dispatch(cmd_retry_module.cmd_retry))

    # gateflow archive
    p_archive = subparsers.add_parser('archive', help='Archive a finished plan')
    p_archive.add_argument('plan_id', help='Plan ID')
    p_archive.add_argument('--force', action='store_true', help='Archive even with unfinished units')
    p_archive.set_defaults(func=_dispatch(cmd_archive_module.cmd_archive))

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except LockTimeout as e:
        print(f"ERROR: {e}")
        return EXIT_LOCK_TIMEOUT
    except PlanStoreError as e:
        print(f"ERROR: {e}")
        return EXIT_STORE_INTEGRITY
    except (ValidationError, ProfileConflict, ValueError) as e:
        print(f"ERROR: {e}")
        return EXIT_CONFIG
    except GateflowError as e:
        print(f"ERROR: {e}")
        return EXIT_ERROR


if __name__ == '__main__':
    sys.exit(main())
