"""
gateflow build - Build and persist a plan from a decomposition.
"""

import json
import logging
from pathlib import Path

from gateflow.lib.config import load_engine_config
from gateflow.lib.constants import EXIT_CONFIG, EXIT_ERROR, EXIT_OK
from gateflow.lib.errors import PlanBuildError, TrackerError, ValidationError
from gateflow.lib.graph import build_from_issue_nodes, build_plan
from gateflow.runner.plan_store import PlanStore
from gateflow.tracker.github import GitHubTracker

logger = logging.getLogger(__name__)


def cmd_build(args, state_dir: Path, config_dir: Path) -> int:
    """Build a plan from a JSON file or a GitHub issue tree."""
    config = load_engine_config(config_dir)
    store = PlanStore(state_dir, lock_timeout=config.lock_timeout)

    if store.exists(args.plan_id) and not args.force:
        print(f"ERROR: Plan '{args.plan_id}' already exists (use --force to rebuild)")
        return EXIT_CONFIG

    try:
        if args.issue:
            tracker = GitHubTracker(repo=args.repo, cwd=config.repo_path)
            nodes = tracker.query_dependency_tree(args.issue)
            plan = build_from_issue_nodes(args.plan_id, nodes, source=f"github:#{args.issue}")
        elif args.file:
            path = Path(args.file)
            try:
                data = json.loads(path.read_text())
            except (OSError, json.JSONDecodeError) as e:
                print(f"ERROR: Cannot read {path}: {e}")
                return EXIT_CONFIG
            plan = build_plan(args.plan_id, data, source=str(path))
        else:
            print("ERROR: Provide a decomposition file or --issue")
            return EXIT_CONFIG
    except (PlanBuildError, ValidationError) as e:
        print(f"ERROR: {e}")
        return EXIT_CONFIG
    except TrackerError as e:
        print(f"ERROR: {e}")
        return EXIT_ERROR

    store.save(plan)

    print(f"Built plan {plan.plan_id}: {len(plan.units)} unit(s), strategy {plan.strategy.value}")
    for unit in plan.units.values():
        deps = f" (blocked by {', '.join(unit.blocked_by)})" if unit.blocked_by else ""
        print(f"  {unit.group_index:<6} {unit.id:<12} {unit.title}{deps}")
    return EXIT_OK
