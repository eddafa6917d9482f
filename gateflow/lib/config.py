"""
Configuration loaders for gateflow.

Engine settings come from engine.env (KEY=value, parsed without a shell),
gate table overrides from gates.yaml. Both live in the config directory,
<state_dir>/config unless given explicitly.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from gateflow.lib import validate
from gateflow.lib.errors import ValidationError
from gateflow.lib.profiles import GateTable

logger = logging.getLogger(__name__)

ENGINE_ENV = "engine.env"
GATES_YAML = "gates.yaml"

# Shell metacharacters are rejected outright; values are never evaluated
FORBIDDEN_PATTERNS = [
    r'`',
    r'\$\(',
    r'\$\{',
    r';',
    r'&&',
    r'\|',
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')

TRACKERS = ("none", "github")


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a KEY=value file safely.

    Raises:
        FileNotFoundError: if the file doesn't exist
        ValueError: on bad syntax, bad keys or forbidden patterns
    """
    if not path.exists():
        raise FileNotFoundError(f"Env file not found: {path}")

    values = {}
    for lineno, raw in enumerate(path.read_text().splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()

        key, sep, value = line.partition('=')
        if not sep:
            raise ValueError(f"{path.name}:{lineno}: expected KEY=value")
        key, value = key.strip(), value.strip()

        if not KEY_PATTERN.match(key):
            raise ValueError(f"{path.name}:{lineno}: invalid key '{key}'")

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]

        if any(re.search(p, value) for p in FORBIDDEN_PATTERNS):
            raise ValueError(f"{path.name}:{lineno}: forbidden pattern in value of {key}")

        values[key] = value
    return values


@dataclass
class EngineConfig:
    """Explicit engine settings handed to the orchestrator."""
    max_parallel: int = 3
    worker_retry_limit: int = 1
    gate_validation_retries: int = 1
    scope_violation_limit: int = 2
    default_retry_limit: int = 2
    worker_timeout: int = 1200
    gate_timeout: int = 900
    notify: bool = True
    close_issues: bool = True
    tracker: str = "none"
    repo_path: Optional[Path] = None
    lock_timeout: int = 60


def _int(env: dict, key: str, default: int, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got '{raw}'") from None
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {value}")
    return value


def _bool(env: dict, key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    lowered = raw.lower()
    if lowered in ("true", "1", "yes", "on"):
        return True
    if lowered in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"{key} must be true or false, got '{raw}'")


def load_engine_config(config_dir: Optional[Path]) -> EngineConfig:
    """Load engine.env and return EngineConfig.

    A missing directory or file yields the defaults.
    """
    if config_dir is None or not (config_dir / ENGINE_ENV).exists():
        return EngineConfig()

    env = parse_env_file(config_dir / ENGINE_ENV)
    known = {
        "MAX_PARALLEL", "WORKER_RETRY_LIMIT", "GATE_VALIDATION_RETRIES",
        "SCOPE_VIOLATION_LIMIT", "DEFAULT_RETRY_LIMIT", "WORKER_TIMEOUT",
        "GATE_TIMEOUT", "NOTIFY", "CLOSE_ISSUES", "TRACKER", "REPO_PATH",
        "LOCK_TIMEOUT",
    }
    for key in sorted(set(env) - known):
        logger.warning(f"Ignoring unknown setting {key} in {config_dir / ENGINE_ENV}")

    tracker = env.get("TRACKER", "none").lower() or "none"
    if tracker not in TRACKERS:
        raise ValueError(f"TRACKER must be one of {', '.join(TRACKERS)}, got '{tracker}'")

    repo_path = env.get("REPO_PATH")
    return EngineConfig(
        max_parallel=_int(env, "MAX_PARALLEL", 3, minimum=1),
        worker_retry_limit=_int(env, "WORKER_RETRY_LIMIT", 1),
        gate_validation_retries=_int(env, "GATE_VALIDATION_RETRIES", 1),
        scope_violation_limit=_int(env, "SCOPE_VIOLATION_LIMIT", 2),
        default_retry_limit=_int(env, "DEFAULT_RETRY_LIMIT", 2),
        worker_timeout=_int(env, "WORKER_TIMEOUT", 1200, minimum=1),
        gate_timeout=_int(env, "GATE_TIMEOUT", 900, minimum=1),
        notify=_bool(env, "NOTIFY", True),
        close_issues=_bool(env, "CLOSE_ISSUES", True),
        tracker=tracker,
        repo_path=Path(repo_path) if repo_path else None,
        lock_timeout=_int(env, "LOCK_TIMEOUT", 60, minimum=1),
    )


def load_gate_table(config_dir: Optional[Path]) -> GateTable:
    """Load the gate table, applying gates.yaml overrides when present.

    Raises:
        ValidationError: If gates.yaml does not match its schema
        ProfileConflict: If the merged table has conflicting retry limits
    """
    table = GateTable.default()
    if config_dir is None or not (config_dir / GATES_YAML).exists():
        return table

    path = config_dir / GATES_YAML
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ValidationError("gates", f"Invalid YAML in {path}: {e}") from None

    validate.validate(data, "gates")
    logger.info(f"Loaded gate overrides from {path}")
    return table.with_overrides(data)


def default_config_dir(state_dir: Path) -> Path:
    return state_dir / "config"
