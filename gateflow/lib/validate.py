"""
Schema validation for gateflow.

Enforces JSON Schema validation at every data boundary: plan files on disk,
decomposition inputs, worker results and gate agent responses.
Fails hard with clear errors when data doesn't match schema.
"""

import json
from pathlib import Path
from typing import Any

import jsonschema

from gateflow.lib.errors import ValidationError


# Cache loaded schemas
_schema_cache: dict[str, dict] = {}


def _get_schemas_dir() -> Path:
    """Get path to the packaged schemas directory."""
    return Path(__file__).parent.parent / "schemas"


def _load_schema(schema_name: str) -> dict:
    """Load schema by name, with caching."""
    if schema_name not in _schema_cache:
        schema_path = _get_schemas_dir() / f"{schema_name}.schema.json"
        if not schema_path.exists():
            raise ValidationError(schema_name, f"Schema file not found: {schema_path}")
        _schema_cache[schema_name] = json.loads(schema_path.read_text())
    return _schema_cache[schema_name]


def validate(data: Any, schema_name: str) -> None:
    """
    Validate data against named schema.

    Args:
        data: Decoded JSON/YAML data to validate
        schema_name: Schema name (e.g., "plan", "worker_result", "gate_response")

    Raises:
        ValidationError: If validation fails
    """
    schema = _load_schema(schema_name)

    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path) if e.absolute_path else "(root)"
        raise ValidationError(schema_name, e.message, path) from None


def validate_contract(data: Any, schema_name: str, source: str) -> dict:
    """
    Validate a response from an external agent.

    Agents are untrusted: anything other than an object matching the contract
    is a ValidationError naming the agent that produced it.
    """
    if not isinstance(data, dict):
        raise ValidationError(schema_name, f"{source} returned {type(data).__name__}, expected object")
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(schema_name, f"{source} violated contract: {e}", e.path) from None
    return data


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """
    Validate data before writing to file. Ensures we never write invalid data.

    Raises:
        ValidationError: If data doesn't match schema
    """
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(
            schema_name,
            f"Refusing to write invalid data to {filepath}: {e}"
        ) from None
