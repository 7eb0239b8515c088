"""Resolve ``${...}`` placeholders in step inputs.

Two roots are understood:

* ``${variables.<path>}`` reads from the run's variable map.
* ``${steps.<name>.output[.<path>]}`` reads a prior step's output. The step
  must already have a ``completed`` result, otherwise resolution fails.

A string that is exactly one placeholder resolves to the referenced value
with its native type. Placeholders embedded in a larger string are
interpolated textually.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from steprunner.pipeline.executor import StepResult

_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")


class ResolutionError(Exception):
    """Raised when a placeholder cannot be resolved."""


@dataclass
class ResolutionContext:
    variables: Mapping[str, Any] = field(default_factory=dict)
    step_results: Mapping[str, StepResult] = field(default_factory=dict)


def get_nested_value(obj: Any, path: Sequence[str]) -> Any:
    """Walk *path* through nested mappings (and list indices); ``None`` when absent."""
    current = obj
    for key in path:
        if isinstance(current, Mapping):
            current = current.get(key)
        elif isinstance(current, (list, tuple)) and key.isdigit():
            index = int(key)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


def _resolve_path(path: str, context: ResolutionContext) -> Any:
    parts = path.strip().split(".")
    root = parts[0]

    if root == "variables":
        return get_nested_value(context.variables, parts[1:])

    if root == "steps":
        if len(parts) < 2 or not parts[1]:
            raise ResolutionError(f'Variable resolution failed: "{path}" names no step')
        step_name = parts[1]
        result = context.step_results.get(step_name)
        if result is None:
            raise ResolutionError(
                f'Variable resolution failed: step "{step_name}" has no result yet'
            )
        if result.status != "completed":
            raise ResolutionError(
                f'Variable resolution failed: step "{step_name}" did not complete successfully'
            )
        prop = parts[2] if len(parts) > 2 else None
        if prop != "output":
            raise ResolutionError(f'Variable resolution failed: unknown step property "{prop}"')
        return get_nested_value(result.output, parts[3:])

    raise ResolutionError(f'Variable resolution failed: unknown root "{root}"')


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def resolve_variables(value: Any, context: ResolutionContext) -> Any:
    """Return a copy of *value* with every placeholder resolved.

    Raises:
        ResolutionError: if any placeholder cannot be resolved.
    """
    if isinstance(value, str):
        full = _PLACEHOLDER_RE.fullmatch(value)
        if full:
            return _resolve_path(full.group(1), context)
        return _PLACEHOLDER_RE.sub(
            lambda m: _stringify(_resolve_path(m.group(1), context)),
            value,
        )

    if isinstance(value, Mapping):
        return {k: resolve_variables(v, context) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return [resolve_variables(v, context) for v in value]

    return value
