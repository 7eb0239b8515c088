"""Parse raw pipeline documents into validated definitions.

The parser never raises for malformed input. Field-level checks come from
the pydantic models in :mod:`steprunner.pipeline.schema`; this module walks
the steps, enforces the rules that span several of them, and turns every
problem into a positioned message in ``ParseResult.errors`` so that one pass
reports all of them.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from steprunner.pipeline.schema import (
    VALID_OPERATORS,
    VALID_SCHEMA_TYPES,
    ParallelGroup,
    PipelineDefinition,
    PipelineHeader,
    SchemaSpec,
    SequentialStep,
)

_HEADER_MESSAGES = {
    "name": 'Pipeline "name" is required and must be a string',
    "description": '"description" must be a string if provided',
    "variables": '"variables" must be an object',
}

_STEP_MESSAGES = {
    "skill": '"skill" must be a string',
    "agent": '"agent" must be a string',
    "input": '"input" must be an object',
    "timeout": '"timeout" must be a positive number (ms)',
    "condition": '"condition" must be an object',
    "condition.step": 'condition "step" is required',
    "condition.field": 'condition "field" is required',
    "condition.operator": f'condition "operator" must be one of: {", ".join(VALID_OPERATORS)}',
    "condition.value": 'condition "value" is required',
    "condition.goto": 'condition "goto" is required',
}

_SCHEMA_MESSAGES = {
    "type": f'"type" must be one of: {", ".join(VALID_SCHEMA_TYPES)}',
    "properties": '"properties" must be an object',
    "required": '"required" must be an array of strings',
    "items": '"items" must be an object',
    "enum": '"enum" must be an array',
    "minimum": '"minimum" must be a number',
    "maximum": '"maximum" must be a number',
    "minLength": '"minLength" must be a non-negative integer',
    "maxLength": '"maxLength" must be a non-negative integer',
}

_SCHEMA_KEYS = ("inputSchema", "outputSchema")


class PipelineLoadError(Exception):
    """Raised when a pipeline file cannot be read or does not validate."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


@dataclass
class ParseResult:
    definition: PipelineDefinition | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.definition is not None and not self.errors


def _is_mapping(value: Any) -> bool:
    return isinstance(value, Mapping)


def _append_unique(errors: list[str], message: str) -> None:
    if message not in errors:
        errors.append(message)


def _field_messages(
    exc: ValidationError,
    messages: Mapping[str, str],
    prefix: str | None = None,
    skip: tuple[str, ...] = (),
) -> list[str]:
    """Turn a model's validation errors into positioned messages.

    Each error is described by the longest dotted location found in
    *messages*, falling back to pydantic's own text.
    """
    out: list[str] = []
    for err in exc.errors():
        loc = [str(part) for part in err["loc"]]
        if loc and loc[0] in skip:
            continue
        text = None
        for end in range(len(loc), 0, -1):
            text = messages.get(".".join(loc[:end]))
            if text is not None:
                break
        if text is None:
            text = f'"{".".join(loc)}": {err["msg"]}' if loc else err["msg"]
        _append_unique(out, f"{prefix}: {text}" if prefix else text)
    return out


def _schema_location(loc: tuple[Any, ...], error_type: str) -> tuple[str, str | None]:
    """Split a schema error location into its sub-schema path and keyword."""
    path = ""
    i = 0
    while i < len(loc):
        part = str(loc[i])
        if part == "properties" and i + 1 < len(loc):
            path += f".properties.{loc[i + 1]}"
            i += 2
        elif part == "items" and (i + 1 < len(loc) or error_type == "model_type"):
            path += ".items"
            i += 1
        else:
            return path, part
    return path, None


def _schema_errors(raw: Any, prefix: str) -> list[str]:
    """Check a schema document against the restricted dialect."""
    try:
        SchemaSpec.model_validate(raw)
    except ValidationError as e:
        out: list[str] = []
        for err in e.errors():
            path, keyword = _schema_location(err["loc"], err["type"])
            if keyword is None:
                text = "must be an object"
            else:
                text = _SCHEMA_MESSAGES.get(keyword, f'"{keyword}": {err["msg"]}')
            _append_unique(out, f"{prefix}{path}: {text}")
        return out
    return []


def _parse_sequential(
    raw: Mapping[str, Any], prefix: str
) -> tuple[SequentialStep | None, list[str]]:
    errors: list[str] = []
    for key in _SCHEMA_KEYS:
        if raw.get(key) is not None:
            errors.extend(_schema_errors(raw[key], f"{prefix}.{key}"))

    try:
        step = SequentialStep.model_validate(raw)
    except ValidationError as e:
        errors.extend(_field_messages(e, _STEP_MESSAGES, prefix, skip=_SCHEMA_KEYS))
        return None, errors

    if errors:
        return None, errors
    return step, []


def _parse_parallel(
    raw: Mapping[str, Any],
    prefix: str,
    names: set[str],
) -> tuple[ParallelGroup | None, list[str]]:
    entries = raw.get("parallel")
    if not isinstance(entries, list) or not entries:
        return None, [f'{prefix}: "parallel" must be a non-empty array of steps']

    errors: list[str] = []
    sub_steps: list[SequentialStep] = []

    for j, sub in enumerate(entries):
        sub_prefix = f"{prefix}.parallel[{j}]"
        if not _is_mapping(sub):
            errors.append(f"{sub_prefix}: must be an object")
            continue
        if not sub.get("name") or not isinstance(sub.get("name"), str):
            errors.append(f'{sub_prefix}: "name" is required')
            continue
        if sub["name"] in names:
            errors.append(f'{sub_prefix}: duplicate step name "{sub["name"]}"')
        names.add(sub["name"])

        if sub.get("parallel") is not None:
            errors.append(f"{sub_prefix}: parallel groups cannot be nested")
            continue

        step, step_errors = _parse_sequential(sub, sub_prefix)
        errors.extend(step_errors)
        if step is not None:
            sub_steps.append(step)

    if errors:
        return None, errors

    return ParallelGroup(name=raw["name"], steps=sub_steps), []


def _condition_reference_errors(
    steps: list[SequentialStep | ParallelGroup],
    names: set[str],
) -> list[str]:
    errors: list[str] = []
    for entry in steps:
        members = entry.steps if isinstance(entry, ParallelGroup) else [entry]
        for step in members:
            if step.condition is None:
                continue
            if step.condition.step not in names:
                errors.append(
                    f'Step "{step.name}": condition references unknown step "{step.condition.step}"'
                )
            if step.condition.goto not in names:
                errors.append(
                    f'Step "{step.name}": condition goto references unknown step '
                    f'"{step.condition.goto}"'
                )
    return errors


def validate_and_transform(raw: Any) -> ParseResult:
    """Validate an already-decoded document (e.g. from YAML or JSON)."""
    if not _is_mapping(raw):
        return ParseResult(errors=["Pipeline definition must be an object"])

    errors: list[str] = []

    header: PipelineHeader | None = None
    try:
        header = PipelineHeader.model_validate(
            {key: raw[key] for key in ("name", "description", "variables") if key in raw}
        )
    except ValidationError as e:
        errors.extend(_field_messages(e, _HEADER_MESSAGES))

    raw_steps = raw.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        errors.append('"steps" is required and must be a non-empty array')
        return ParseResult(errors=errors)

    steps: list[SequentialStep | ParallelGroup] = []
    names: set[str] = set()

    for i, entry in enumerate(raw_steps):
        if not _is_mapping(entry):
            errors.append(f"Step {i}: must be an object")
            continue
        step_name = entry.get("name")
        if not step_name or not isinstance(step_name, str):
            errors.append(f'Step {i}: "name" is required and must be a string')
            continue
        if step_name in names:
            errors.append(f'Step {i}: duplicate step name "{step_name}"')
        names.add(step_name)

        prefix = f'Step {i} ("{step_name}")'
        parsed: SequentialStep | ParallelGroup | None
        if entry.get("parallel") is not None:
            parsed, entry_errors = _parse_parallel(entry, prefix, names)
        else:
            parsed, entry_errors = _parse_sequential(entry, prefix)
        errors.extend(entry_errors)
        if parsed is not None:
            steps.append(parsed)

    # goto may point forward, so references are checked once every name is known
    errors.extend(_condition_reference_errors(steps, names))

    if errors or header is None:
        return ParseResult(errors=errors)

    return ParseResult(
        definition=PipelineDefinition(
            name=header.name,
            description=header.description,
            variables=header.variables,
            steps=steps,
        )
    )


def parse_pipeline(text: str) -> ParseResult:
    """Decode a YAML (or JSON) string and validate it."""
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        return ParseResult(errors=[f"YAML parse error: {e}"])
    return validate_and_transform(raw)


def load_pipeline(path: Path) -> PipelineDefinition:
    """Read and validate a pipeline file, raising :class:`PipelineLoadError` on any problem."""
    try:
        text = path.read_text()
    except OSError as e:
        raise PipelineLoadError(f"Cannot read {path}: {e}") from e

    result = parse_pipeline(text)
    if result.definition is None or result.errors:
        details = "\n".join(f"  - {e}" for e in result.errors)
        raise PipelineLoadError(f"Validation failed for {path}:\n{details}", result.errors)
    return result.definition


def get_all_step_names(definition: PipelineDefinition) -> list[str]:
    """Return every step name, parallel sub-steps included, in declaration order."""
    names: list[str] = []
    for step in definition.steps:
        names.append(step.name)
        if isinstance(step, ParallelGroup):
            names.extend(s.name for s in step.steps)
    return names


def count_steps(definition: PipelineDefinition) -> int:
    """Count executable steps; each parallel sub-step counts individually."""
    return sum(
        len(step.steps) if isinstance(step, ParallelGroup) else 1 for step in definition.steps
    )
