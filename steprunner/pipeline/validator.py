"""Lightweight JSON-Schema validation for step inputs and outputs.

Supports the restricted dialect used in pipeline documents: ``type``,
``properties``, ``required``, ``items``, ``minimum``/``maximum``,
``minLength``/``maxLength`` and ``enum``. Every check returns a list of
human-readable errors; an empty list means the value is valid.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from steprunner.pipeline.schema import JsonSchema, SequentialStep

if TYPE_CHECKING:
    from steprunner.pipeline.schema import PipelineDefinition


def json_type(value: Any) -> str:
    """Return the JSON type name of a Python value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality that keeps booleans distinct from numbers."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if a.keys() != b.keys():
            return False
        return all(deep_equal(a[k], b[k]) for k in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(deep_equal(x, y) for x, y in zip(a, b))
    if json_type(a) != json_type(b):
        return False
    return a == b


def _is_number(value: Any) -> bool:
    return json_type(value) == "number"


def _dump(value: Any) -> str:
    return json.dumps(value, default=str)


def validate_schema(data: Any, schema: JsonSchema | None, path: str = "") -> list[str]:
    """Validate *data* against *schema*, returning every error found."""
    if not schema or not isinstance(schema, Mapping):
        return []

    label = path or "value"

    # enum applies whatever the declared type is
    enum = schema.get("enum")
    if isinstance(enum, (list, tuple)):
        if not any(deep_equal(v, data) for v in enum):
            allowed = ", ".join(_dump(v) for v in enum)
            return [f"{label}: must be one of [{allowed}], got {_dump(data)}"]

    expected = schema.get("type")
    if expected is not None:
        actual = json_type(data)
        if actual != expected:
            return [f'{label}: expected type "{expected}", got "{actual}"']

    errors: list[str] = []

    if expected == "string" and isinstance(data, str):
        min_length = schema.get("minLength")
        max_length = schema.get("maxLength")
        if _is_number(min_length) and len(data) < min_length:
            errors.append(f"{label}: string length {len(data)} is less than minimum {min_length}")
        if _is_number(max_length) and len(data) > max_length:
            errors.append(f"{label}: string length {len(data)} exceeds maximum {max_length}")

    elif expected == "number" and _is_number(data):
        minimum = schema.get("minimum")
        maximum = schema.get("maximum")
        if _is_number(minimum) and data < minimum:
            errors.append(f"{label}: {data} is less than minimum {minimum}")
        if _is_number(maximum) and data > maximum:
            errors.append(f"{label}: {data} exceeds maximum {maximum}")

    elif expected == "object" and isinstance(data, Mapping):
        required = schema.get("required")
        if isinstance(required, (list, tuple)):
            for name in required:
                if name not in data:
                    errors.append(f'{label}: missing required field "{name}"')
        properties = schema.get("properties")
        if isinstance(properties, Mapping):
            for key, prop_schema in properties.items():
                if key in data:
                    prop_path = f"{path}.{key}" if path else key
                    errors.extend(validate_schema(data[key], prop_schema, prop_path))

    elif expected == "array" and isinstance(data, (list, tuple)):
        items = schema.get("items")
        if items:
            for i, item in enumerate(data):
                errors.extend(validate_schema(item, items, f"{label}[{i}]"))

    return errors


def validate_step_input(step_name: str, data: Any, schema: JsonSchema | None) -> list[str]:
    """Validate a step's resolved input against its declared input schema."""
    if not schema:
        return []
    errors = validate_schema(data, schema, f"{step_name}.input")
    return [f'Input validation failed for step "{step_name}": {e}' for e in errors]


def validate_step_output(step_name: str, data: Any, schema: JsonSchema | None) -> list[str]:
    """Validate a step's produced output against its declared output schema."""
    if not schema:
        return []
    errors = validate_schema(data, schema, f"{step_name}.output")
    return [f'Output validation failed for step "{step_name}": {e}' for e in errors]


def validate_step_compatibility(
    producer_name: str,
    producer_schema: JsonSchema | None,
    consumer_name: str,
    consumer_schema: JsonSchema | None,
) -> list[str]:
    """Check that a producer's declared output can satisfy a consumer's input.

    Only the shape is compared: a consumer that requires object fields needs
    a producer that declares an object output.
    """
    if not producer_schema or not consumer_schema:
        return []
    if consumer_schema.get("type") == "object" and consumer_schema.get("required"):
        produced = producer_schema.get("type")
        if produced != "object":
            return [
                f'Step "{consumer_name}" expects object input, '
                f'but step "{producer_name}" outputs type "{produced}"'
            ]
    return []


def check_definition_compatibility(definition: PipelineDefinition) -> list[str]:
    """Run :func:`validate_step_compatibility` over adjacent sequential steps."""
    warnings: list[str] = []
    previous: SequentialStep | None = None
    for step in definition.steps:
        if not isinstance(step, SequentialStep):
            previous = None
            continue
        if previous is not None:
            warnings.extend(
                validate_step_compatibility(
                    previous.name,
                    previous.output_schema,
                    step.name,
                    step.input_schema,
                )
            )
        previous = step
    return warnings
