"""Pydantic models for pipeline definitions.

:mod:`steprunner.pipeline.parser` runs each step mapping through these
models and handles the checks that span several steps itself. Instances
are frozen once built.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_core import PydanticCustomError

ConditionOperator = Literal["eq", "neq", "gt", "lt", "gte", "lte", "contains"]
SchemaType = Literal["string", "number", "boolean", "object", "array", "null"]

VALID_OPERATORS: tuple[str, ...] = ("eq", "neq", "gt", "lt", "gte", "lte", "contains")
VALID_SCHEMA_TYPES: tuple[str, ...] = ("string", "number", "boolean", "object", "array", "null")

# Restricted JSON-Schema dialect, kept as the mapping the author wrote.
JsonSchema = dict[str, Any]

_Number = Annotated[float, Field(strict=True)]
_Length = Annotated[int, Field(strict=True, ge=0)]


class SchemaSpec(BaseModel):
    """Shape of a :data:`JsonSchema` document. Unknown keywords pass through."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: SchemaType | None = None
    properties: dict[str, SchemaSpec] | None = None
    required: list[str] | None = None
    items: SchemaSpec | None = None
    enum: list[Any] | None = None
    minimum: _Number | None = None
    maximum: _Number | None = None
    min_length: _Length | None = Field(default=None, alias="minLength")
    max_length: _Length | None = Field(default=None, alias="maxLength")


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Condition(_Frozen):
    step: str = Field(min_length=1)
    field: str = Field(min_length=1)
    operator: ConditionOperator
    value: Any
    goto: str = Field(min_length=1)


class SequentialStep(_Frozen):
    type: Literal["sequential"] = "sequential"
    name: str = Field(min_length=1)
    skill: str | None = None
    agent: str | None = None
    input: dict[str, Any] = {}
    input_schema: JsonSchema | None = Field(default=None, alias="inputSchema")
    output_schema: JsonSchema | None = Field(default=None, alias="outputSchema")
    # ms; the run's default applies when unset
    timeout: Annotated[float, Field(gt=0, strict=True)] | None = None
    condition: Condition | None = None

    @field_validator("skill", "agent")
    @classmethod
    def _blank_is_unset(cls, value: str | None) -> str | None:
        return value or None

    @field_validator("input", mode="before")
    @classmethod
    def _null_input(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="after")
    def _needs_capability(self) -> SequentialStep:
        if not self.skill and not self.agent:
            raise PydanticCustomError("missing_capability", 'must have either "skill" or "agent"')
        return self

    @property
    def capability(self) -> str:
        """Human-readable ``skill:<x>`` / ``agent:<y>`` label."""
        parts = []
        if self.skill:
            parts.append(f"skill:{self.skill}")
        if self.agent:
            parts.append(f"agent:{self.agent}")
        return " ".join(parts)


class ParallelGroup(_Frozen):
    type: Literal["parallel"] = "parallel"
    name: str = Field(min_length=1)
    steps: list[SequentialStep] = Field(min_length=1)

    def contains(self, name: str) -> bool:
        return any(s.name == name for s in self.steps)


PipelineStepDef = Annotated[
    SequentialStep | ParallelGroup,
    Field(discriminator="type"),
]


class PipelineHeader(_Frozen):
    """Document-level fields, validated before the steps are walked."""

    name: str = Field(min_length=1)
    description: str | None = None
    variables: dict[str, Any] = {}

    @field_validator("variables", mode="before")
    @classmethod
    def _null_variables(cls, value: Any) -> Any:
        return {} if value is None else value


class PipelineDefinition(PipelineHeader):
    steps: list[PipelineStepDef] = Field(min_length=1)
