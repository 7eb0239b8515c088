"""SQLite-backed pipeline registry: run history, audit trail and cost reports."""

from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml

from steprunner._ids import new_uuid
from steprunner._log import get_logger
from steprunner._paths import ensure_private_dir, secure_database
from steprunner.pipeline.parser import count_steps
from steprunner.pipeline.schema import PipelineDefinition
from steprunner.registry._redact import scrub_secrets

logger = get_logger("registry")


@dataclass
class PipelineRecord:
    pipeline_id: str
    name: str
    definition_yaml: str
    status: str  # "pending" | "running" | "completed" | "failed"
    created_at: str
    started_at: str | None
    completed_at: str | None
    total_steps: int
    completed_steps: int
    total_cost_usd: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PipelineStepRecord:
    step_id: str
    pipeline_id: str
    step_number: int
    name: str
    agent_id: str | None
    session_id: str | None
    status: str  # "running" | "completed" | "failed" | "timeout"
    input_schema: str
    output_schema: str
    result: Any
    cost_usd: float
    model: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    thinking_tokens: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class StepCost:
    step_name: str
    cost_usd: float


@dataclass
class PipelineCostSummary:
    pipeline_id: str
    name: str
    total_cost_usd: float
    step_costs: list[StepCost]
    execution_count: int


@dataclass
class AggregateCost:
    total_cost_usd: float
    execution_count: int
    avg_cost_usd: float


_CREATE_PIPELINES = """\
CREATE TABLE IF NOT EXISTS pipelines (
    pipeline_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    definition_yaml TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    total_steps INTEGER NOT NULL,
    completed_steps INTEGER NOT NULL DEFAULT 0,
    total_cost_usd REAL NOT NULL DEFAULT 0
);
"""

_CREATE_STEPS = """\
CREATE TABLE IF NOT EXISTS pipeline_steps (
    step_id TEXT PRIMARY KEY,
    pipeline_id TEXT NOT NULL REFERENCES pipelines (pipeline_id),
    step_number INTEGER NOT NULL,
    name TEXT NOT NULL,
    agent_id TEXT,
    session_id TEXT,
    status TEXT NOT NULL,
    input_schema TEXT NOT NULL,
    output_schema TEXT NOT NULL,
    result TEXT,
    cost_usd REAL NOT NULL DEFAULT 0,
    model TEXT,
    input_tokens INTEGER NOT NULL DEFAULT 0,
    output_tokens INTEGER NOT NULL DEFAULT 0,
    thinking_tokens INTEGER NOT NULL DEFAULT 0,
    error TEXT
);
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_pipelines_name ON pipelines (name);",
    "CREATE INDEX IF NOT EXISTS idx_pipelines_created ON pipelines (created_at);",
    "CREATE INDEX IF NOT EXISTS idx_steps_pipeline ON pipeline_steps (pipeline_id);",
]

_INSERT_PIPELINE = """\
INSERT INTO pipelines (
    pipeline_id, name, definition_yaml, status, created_at, started_at,
    total_steps, completed_steps, total_cost_usd
) VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0);
"""

_INSERT_STEP = """\
INSERT INTO pipeline_steps (
    step_id, pipeline_id, step_number, name, agent_id, session_id,
    status, input_schema, output_schema, result, cost_usd
) VALUES (?, ?, ?, ?, ?, ?, 'running', ?, ?, NULL, 0);
"""


def _now() -> str:
    return datetime.now(UTC).isoformat()


def definition_to_yaml(definition: PipelineDefinition) -> str:
    """Serialize a parsed definition back to its document form."""
    data = definition.model_dump(by_alias=True)
    for step in data["steps"]:
        if step.pop("type") == "parallel":
            step["parallel"] = step.pop("steps")
            for sub in step["parallel"]:
                sub.pop("type", None)
    return yaml.safe_dump(data, sort_keys=False)


def _dump_json(value: Any) -> str:
    return scrub_secrets(json.dumps(value, default=str))


def _row_to_pipeline(row: sqlite3.Row) -> PipelineRecord:
    return PipelineRecord(
        pipeline_id=row["pipeline_id"],
        name=row["name"],
        definition_yaml=row["definition_yaml"],
        status=row["status"],
        created_at=row["created_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        total_steps=row["total_steps"],
        completed_steps=row["completed_steps"],
        total_cost_usd=row["total_cost_usd"],
    )


def _row_to_step(row: sqlite3.Row) -> PipelineStepRecord:
    result: Any = None
    if row["result"]:
        try:
            result = json.loads(row["result"])
        except json.JSONDecodeError:
            result = row["result"]
    return PipelineStepRecord(
        step_id=row["step_id"],
        pipeline_id=row["pipeline_id"],
        step_number=row["step_number"],
        name=row["name"],
        agent_id=row["agent_id"],
        session_id=row["session_id"],
        status=row["status"],
        input_schema=row["input_schema"],
        output_schema=row["output_schema"],
        result=result,
        cost_usd=row["cost_usd"],
        model=row["model"],
        input_tokens=row["input_tokens"],
        output_tokens=row["output_tokens"],
        thinking_tokens=row["thinking_tokens"],
        error=row["error"],
    )


class PipelineRegistry:
    """Records pipeline runs and their steps in SQLite.

    Write methods never raise: a failing write is logged and the run carries
    on. Read methods raise ``sqlite3`` errors normally.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        if db_path is None:
            from steprunner.config import get_registry_db_path

            db_path = get_registry_db_path()
        self._db_path = Path(db_path)
        ensure_private_dir(self._db_path.parent)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        try:
            self._conn.row_factory = sqlite3.Row
            self._lock = threading.Lock()
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute(_CREATE_PIPELINES)
            self._conn.execute(_CREATE_STEPS)
            for idx in _CREATE_INDEXES:
                self._conn.execute(idx)
            self._conn.commit()
            secure_database(self._db_path)
        except Exception:
            self._conn.close()
            raise

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _write(self, sql: str, params: tuple, *, error_label: str) -> None:
        try:
            with self._lock:
                self._conn.execute(sql, params)
                self._conn.commit()
        except Exception as e:
            logger.error("Failed to write %s: %s", error_label, e)

    # -- run lifecycle -----------------------------------------------------

    def start_pipeline(
        self,
        pipeline_id: str,
        definition: PipelineDefinition,
        total_steps: int,
    ) -> None:
        now = _now()
        self._write(
            _INSERT_PIPELINE,
            (
                pipeline_id,
                definition.name,
                definition_to_yaml(definition),
                "running",
                now,
                now,
                total_steps,
            ),
            error_label="pipeline record",
        )

    def update_progress(self, pipeline_id: str, completed_steps: int, total_cost_usd: float) -> None:
        self._write(
            "UPDATE pipelines SET completed_steps = ?, total_cost_usd = ? WHERE pipeline_id = ?",
            (completed_steps, total_cost_usd, pipeline_id),
            error_label="pipeline progress",
        )

    def finalize_pipeline(
        self,
        pipeline_id: str,
        status: str,
        completed_steps: int,
        total_cost_usd: float,
    ) -> None:
        self._write(
            "UPDATE pipelines SET status = ?, completed_at = ?, completed_steps = ?, "
            "total_cost_usd = ? WHERE pipeline_id = ?",
            (status, _now(), completed_steps, total_cost_usd, pipeline_id),
            error_label="pipeline finalization",
        )

    def start_step(
        self,
        *,
        step_id: str,
        pipeline_id: str,
        step_number: int,
        name: str,
        agent_id: str | None,
        session_id: str | None,
        input_schema: dict | None,
        output_schema: dict | None,
    ) -> None:
        self._write(
            _INSERT_STEP,
            (
                step_id,
                pipeline_id,
                step_number,
                name,
                agent_id,
                session_id,
                json.dumps(input_schema or {}),
                json.dumps(output_schema or {}),
            ),
            error_label="step record",
        )

    def complete_step(
        self,
        step_id: str,
        *,
        output: Any,
        cost_usd: float,
        model: str | None = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
        thinking_tokens: int = 0,
    ) -> None:
        self._write(
            "UPDATE pipeline_steps SET status = 'completed', result = ?, cost_usd = ?, "
            "model = ?, input_tokens = ?, output_tokens = ?, thinking_tokens = ? "
            "WHERE step_id = ?",
            (
                _dump_json(output),
                cost_usd,
                model,
                input_tokens,
                output_tokens,
                thinking_tokens,
                step_id,
            ),
            error_label="step completion",
        )

    def fail_step(self, step_id: str, *, status: str, error: str) -> None:
        scrubbed = scrub_secrets(error)
        self._write(
            "UPDATE pipeline_steps SET status = ?, result = ?, error = ? WHERE step_id = ?",
            (status, json.dumps({"error": scrubbed}), scrubbed, step_id),
            error_label="step failure",
        )

    # -- definitions and history -------------------------------------------

    def save(self, definition: PipelineDefinition, yaml_source: str | None = None) -> str:
        """Store a definition without running it. Returns the new pipeline id."""
        pipeline_id = new_uuid()
        with self._lock:
            self._conn.execute(
                "INSERT INTO pipelines (pipeline_id, name, definition_yaml, status, created_at, "
                "total_steps, completed_steps, total_cost_usd) "
                "VALUES (?, ?, ?, 'pending', ?, ?, 0, 0)",
                (
                    pipeline_id,
                    definition.name,
                    yaml_source if yaml_source is not None else definition_to_yaml(definition),
                    _now(),
                    count_steps(definition),
                ),
            )
            self._conn.commit()
        return pipeline_id

    def load(self, pipeline_id: str) -> PipelineRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM pipelines WHERE pipeline_id = ?", (pipeline_id,)
            ).fetchone()
        return _row_to_pipeline(row) if row else None

    def get_steps(self, pipeline_id: str) -> list[PipelineStepRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM pipeline_steps WHERE pipeline_id = ? ORDER BY step_number, rowid",
                (pipeline_id,),
            ).fetchall()
        return [_row_to_step(row) for row in rows]

    def list_pipelines(self, limit: int = 50) -> list[PipelineRecord]:
        """Most recent runs first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM pipelines ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [_row_to_pipeline(row) for row in rows]

    def get_history(self, name: str, limit: int = 20) -> list[PipelineRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM pipelines WHERE name = ? ORDER BY created_at DESC, rowid DESC "
                "LIMIT ?",
                (name, limit),
            ).fetchall()
        return [_row_to_pipeline(row) for row in rows]

    def get_cost_summary(self, pipeline_id: str) -> PipelineCostSummary | None:
        record = self.load(pipeline_id)
        if record is None:
            return None
        steps = self.get_steps(pipeline_id)
        with self._lock:
            (count,) = self._conn.execute(
                "SELECT COUNT(*) FROM pipelines WHERE name = ?", (record.name,)
            ).fetchone()
        return PipelineCostSummary(
            pipeline_id=pipeline_id,
            name=record.name,
            total_cost_usd=record.total_cost_usd,
            step_costs=[StepCost(step_name=s.name, cost_usd=s.cost_usd) for s in steps],
            execution_count=count,
        )

    def get_aggregate_cost(self, name: str) -> AggregateCost:
        """Total and average cost across every run of the pipeline *name*."""
        with self._lock:
            total, count = self._conn.execute(
                "SELECT COALESCE(SUM(total_cost_usd), 0), COUNT(*) FROM pipelines WHERE name = ?",
                (name,),
            ).fetchone()
        return AggregateCost(
            total_cost_usd=total,
            execution_count=count,
            avg_cost_usd=total / count if count else 0.0,
        )

    def delete(self, pipeline_id: str) -> bool:
        """Delete a run and its steps. Returns False when the id is unknown."""
        with self._lock:
            self._conn.execute("DELETE FROM pipeline_steps WHERE pipeline_id = ?", (pipeline_id,))
            cursor = self._conn.execute(
                "DELETE FROM pipelines WHERE pipeline_id = ?", (pipeline_id,)
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> PipelineRegistry:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
