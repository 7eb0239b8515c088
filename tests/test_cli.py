"""Tests for the CLI."""

import json
import sys
import textwrap
import types

import pytest
from typer.testing import CliRunner

from steprunner import __version__
from steprunner.cli._helpers import console, parse_variables
from steprunner.cli.main import app
from steprunner.pipeline.capability import StepExecutionResult
from steprunner.registry.store import PipelineRegistry

runner = CliRunner()

PIPELINE = textwrap.dedent("""\
    name: demo
    variables:
      n: 1
    steps:
      - name: first
        skill: count
        input:
          n: "${variables.n}"
      - name: second
        agent: writer
        input:
          text: "n is ${steps.first.output.n}"
""")


@pytest.fixture(autouse=True)
def _wide_console(monkeypatch):
    monkeypatch.setattr(console, "width", 200)


@pytest.fixture()
def pipeline_file(tmp_path):
    path = tmp_path / "demo.yaml"
    path.write_text(PIPELINE)
    return path


@pytest.fixture()
def fake_executors(monkeypatch):
    calls = []

    async def recording(context):
        calls.append(context)
        return StepExecutionResult(output=dict(context.input), estimated_cost_usd=0.5)

    async def failing(context):
        raise RuntimeError(f"{context.step_name} exploded")

    mod = types.ModuleType("cli_fake_executors")
    mod.recording = recording
    mod.failing = failing
    mod.calls = calls
    monkeypatch.setitem(sys.modules, "cli_fake_executors", mod)
    return mod


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestParseVariables:
    def test_scalars_are_typed(self):
        assert parse_variables(["n=3", "ok=true", "ratio=0.5", "s=hello"]) == {
            "n": 3,
            "ok": True,
            "ratio": 0.5,
            "s": "hello",
        }

    def test_value_may_contain_equals(self):
        assert parse_variables(["q=a=b"]) == {"q": "a=b"}

    def test_structured_values_stay_text(self):
        assert parse_variables(["x=[1, 2]", "empty="]) == {"x": "[1, 2]", "empty": ""}

    def test_invalid_format(self, pipeline_file):
        result = runner.invoke(
            app, ["run", str(pipeline_file), "--var", "novalue", "--no-registry"]
        )
        assert result.exit_code == 1
        assert "Invalid variable format" in result.output


class TestValidate:
    def test_valid(self, pipeline_file):
        result = runner.invoke(app, ["validate", str(pipeline_file)])
        assert result.exit_code == 0
        assert "Valid" in result.output
        assert "first" in result.output
        assert "skill:count" in result.output

    def test_invalid_lists_errors(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("name: bad\nsteps:\n  - name: a\n  - name: a\n    skill: s\n")
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 1
        assert "Invalid" in result.output
        assert 'must have either "skill" or "agent"' in result.output
        assert 'duplicate step name "a"' in result.output

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["validate", str(tmp_path / "nope.yaml")])
        assert result.exit_code == 1
        assert "Cannot read" in result.output

    def test_compatibility_warning(self, tmp_path):
        path = tmp_path / "warn.yaml"
        path.write_text(
            textwrap.dedent("""\
            name: warn
            steps:
              - name: a
                skill: s
                outputSchema: {type: string}
              - name: b
                skill: s
                inputSchema: {type: object, required: [x]}
            """)
        )
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 0
        assert "Warning:" in result.output
        assert 'expects object input' in result.output

    def test_save_stores_pending_definition(self, pipeline_file, tmp_path):
        db = tmp_path / "r.db"
        result = runner.invoke(
            app, ["validate", str(pipeline_file), "--save", "--registry-db", str(db)]
        )
        assert result.exit_code == 0
        assert "Saved as" in result.output
        with PipelineRegistry(db) as registry:
            [record] = registry.list_pipelines()
        assert record.status == "pending"
        assert record.definition_yaml == PIPELINE

    def test_without_save_nothing_stored(self, pipeline_file, tmp_path):
        db = tmp_path / "r.db"
        result = runner.invoke(app, ["validate", str(pipeline_file), "--registry-db", str(db)])
        assert result.exit_code == 0
        assert not db.exists()


class TestRun:
    def test_echo_run(self, pipeline_file):
        result = runner.invoke(app, ["run", str(pipeline_file), "--no-registry"])
        assert result.exit_code == 0
        assert "Pipeline succeeded" in result.output
        assert "Tokens" in result.output

    def test_dry_run(self, pipeline_file, fake_executors):
        result = runner.invoke(
            app,
            ["run", str(pipeline_file), "--dry-run", "--executor", "cli_fake_executors:recording"],
        )
        assert result.exit_code == 0
        assert "Pipeline definition is valid." in result.output
        assert fake_executors.calls == []

    def test_vars_reach_executor(self, pipeline_file, fake_executors):
        result = runner.invoke(
            app,
            [
                "run",
                str(pipeline_file),
                "--no-registry",
                "--executor",
                "cli_fake_executors:recording",
                "--var",
                "n=7",
            ],
        )
        assert result.exit_code == 0
        assert fake_executors.calls[0].input == {"n": 7}
        assert fake_executors.calls[1].input == {"text": "n is 7"}

    def test_failure_exits_nonzero(self, pipeline_file, fake_executors):
        result = runner.invoke(
            app,
            ["run", str(pipeline_file), "--no-registry", "--executor", "cli_fake_executors:failing"],
        )
        assert result.exit_code == 1
        assert "Pipeline failed" in result.output
        assert "first exploded" in result.output

    def test_bad_executor_reference(self, pipeline_file):
        result = runner.invoke(
            app, ["run", str(pipeline_file), "--no-registry", "--executor", "nocolon"]
        )
        assert result.exit_code == 1
        assert "Invalid executor reference" in result.output

    def test_max_cost(self, pipeline_file, fake_executors):
        result = runner.invoke(
            app,
            [
                "run",
                str(pipeline_file),
                "--no-registry",
                "--executor",
                "cli_fake_executors:recording",
                "--max-cost",
                "0.5",
            ],
        )
        assert result.exit_code == 1
        assert "Cost ceiling" in result.output
        assert len(fake_executors.calls) == 1

    def test_event_log(self, pipeline_file, tmp_path):
        log = tmp_path / "events.jsonl"
        result = runner.invoke(
            app, ["run", str(pipeline_file), "--no-registry", "--event-log", str(log)]
        )
        assert result.exit_code == 0
        channels = [json.loads(line)["channel"] for line in log.read_text().splitlines()]
        assert channels == [
            "pipeline.step_completed",
            "pipeline.step_completed",
            "pipeline.completed",
        ]


class TestHistory:
    def _run(self, pipeline_file, db, *extra):
        return runner.invoke(
            app, ["run", str(pipeline_file), "--registry-db", str(db), *extra]
        )

    def _latest_id(self, db) -> str:
        with PipelineRegistry(db) as registry:
            return registry.list_pipelines(limit=1)[0].pipeline_id

    def test_missing_db(self, tmp_path):
        result = runner.invoke(app, ["history", "list", "--registry-db", str(tmp_path / "x.db")])
        assert result.exit_code == 1
        assert "Registry database not found" in result.output

    def test_list(self, pipeline_file, tmp_path):
        db = tmp_path / "r.db"
        assert self._run(pipeline_file, db).exit_code == 0
        result = runner.invoke(app, ["history", "list", "--registry-db", str(db)])
        assert result.exit_code == 0
        assert "demo" in result.output
        assert "completed" in result.output

    def test_list_by_name_empty(self, pipeline_file, tmp_path):
        db = tmp_path / "r.db"
        self._run(pipeline_file, db)
        result = runner.invoke(
            app, ["history", "list", "--name", "other", "--registry-db", str(db)]
        )
        assert result.exit_code == 0
        assert "No pipeline runs recorded." in result.output

    def test_show_json(self, pipeline_file, tmp_path):
        db = tmp_path / "r.db"
        self._run(pipeline_file, db)
        pid = self._latest_id(db)
        result = runner.invoke(app, ["history", "show", pid, "--json", "--registry-db", str(db)])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["name"] == "demo"
        assert [s["name"] for s in data["steps"]] == ["first", "second"]

    def test_show_table(self, pipeline_file, tmp_path):
        db = tmp_path / "r.db"
        self._run(pipeline_file, db)
        pid = self._latest_id(db)
        result = runner.invoke(app, ["history", "show", pid, "--registry-db", str(db)])
        assert result.exit_code == 0
        assert "second" in result.output

    def test_show_unknown(self, pipeline_file, tmp_path):
        db = tmp_path / "r.db"
        self._run(pipeline_file, db)
        result = runner.invoke(app, ["history", "show", "nope", "--registry-db", str(db)])
        assert result.exit_code == 1

    def test_cost_by_id_and_name(self, pipeline_file, tmp_path, fake_executors):
        db = tmp_path / "r.db"
        self._run(pipeline_file, db, "--executor", "cli_fake_executors:recording")
        self._run(pipeline_file, db, "--executor", "cli_fake_executors:recording")
        pid = self._latest_id(db)

        by_id = runner.invoke(app, ["history", "cost", pid, "--registry-db", str(db)])
        assert by_id.exit_code == 0
        assert "$1.0000" in by_id.output

        by_name = runner.invoke(app, ["history", "cost", "demo", "--registry-db", str(db)])
        assert by_name.exit_code == 0
        assert "Runs:    2" in by_name.output
        assert "$2.0000" in by_name.output

    def test_cost_unknown(self, pipeline_file, tmp_path):
        db = tmp_path / "r.db"
        self._run(pipeline_file, db)
        result = runner.invoke(app, ["history", "cost", "ghost", "--registry-db", str(db)])
        assert result.exit_code == 1

    def test_delete(self, pipeline_file, tmp_path):
        db = tmp_path / "r.db"
        self._run(pipeline_file, db)
        pid = self._latest_id(db)
        result = runner.invoke(app, ["history", "delete", pid, "--registry-db", str(db)])
        assert result.exit_code == 0
        again = runner.invoke(app, ["history", "delete", pid, "--registry-db", str(db)])
        assert again.exit_code == 1
