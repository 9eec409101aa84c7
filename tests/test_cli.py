from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from plumber.cli import cli, discover_pipeline
from plumber.errors import ConfigError

PIPELINE_PY = """\
from plumber.dsl import phase, pipeline, script

PIPELINE = pipeline(
    phase("hello", script("echo hello")),
    phase("goodbye", script("echo goodbye"), after=["hello"]),
)
"""


@pytest.fixture()
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_run_discovers_default_pipeline(project: Path) -> None:
    (project / "plumber_pipeline.py").write_text(PIPELINE_PY, encoding="utf-8")
    result = CliRunner().invoke(cli, ["run", "--name", "p", "--build-number", "7"])

    assert result.exit_code == 0, result.output
    assert "BUILD STARTED: p#7" in result.output
    assert "[hello] hello" in result.output
    assert "[goodbye] goodbye" in result.output
    assert "Multiple phase" not in result.output
    assert "Finished: SUCCESS" in result.output
    assert (project / ".plumber" / "work" / "p_7" / "hello").is_dir()


def test_run_exits_non_zero_on_failure(project: Path) -> None:
    (project / "broken.pipeline.json").write_text(
        json.dumps({"phases": [{"name": "bad", "action": "exit 1"}]}), encoding="utf-8"
    )
    result = CliRunner().invoke(cli, ["run"])

    assert result.exit_code == 1
    assert "[bad] STATUS: FAILURE" in result.output


def test_run_reports_config_errors(project: Path) -> None:
    (project / "plumber_pipeline.py").write_text(
        "PIPELINE = {'phases': [{'name': 'lonely'}]}\n", encoding="utf-8"
    )
    result = CliRunner().invoke(cli, ["run"])

    assert result.exit_code == 1
    assert "No action or Pipeline code specified" in result.output


def test_source_dir_is_checked_out_when_no_scm(project: Path) -> None:
    src = project / "src"
    src.mkdir()
    (src / "data.txt").write_text("from the source tree\n", encoding="utf-8")
    (project / "ci.pipeline.json").write_text(
        json.dumps({"phases": [{"name": "read", "action": {"name": "catFile", "file": "data.txt"}}]}),
        encoding="utf-8",
    )
    result = CliRunner().invoke(cli, ["run", "--pipeline", "ci.pipeline.json", "--source-dir", "src"])

    assert result.exit_code == 0, result.output
    assert "[read] from the source tree" in result.output


def test_plan_prints_levels_and_units(project: Path) -> None:
    (project / "ci.pipeline.json").write_text(
        json.dumps(
            {
                "phases": [
                    {"name": "build", "action": "true"},
                    {"name": "test", "action": "true", "after": ["build"], "matrix": {"PY": ["3.11", "3.12"]}},
                ]
            }
        ),
        encoding="utf-8",
    )
    result = CliRunner().invoke(cli, ["plan"])

    assert result.exit_code == 0, result.output
    assert "Level 1:" in result.output
    assert "  test (after: build)" in result.output
    assert "    [test+PY=3.12]" in result.output
    assert "2 phase(s), 3 unit(s)" in result.output
    assert not (project / ".plumber").exists()


def test_plan_rejects_cycles(project: Path) -> None:
    (project / "ci.pipeline.json").write_text(
        json.dumps(
            {
                "phases": [
                    {"name": "a", "action": "true", "after": ["b"]},
                    {"name": "b", "action": "true", "after": ["a"]},
                ]
            }
        ),
        encoding="utf-8",
    )
    result = CliRunner().invoke(cli, ["plan"])

    assert result.exit_code == 1
    assert "Dependency cycle" in result.output


def test_missing_pipeline_file(project: Path) -> None:
    result = CliRunner().invoke(cli, ["run"])
    assert result.exit_code == 1
    assert "No pipeline file found" in result.output


def test_multiple_candidates_need_an_explicit_choice(project: Path) -> None:
    for name in ("a_pipeline.py", "b.pipeline.json"):
        (project / name).write_text("", encoding="utf-8")
    result = CliRunner().invoke(cli, ["plan"])
    assert result.exit_code == 1
    assert "Multiple pipeline files found" in result.output


def test_discovery_rules(tmp_path: Path) -> None:
    (tmp_path / "ci.pipeline.json").write_text("{}", encoding="utf-8")
    assert discover_pipeline(None, tmp_path) == tmp_path / "ci.pipeline.json"

    (tmp_path / "plumber_pipeline.py").write_text("", encoding="utf-8")
    (tmp_path / "other_pipeline.py").write_text("", encoding="utf-8")
    assert discover_pipeline(None, tmp_path) == tmp_path / "plumber_pipeline.py"

    (tmp_path / "plumber_pipeline.py").unlink()
    with pytest.raises(ConfigError) as exc:
        discover_pipeline(None, tmp_path)
    assert exc.value.details["candidates"] == "ci.pipeline.json, other_pipeline.py"


def test_explicit_pipeline_may_omit_the_py_suffix(project: Path) -> None:
    (project / "release.py").write_text(PIPELINE_PY, encoding="utf-8")
    result = CliRunner().invoke(cli, ["plan", "--pipeline", "release"])

    assert result.exit_code == 0, result.output
    assert "Plan: release.py" in result.output

    result = CliRunner().invoke(cli, ["plan", "--pipeline", "missing"])
    assert result.exit_code == 1
    assert "Pipeline file not found: missing" in result.output
