from __future__ import annotations

import json
from pathlib import Path

import pytest

from plumber.config import load_pipeline, parse_action, parse_config, parse_steps
from plumber.errors import INVALID_CONFIG, UNKNOWN_PLUNGER, ConfigError
from plumber.model import MatrixAxis, PipelineConfig, PipelineStep, ScmSpec
from plumber.plungers import PLUNGERS


def test_parse_config_full_mapping() -> None:
    cfg = parse_config(
        {
            "debug": True,
            "scm": [{"name": "git", "config": {"url": "https://example.com/r.git", "branch": "*/master"}}],
            "archiveDirs": ["outputDir/**"],
            "notifiers": [{"type": "echo", "onBefore": True}],
            "phases": [
                {"name": "build", "action": {"script": "make"}, "stashDirs": ["out"]},
                {
                    "name": "test",
                    "action": "make test",
                    "after": "build",
                    "unstash": "build",
                    "matrix": [{"axis": "FOO", "values": ["bar", "baz"]}],
                    "scm": [{"name": "dir", "config": {"path": "."}}],
                },
            ],
        }
    )
    assert cfg.debug is True
    assert cfg.scm == (ScmSpec("git", {"url": "https://example.com/r.git", "branch": "*/master"}),)
    assert cfg.archive_dirs == ("outputDir/**",)
    assert cfg.notifiers[0].on_before and cfg.notifiers[0].on_after

    build, test = cfg.phases
    assert build.stash_dirs == ("out",)
    assert build.action.steps == (PipelineStep("sh", "make"),)
    assert build.scm_chain(cfg.scm) == cfg.scm

    assert test.after == ("build",)
    assert test.unstash == "build"
    assert test.matrix == (MatrixAxis("FOO", ("bar", "baz")),)
    assert test.scm_chain(cfg.scm) == (ScmSpec("dir", {"path": "."}),)


def test_matrix_accepts_mapping_form() -> None:
    cfg = parse_config({"phases": [{"name": "p", "action": "true", "matrix": {"A": [1, 2], "B": "x"}}]})
    assert cfg.phases[0].matrix == (MatrixAxis("A", ("1", "2")), MatrixAxis("B", ("x",)))


def test_phase_without_action_parses_with_none() -> None:
    cfg = parse_config({"phases": [{"name": "lonely"}]})
    assert cfg.phases[0].action is None


def test_phase_level_pipeline_is_an_inline_action() -> None:
    cfg = parse_config({"phases": [{"name": "p", "pipeline": [{"echo": "hi"}]}]})
    action = cfg.phases[0].action
    assert action.kind == "pipeline"
    assert action.steps == (PipelineStep("echo", "hi"),)


def test_parse_steps_nests_list_values_as_bodies() -> None:
    steps = parse_steps([{"stage": [{"echo": "nested"}]}, "deleteDir", {"name": "dir", "arg": "sub", "body": [{"sh": "ls"}]}])
    assert steps == (
        PipelineStep("stage", None, (PipelineStep("echo", "nested"),)),
        PipelineStep("deleteDir"),
        PipelineStep("dir", "sub", (PipelineStep("sh", "ls"),)),
    )


def test_plunger_action_by_name_passes_the_whole_mapping() -> None:
    action = parse_action({"name": "simpleEcho", "pants": "trousers"})
    assert action.kind == "plunger"
    assert action.name == "simpleEcho"
    assert [s.arg for s in action.steps] == ["echoing name == simpleEcho", "echoing pants == trousers"]


def test_plunger_action_with_explicit_args() -> None:
    action = parse_action({"plunger": "catFile", "args": {"file": "README"}})
    assert action.steps == (PipelineStep("sh", "cat README"),)


def test_unknown_plunger_fails_at_parse_time() -> None:
    with pytest.raises(ConfigError) as exc:
        parse_config({"phases": [{"name": "p", "action": {"name": "noSuchPlunger"}}]})
    assert exc.value.kind == UNKNOWN_PLUNGER
    assert "noSuchPlunger" in exc.value.message


def test_custom_plunger_registry() -> None:
    registry = PLUNGERS.copy()

    @registry.entry("twice")
    def twice(args):
        return [PipelineStep("echo", args["msg"])] * 2

    action = parse_action({"plunger": "twice", "args": {"msg": "hey"}}, plungers=registry)
    assert len(action.steps) == 2
    assert not PLUNGERS.has("twice")


@pytest.mark.parametrize(
    "data",
    [
        {"phases": "nope"},
        {"phases": [{"action": "true"}]},
        {"phases": [{"name": "p", "action": 42}]},
        {"phases": [{"name": "p", "action": "true", "after": [1]}]},
        {"phases": [{"name": "p", "action": "true"}], "notifiers": [{}]},
    ],
)
def test_invalid_config_shapes(data) -> None:
    with pytest.raises(ConfigError) as exc:
        parse_config(data)
    assert exc.value.kind == INVALID_CONFIG


def test_parse_config_passes_pipeline_config_through() -> None:
    cfg = PipelineConfig(phases=())
    assert parse_config(cfg) is cfg


def test_load_pipeline_from_json(tmp_path: Path) -> None:
    path = tmp_path / "ci.pipeline.json"
    path.write_text(json.dumps({"phases": [{"name": "hello", "action": "echo hello"}]}), encoding="utf-8")
    cfg = load_pipeline(path)
    assert [p.name for p in cfg.phases] == ["hello"]


def test_load_pipeline_from_python_constant(tmp_path: Path) -> None:
    path = tmp_path / "plumber_pipeline.py"
    path.write_text(
        "from plumber.dsl import phase, pipeline, script\n"
        "PIPELINE = pipeline(phase('a', script('true')), phase('b', script('true'), after=['a']))\n",
        encoding="utf-8",
    )
    cfg = load_pipeline(path)
    assert [p.name for p in cfg.phases] == ["a", "b"]


def test_load_pipeline_from_python_function(tmp_path: Path) -> None:
    path = tmp_path / "fn_pipeline.py"
    path.write_text(
        "def pipeline():\n"
        "    return {'phases': [{'name': 'only', 'action': 'true'}]}\n",
        encoding="utf-8",
    )
    assert [p.name for p in load_pipeline(path).phases] == ["only"]


def test_load_pipeline_rejects_files_without_a_definition(tmp_path: Path) -> None:
    path = tmp_path / "empty_pipeline.py"
    path.write_text("X = 1\n", encoding="utf-8")
    with pytest.raises(TypeError):
        load_pipeline(path)
