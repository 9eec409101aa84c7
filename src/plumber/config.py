# config.py
from __future__ import annotations

import json
import runpy
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from .errors import INVALID_CONFIG, ConfigError
from .model import (
    Action,
    MatrixAxis,
    NotifierSpec,
    PhaseSpec,
    PipelineConfig,
    PipelineStep,
    ScmSpec,
)
from .plungers import PlungerFn, resolve_plunger
from .registry import Registry


# ----------------------------------------------------------------------
# Mapping -> typed records
# ----------------------------------------------------------------------

def _get(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    # camelCase keys first, snake_case aliases second
    for k in keys:
        if k in data:
            return data[k]
    return default


def _invalid(message: str, phase: str | None = None, **details: Any) -> ConfigError:
    return ConfigError(kind=INVALID_CONFIG, message=message, phase=phase, details=details)


def _str_list(value: Any, what: str, phase: str | None = None) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise _invalid(f"'{what}' must be a string or a list of strings", phase, value=value)


def _parse_scm(value: Any, phase: str | None = None) -> Tuple[ScmSpec, ...]:
    if isinstance(value, Mapping):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise _invalid("'scm' must be a list of {name, config} entries", phase, value=value)

    out: List[ScmSpec] = []
    for entry in value:
        if isinstance(entry, ScmSpec):
            out.append(entry)
            continue
        if not isinstance(entry, Mapping) or "name" not in entry:
            raise _invalid("scm entry needs a 'name'", phase, entry=entry)
        out.append(ScmSpec(name=str(entry["name"]), config=dict(entry.get("config") or {})))
    return tuple(out)


def parse_steps(value: Any) -> Tuple[PipelineStep, ...]:
    """
    Inline pipeline code as data:
      [{"echo": "hi"}, {"sh": "make"}, {"stage": [{"echo": "nested"}]}]

    A list value becomes the step's body; anything else is its argument.
    A {"name": ..., "arg": ..., "body": [...]} mapping is accepted too.
    """
    if isinstance(value, (PipelineStep, Mapping)):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise _invalid("inline pipeline must be a list of steps", value=value)

    steps: List[PipelineStep] = []
    for item in value:
        if isinstance(item, PipelineStep):
            steps.append(item)
        elif isinstance(item, str):
            steps.append(PipelineStep(item))
        elif isinstance(item, Mapping) and "name" in item and set(item) <= {"name", "arg", "body"}:
            steps.append(
                PipelineStep(str(item["name"]), item.get("arg"), parse_steps(item.get("body") or []))
            )
        elif isinstance(item, Mapping):
            for name, arg in item.items():
                if isinstance(arg, (list, tuple)):
                    steps.append(PipelineStep(str(name), None, parse_steps(arg)))
                else:
                    steps.append(PipelineStep(str(name), arg))
        else:
            raise _invalid("unrecognised inline pipeline step", step=item)
    return tuple(steps)


def parse_action(
    value: Any,
    phase: str | None = None,
    plungers: Registry[PlungerFn] | None = None,
) -> Action:
    """
    Accepted descriptors:
      "echo hi"                              -> script
      {"script": "echo hi"}                  -> script
      {"name": "catFile", "file": "README"}  -> plunger, the mapping is its args
      {"plunger": "simpleEcho", "args": {}}  -> plunger
      {"pipeline": [...]}                    -> inline pipeline
    """
    if isinstance(value, Action):
        return value
    if isinstance(value, str):
        return Action(kind="script", steps=(PipelineStep("sh", value),))
    if not isinstance(value, Mapping):
        raise _invalid("'action' must be a mapping or a script string", phase, value=value)

    if "script" in value:
        return Action(kind="script", steps=(PipelineStep("sh", str(value["script"])),))

    if "plunger" in value or "name" in value:
        name = str(_get(value, "plunger", "name"))
        if "plunger" in value:
            args = dict(value.get("args") or {})
        else:
            # the whole descriptor, name included, is the plunger input
            args = dict(value)
        steps = resolve_plunger(name, args, plungers)
        return Action(kind="plunger", steps=tuple(steps), name=name, args=args)

    if "pipeline" in value:
        return Action(kind="pipeline", steps=parse_steps(value["pipeline"]))

    raise _invalid("action needs one of 'script', 'name', 'plunger' or 'pipeline'", phase, action=dict(value))


def _parse_matrix(value: Any, phase: str) -> Tuple[MatrixAxis, ...]:
    if value is None:
        return ()
    if isinstance(value, Mapping):
        value = [{"axis": k, "values": v} for k, v in value.items()]
    if not isinstance(value, (list, tuple)):
        raise _invalid("'matrix' must be a list of {axis, values}", phase, value=value)

    axes: List[MatrixAxis] = []
    for entry in value:
        if isinstance(entry, MatrixAxis):
            axes.append(entry)
            continue
        if not isinstance(entry, Mapping) or "axis" not in entry:
            raise _invalid("matrix entry needs an 'axis'", phase, entry=entry)
        values = entry.get("values")
        if isinstance(values, (str, int, float)):
            values = [values]
        if not isinstance(values, (list, tuple)):
            raise _invalid("matrix 'values' must be a list", phase, axis=entry["axis"])
        # duplicate / empty axes are rejected by the matrix expander
        axes.append(MatrixAxis(name=str(entry["axis"]), values=tuple(str(v) for v in values)))
    return tuple(axes)


def parse_phase(data: Mapping[str, Any], plungers: Registry[PlungerFn] | None = None) -> PhaseSpec:
    if isinstance(data, PhaseSpec):
        return data
    if not isinstance(data, Mapping):
        raise _invalid("phase must be a mapping", value=data)

    name = data.get("name")
    if not isinstance(name, str) or not name:
        raise _invalid("phase needs a non-empty 'name'", entry=dict(data))

    action: Optional[Action] = None
    if data.get("action") is not None:
        action = parse_action(data["action"], name, plungers)
    elif data.get("pipeline") is not None:
        action = Action(kind="pipeline", steps=parse_steps(data["pipeline"]))

    scm_value = data.get("scm")
    unstash = data.get("unstash")
    if unstash is not None and not isinstance(unstash, str):
        raise _invalid("'unstash' must be a phase name", name, value=unstash)

    return PhaseSpec(
        name=name,
        action=action,
        scm=_parse_scm(scm_value, name) if scm_value is not None else None,
        after=_str_list(data.get("after"), "after", name),
        stash_dirs=_str_list(_get(data, "stashDirs", "stash_dirs"), "stashDirs", name),
        unstash=unstash,
        matrix=_parse_matrix(data.get("matrix"), name),
    )


def _parse_notifier(data: Any) -> NotifierSpec:
    if isinstance(data, NotifierSpec):
        return data
    if not isinstance(data, Mapping) or not data.get("type"):
        raise _invalid("notifier needs a 'type'", entry=data)
    return NotifierSpec(
        type=str(data["type"]),
        config=dict(data.get("config") or {}),
        on_before=bool(_get(data, "onBefore", "on_before", default=False)),
        on_after=bool(_get(data, "onAfter", "on_after", default=True)),
    )


def parse_config(
    data: Mapping[str, Any] | PipelineConfig,
    plungers: Registry[PlungerFn] | None = None,
) -> PipelineConfig:
    """Turn the front-end mapping into a PipelineConfig."""
    if isinstance(data, PipelineConfig):
        return data
    if not isinstance(data, Mapping):
        raise _invalid("pipeline configuration must be a mapping", value=type(data).__name__)

    phases = data.get("phases") or []
    if not isinstance(phases, (list, tuple)):
        raise _invalid("'phases' must be a list")

    return PipelineConfig(
        phases=tuple(parse_phase(p, plungers) for p in phases),
        debug=bool(data.get("debug", False)),
        scm=_parse_scm(data["scm"]) if data.get("scm") is not None else (),
        archive_dirs=_str_list(_get(data, "archiveDirs", "archive_dirs"), "archiveDirs"),
        notifiers=tuple(_parse_notifier(n) for n in data.get("notifiers") or []),
    )


# ----------------------------------------------------------------------
# Pipeline loading (local file)
# ----------------------------------------------------------------------

def load_pipeline(path: str | Path, plungers: Registry[PlungerFn] | None = None) -> PipelineConfig:
    """
    Load a pipeline from a file path.

    A .py file must define either:
      - pipeline() -> mapping | PipelineConfig
      - PIPELINE = mapping | PipelineConfig
    A .json file holds the mapping directly.
    """
    p = Path(path).expanduser().resolve()
    if not p.exists():
        raise FileNotFoundError(f"Pipeline file not found: {p}")

    if p.suffix == ".json":
        data: Any = json.loads(p.read_text(encoding="utf-8"))
        return parse_config(data, plungers)

    if p.suffix != ".py":
        raise ValueError(f"Pipeline must be a .py or .json file, got: {p.name}")

    run_name = f"plumber_pipeline_{p.stem}"
    globals_dict = runpy.run_path(str(p), run_name=run_name)

    data = None
    fn = globals_dict.get("pipeline")
    # `from plumber.dsl import pipeline` must not count as a definition
    if callable(fn) and getattr(fn, "__module__", None) == run_name:
        data = fn()
    elif "PIPELINE" in globals_dict:
        data = globals_dict["PIPELINE"]

    if not isinstance(data, (Mapping, PipelineConfig)):
        raise TypeError(
            "Pipeline file must return/define a mapping or PipelineConfig. "
            "Define pipeline() -> dict or PIPELINE = {...}."
        )
    return parse_config(data, plungers)
