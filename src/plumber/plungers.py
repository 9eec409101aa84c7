# plungers.py
from __future__ import annotations

from typing import Any, Callable, List, Mapping

from .errors import UNKNOWN_PLUNGER, ConfigError, INVALID_CONFIG
from .model import PipelineStep
from .registry import Registry

# A plunger turns action arguments into pipeline steps for the runner.
PlungerFn = Callable[[Mapping[str, Any]], List[PipelineStep]]

PLUNGERS: Registry[PlungerFn] = Registry("plunger", UNKNOWN_PLUNGER)


def render_value(value: Any) -> str:
    """Log form of an argument: mappings as [k:v, ...], lists as [a, b]."""
    if isinstance(value, Mapping):
        if not value:
            return "[:]"
        return "[" + ", ".join(f"{k}:{render_value(v)}" for k, v in value.items()) + "]"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(render_value(v) for v in value) + "]"
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


@PLUNGERS.entry("simpleEcho")
def simple_echo(args: Mapping[str, Any]) -> List[PipelineStep]:
    return [PipelineStep("echo", f"echoing {k} == {render_value(v)}") for k, v in args.items()]


@PLUNGERS.entry("catFile")
def cat_file(args: Mapping[str, Any]) -> List[PipelineStep]:
    path = args.get("file")
    if not path:
        raise ConfigError(
            kind=INVALID_CONFIG,
            message="catFile requires a 'file' argument",
            details={"args": dict(args)},
        )
    return [PipelineStep("sh", f"cat {path}")]


@PLUNGERS.entry("clean")
def clean(args: Mapping[str, Any]) -> List[PipelineStep]:
    return [PipelineStep("deleteDir")]


def resolve_plunger(
    name: str,
    args: Mapping[str, Any],
    registry: Registry[PlungerFn] | None = None,
) -> List[PipelineStep]:
    fn = (registry or PLUNGERS).get(name)
    return list(fn(args))
