# cli.py
from __future__ import annotations

import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import NoReturn, Tuple

import click

from plumber.config import load_pipeline
from plumber.errors import INVALID_CONFIG, ConfigError, PlumberError
from plumber.host.local import LocalActionRunner
from plumber.model import PipelineConfig, Result, ScmSpec
from plumber.runner import prepare, run_pipeline
from plumber.ui.console import Console, get_console, set_console

DEFAULT_PIPELINE = "plumber_pipeline.py"
OTHER_PIPELINES = ("*_pipeline.py", "*.pipeline.json")


def discover_pipeline(pipeline_arg: str | None, root: Path = Path(".")) -> Path:
    """
    --pipeline wins (".py" may be omitted). Otherwise plumber_pipeline.py,
    else the one *_pipeline.py / *.pipeline.json under root.
    """
    if pipeline_arg:
        for path in (Path(pipeline_arg), Path(f"{pipeline_arg}.py")):
            if path.is_file():
                return path
        raise ConfigError(kind=INVALID_CONFIG, message=f"Pipeline file not found: {pipeline_arg}")

    default = root / DEFAULT_PIPELINE
    if default.is_file():
        return default

    found = sorted({p for pattern in OTHER_PIPELINES for p in root.glob(pattern)})
    if not found:
        raise ConfigError(
            kind=INVALID_CONFIG,
            message="No pipeline file found",
            details={"looked_for": ", ".join((DEFAULT_PIPELINE,) + OTHER_PIPELINES)},
        )
    if len(found) > 1:
        raise ConfigError(
            kind=INVALID_CONFIG,
            message="Multiple pipeline files found, pick one with --pipeline",
            details={"candidates": ", ".join(p.name for p in found)},
        )
    return found[0]


def _abort(title: str, e: PlumberError) -> NoReturn:
    details = [f"kind={e.kind}"]
    if e.phase:
        details.append(f"phase={e.phase}")
    details.extend(f"{k}={v}" for k, v in e.details.items())
    get_console().print_error(title, e.message, details=details)
    sys.exit(1)


def _load(pipeline_arg: str | None) -> Tuple[Path, PipelineConfig]:
    console = get_console()
    try:
        path = discover_pipeline(pipeline_arg)
        return path, load_pipeline(path)
    except PlumberError as e:
        _abort("Invalid pipeline", e)
    except Exception as e:
        console.print_error("Failed to load pipeline", f"{type(e).__name__}: {e}")
        if console.debug:
            console.print_exception(e)
        sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """Plumber: phase pipelines with matrix fan-out, stashes and notifiers."""
    console = Console(debug=debug)
    set_console(console)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option(
    "--pipeline",
    "pipeline_arg",
    default=None,
    help=f"Pipeline file path (defaults to {DEFAULT_PIPELINE} if present)",
)
@click.option("--workers", default=None, type=int, help="Number of parallel workers (default: one per unit)")
@click.option("--name", default="p", show_default=True, help="Build name")
@click.option("--build-number", default=1, type=int, show_default=True, help="Build number")
@click.option("--work-dir", default=".plumber", show_default=True, help="Root for workspaces, stashes and archives")
@click.option(
    "--source-dir",
    default=None,
    help="Local source tree checked out into every workspace when the pipeline declares no scm",
)
@click.pass_context
def run(ctx, pipeline_arg, workers, name, build_number, work_dir, source_dir):
    """Run a Plumber pipeline."""
    console = get_console()

    _, config = _load(pipeline_arg)

    if source_dir and not config.scm:
        config = replace(config, scm=(ScmSpec("dir", {"path": str(Path(source_dir).resolve())}),))

    build_id = f"{name}#{build_number}"
    root = Path(work_dir)

    try:
        report = run_pipeline(
            config,
            LocalActionRunner(root / "work", build=build_id),
            build_id=build_id,
            max_workers=workers,
            console=console,
            stash_root=root / "stash" / build_id.replace("#", "_"),
            archive_root=root / "archive" / build_id.replace("#", "_"),
        )
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if report.result is Result.FAILURE:
        sys.exit(1)


@cli.command()
@click.option(
    "--pipeline",
    "pipeline_arg",
    default=None,
    help=f"Pipeline file path (defaults to {DEFAULT_PIPELINE} if present)",
)
@click.pass_context
def plan(ctx, pipeline_arg):
    """Validate a pipeline and print its execution plan without running it."""
    console = get_console()

    pipeline_path, config = _load(pipeline_arg)

    try:
        execution_plan = prepare(config)
    except PlumberError as e:
        _abort("Invalid pipeline", e)

    console.print_header(f"Plan: {pipeline_path.name}")
    for i, level in enumerate(execution_plan.levels(), start=1):
        console.print_info(f"Level {i}:")
        for s in level:
            after = execution_plan.graph.predecessors[s.name]
            suffix = f" (after: {', '.join(after)})" if after else ""
            console.print_info(f"  {s.name}{suffix}")
            for unit in s.units if s.is_parallel else ():
                console.print_info(f"    {unit.label}")
    console.print_info(f"\n{len(execution_plan.sets)} phase(s), {execution_plan.unit_count} unit(s)")


if __name__ == "__main__":
    cli()
