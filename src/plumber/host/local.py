# local.py
from __future__ import annotations

import os
import re
import shutil
import subprocess
from pathlib import Path
from string import Template
from typing import Any, Dict, Mapping, Sequence

from ..errors import UNKNOWN_STEP, ExecutionError
from ..model import ExecutionUnit, PipelineStep, Result
from ..runner import UnitContext
from ..ui.console import Console
from .scm import checkout

DEFAULT_WORK_ROOT = ".plumber/work"
OUTPUT_TAIL = 4000


def slug(text: str) -> str:
    return re.sub(r"[^A-Za-z0-9._=-]+", "_", text).strip("_") or "_"


class LocalActionRunner:
    """
    Runs units on this machine.

    Layout:
      <work_root>/<build>/<unit slug>/    one workspace per unit
    """

    def __init__(self, work_root: str | Path = DEFAULT_WORK_ROOT, build: str = "build"):
        self.work_root = Path(work_root).resolve()
        self.build = build

    def workspace(self, unit: ExecutionUnit) -> Path:
        ws = self.work_root / slug(self.build) / slug(unit.display_name)
        ws.mkdir(parents=True, exist_ok=True)
        return ws

    def run(self, unit: ExecutionUnit, context: UnitContext) -> Result:
        ws = self.workspace(unit)
        if context.scm:
            context.console.print_debug(f"{unit.label} checkout: {', '.join(s.name for s in context.scm)}")
            checkout(context.scm, ws)

        env = {
            "PLUMBER_BUILD": context.build_id,
            "PLUMBER_PHASE": unit.phase_name,
            "WORKSPACE": str(ws),
        }
        env.update(context.env)

        action = unit.phase.action
        steps = action.steps if action is not None else ()
        return self._run_steps(steps, unit, ws, env, context.console)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _run_steps(
        self,
        steps: Sequence[PipelineStep],
        unit: ExecutionUnit,
        cwd: Path,
        env: Dict[str, str],
        console: Console,
    ) -> Result:
        result = Result.SUCCESS
        for step in steps:
            r = self._run_step(step, unit, cwd, env, console)
            result = Result.worst(result, r)
            if r is Result.FAILURE:
                break
        return result

    def _run_step(
        self,
        step: PipelineStep,
        unit: ExecutionUnit,
        cwd: Path,
        env: Dict[str, str],
        console: Console,
    ) -> Result:
        name = step.name

        if name == "sh":
            return self._sh(str(step.arg or ""), unit, cwd, env, console)

        if name == "echo":
            console.print_unit_output(unit, Template(str(step.arg or "")).safe_substitute(env))
            return Result.SUCCESS

        if name == "deleteDir":
            shutil.rmtree(cwd, ignore_errors=True)
            cwd.mkdir(parents=True, exist_ok=True)
            return Result.SUCCESS

        if name == "writeFile":
            args = _mapping_arg(step, ("file", "text"))
            target = cwd / str(args["file"])
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(Template(str(args.get("text") or "")).safe_substitute(env), encoding="utf-8")
            return Result.SUCCESS

        if name == "dir":
            sub = cwd / str(step.arg or ".")
            sub.mkdir(parents=True, exist_ok=True)
            return self._run_steps(step.body, unit, sub, env, console)

        if name == "withEnv":
            return self._run_steps(step.body, unit, cwd, {**env, **_env_arg(step.arg)}, console)

        if name == "error":
            console.print_unit_output(unit, str(step.arg or "error step"))
            return Result.FAILURE

        raise ExecutionError(
            kind=UNKNOWN_STEP,
            message=f"Unknown step '{name}'",
            phase=unit.phase_name,
            details={"supported": "sh, echo, deleteDir, writeFile, dir, withEnv, error"},
        )

    def _sh(self, cmd: str, unit: ExecutionUnit, cwd: Path, env: Dict[str, str], console: Console) -> Result:
        full_env = os.environ.copy()
        full_env.update(env)

        proc = subprocess.run(
            cmd,
            shell=True,
            cwd=str(cwd),
            env=full_env,
            text=True,
            capture_output=True,
        )
        if proc.stdout:
            console.print_unit_output(unit, proc.stdout)
        if proc.stderr:
            console.print_unit_output(unit, proc.stderr[-OUTPUT_TAIL:])

        if proc.returncode != 0:
            console.print_unit_output(unit, f"script returned exit code {proc.returncode}: {cmd}")
            return Result.FAILURE
        return Result.SUCCESS


def _mapping_arg(step: PipelineStep, keys: Sequence[str]) -> Mapping[str, Any]:
    if not isinstance(step.arg, Mapping) or keys[0] not in step.arg:
        raise ExecutionError(
            kind=UNKNOWN_STEP,
            message=f"Step '{step.name}' needs a mapping with '{keys[0]}'",
            details={"keys": ", ".join(keys)},
        )
    return step.arg


def _env_arg(arg: Any) -> Dict[str, str]:
    # withEnv(["A=1", "B=2"]) or withEnv({"A": 1})
    if isinstance(arg, Mapping):
        return {str(k): str(v) for k, v in arg.items()}
    out: Dict[str, str] = {}
    for item in arg or []:
        key, _, value = str(item).partition("=")
        out[key] = value
    return out
