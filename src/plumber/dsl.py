# src/plumber/dsl.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence

from .config import parse_steps
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


# ---------------------------------------------------------------------
# Action helpers
# ---------------------------------------------------------------------

def script(cmd: str) -> Action:
    """A shell script action."""
    return Action(kind="script", steps=(PipelineStep("sh", cmd),))


def plunger(name: str, registry: Registry[PlungerFn] | None = None, **args: Any) -> Action:
    """A named plunger, resolved now so an unknown name fails while building."""
    steps = resolve_plunger(name, args, registry)
    return Action(kind="plunger", steps=tuple(steps), name=name, args=dict(args))


def step(name: str, arg: Any = None, *body: PipelineStep) -> PipelineStep:
    return PipelineStep(name=name, arg=arg, body=tuple(body))


def inline(*steps: PipelineStep | Dict[str, Any] | str) -> Action:
    """
    Inline pipeline code:
        inline(step("echo", "hi"), {"sh": "make"})
    """
    return Action(kind="pipeline", steps=parse_steps(list(steps)))


def axis(name: str, *values: Any) -> MatrixAxis:
    return MatrixAxis(name=name, values=tuple(str(v) for v in values))


# ---------------------------------------------------------------------
# SCM / notifier helpers
# ---------------------------------------------------------------------

def git(url: str, branch: str = "*/master") -> ScmSpec:
    return ScmSpec(name="git", config={"url": url, "branch": branch})


def local_dir(path: str) -> ScmSpec:
    return ScmSpec(name="dir", config={"path": path})


def notifier(type: str, *, before: bool = False, after: bool = True, **config: Any) -> NotifierSpec:
    return NotifierSpec(type=type, config=dict(config), on_before=before, on_after=after)


# ---------------------------------------------------------------------
# Functional phase helper
# ---------------------------------------------------------------------

def phase(
    name: str,
    action: Action | str | None = None,
    *,
    after: Optional[Sequence[str]] = None,
    scm: Optional[Sequence[ScmSpec]] = None,
    stash_dirs: Optional[Sequence[str]] = None,
    unstash: str | None = None,
    matrix: Optional[Sequence[MatrixAxis]] = None,
) -> PhaseSpec:
    if isinstance(action, str):
        action = script(action)
    return PhaseSpec(
        name=name,
        action=action,
        scm=tuple(scm) if scm is not None else None,
        after=tuple(after or ()),
        stash_dirs=tuple(stash_dirs or ()),
        unstash=unstash,
        matrix=tuple(matrix or ()),
    )


def pipeline(
    *phases: PhaseSpec,
    scm: Optional[Sequence[ScmSpec]] = None,
    archive_dirs: Optional[Sequence[str]] = None,
    notifiers: Optional[Sequence[NotifierSpec]] = None,
    debug: bool = False,
) -> PipelineConfig:
    """
    Pipeline definition helper.

    Users can write:
        from plumber import pipeline, phase, script

        PIPELINE = pipeline(
            phase("build", script("make")),
            phase("test", script("make test"), after=["build"]),
        )
    """
    return PipelineConfig(
        phases=tuple(phases),
        debug=debug,
        scm=tuple(scm or ()),
        archive_dirs=tuple(archive_dirs or ()),
        notifiers=tuple(notifiers or ()),
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class PhaseBuilder:
    def __init__(self, name: str):
        self.name = name
        self._action: Optional[Action] = None
        self._after: List[str] = []
        self._scm: Optional[List[ScmSpec]] = None
        self._stash_dirs: List[str] = []
        self._unstash: str | None = None
        self._matrix: List[MatrixAxis] = []

    def run(self, action: Action | str):
        self._action = script(action) if isinstance(action, str) else action
        return self

    def steps(self, *steps: PipelineStep | Dict[str, Any] | str):
        self._action = inline(*steps)
        return self

    def after(self, *phase_names: str):
        self._after.extend(phase_names)
        return self

    def checkout(self, *scm: ScmSpec):
        self._scm = list(scm)
        return self

    def stash(self, *dirs: str):
        self._stash_dirs.extend(dirs)
        return self

    def unstash(self, phase_name: str):
        self._unstash = phase_name
        return self

    def axis(self, name: str, values: Iterable[Any]):
        self._matrix.append(axis(name, *values))
        return self

    def build(self) -> PhaseSpec:
        # a missing action is reported by the planner, with the phase name
        return PhaseSpec(
            name=self.name,
            action=self._action,
            scm=tuple(self._scm) if self._scm is not None else None,
            after=tuple(self._after),
            stash_dirs=tuple(self._stash_dirs),
            unstash=self._unstash,
            matrix=tuple(self._matrix),
        )


def build(name: str) -> PhaseBuilder:
    """Convenience: build('test').run('make test').after('build').build()"""
    return PhaseBuilder(name)
