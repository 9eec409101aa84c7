# model.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple


class Result(enum.Enum):
    """Build outcome vocabulary, ordered by severity (FAILURE highest)."""
    SUCCESS = 0
    UNSTABLE = 1
    FAILURE = 2

    def is_worse_than(self, other: Result) -> bool:
        return self.value > other.value

    @classmethod
    def worst(cls, *results: Result) -> Result:
        out = cls.SUCCESS
        for r in results:
            if r.is_worse_than(out):
                out = r
        return out


class SetState(enum.Enum):
    """Lifecycle of one ExecutionSet inside the scheduler."""
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    UNSTABLE = "unstable"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_failed(self) -> bool:
        # dependents of these never start
        return self in (SetState.FAILED, SetState.SKIPPED)

    @classmethod
    def from_result(cls, result: Result) -> SetState:
        return {
            Result.SUCCESS: cls.SUCCEEDED,
            Result.UNSTABLE: cls.UNSTABLE,
            Result.FAILURE: cls.FAILED,
        }[result]

    def to_result(self) -> Result:
        if self is SetState.UNSTABLE:
            return Result.UNSTABLE
        if self.is_failed:
            return Result.FAILURE
        return Result.SUCCESS


# ---------------------------------------------------------------------
# Declared configuration
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ScmSpec:
    """One entry of an SCM chain, e.g. ScmSpec("git", {"url": ..., "branch": ...})."""
    name: str
    config: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PipelineStep:
    """A single step of an inline sub-pipeline. Block steps carry a body."""
    name: str
    arg: Any = None
    body: Tuple[PipelineStep, ...] = ()

    def walk(self):
        yield self
        for child in self.body:
            yield from child.walk()


@dataclass(frozen=True)
class Action:
    """
    Opaque unit of work handed to the action runner.

    kind is "script", "plunger" or "pipeline"; steps is the resolved step
    list (plunger names are resolved once, when the config is parsed).
    """
    kind: str
    steps: Tuple[PipelineStep, ...]
    name: str | None = None
    args: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MatrixAxis:
    name: str
    values: Tuple[str, ...]


@dataclass(frozen=True)
class PhaseSpec:
    """
    A named phase: action + dependencies + workspace transfer + matrix.

    `after` names phases that must reach a terminal, non-failed state before
    this one starts. An empty `after` makes the phase a root.
    """
    name: str
    action: Optional[Action] = None
    scm: Optional[Tuple[ScmSpec, ...]] = None     # None -> pipeline default chain
    after: Tuple[str, ...] = ()
    stash_dirs: Tuple[str, ...] = ()
    unstash: Optional[str] = None
    matrix: Tuple[MatrixAxis, ...] = ()

    @property
    def has_matrix(self) -> bool:
        return bool(self.matrix)

    def scm_chain(self, default: Tuple[ScmSpec, ...]) -> Tuple[ScmSpec, ...]:
        return self.scm if self.scm is not None else default


@dataclass(frozen=True)
class NotifierSpec:
    type: str
    config: Mapping[str, Any] = field(default_factory=dict)
    on_before: bool = False
    on_after: bool = True


@dataclass(frozen=True)
class PipelineConfig:
    phases: Tuple[PhaseSpec, ...]
    debug: bool = False
    scm: Tuple[ScmSpec, ...] = ()
    archive_dirs: Tuple[str, ...] = ()
    notifiers: Tuple[NotifierSpec, ...] = ()

    def phase(self, name: str) -> PhaseSpec:
        for p in self.phases:
            if p.name == name:
                return p
        raise KeyError(name)


# ---------------------------------------------------------------------
# Plan-time derived records
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ExecutionUnit:
    """One concrete run of a phase (one per matrix combination)."""
    phase: PhaseSpec
    index: int
    axes: Tuple[Tuple[str, str], ...] = ()

    @property
    def phase_name(self) -> str:
        return self.phase.name

    @property
    def display_name(self) -> str:
        if not self.axes:
            return self.phase.name
        pairs = ",".join(f"{k}={v}" for k, v in self.axes)
        return f"{self.phase.name}+{pairs}"

    @property
    def label(self) -> str:
        return f"[{self.display_name}]"

    @property
    def env(self) -> Dict[str, str]:
        return dict(self.axes)


@dataclass(frozen=True)
class ExecutionSet:
    """All units derived from one phase; they run concurrently with each other."""
    phase: PhaseSpec
    index: int                      # declaration position of the phase
    units: Tuple[ExecutionUnit, ...]

    @property
    def name(self) -> str:
        return self.phase.name

    @property
    def is_parallel(self) -> bool:
        return len(self.units) > 1


NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class NotificationEvent:
    phase_name: str
    before: bool
    build_id: str
    result: Optional[Result] = None
    unit_name: str | None = None

    @property
    def result_name(self) -> str:
        return self.result.name if self.result is not None else NOT_FOUND


@dataclass
class BuildReport:
    """Aggregate outcome of one build."""
    result: Result
    sets: Dict[str, SetState] = field(default_factory=dict)
    units: Dict[str, Result] = field(default_factory=dict)
    error: Optional[str] = None
    archived: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.result is Result.SUCCESS
