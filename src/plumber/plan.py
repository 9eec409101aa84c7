# plan.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Tuple

from .dag import DependencyGraph, build_graph
from .errors import (
    ILLEGAL_STEPS,
    NO_ACTION_MESSAGE,
    NO_ACTION_SPECIFIED,
    ConfigError,
    ValidationError,
)
from .matrix import expand
from .model import ExecutionSet, ExecutionUnit, PipelineConfig, PipelineStep

# Steps that would let a phase escape the scheduler's control.
ILLEGAL_INLINE_STEPS = frozenset({"node", "stage", "parallel", "input", "checkpoint"})


def illegal_steps(steps: Iterable[PipelineStep]) -> List[str]:
    """Names of disallowed steps, first-seen order, de-duplicated."""
    found: List[str] = []
    for top in steps:
        for s in top.walk():
            if s.name in ILLEGAL_INLINE_STEPS and s.name not in found:
                found.append(s.name)
    return found


def validate_pipeline_steps(steps: Iterable[PipelineStep], phase: str | None = None) -> None:
    bad = illegal_steps(steps)
    if bad:
        raise ValidationError(
            kind=ILLEGAL_STEPS,
            message=f"Illegal Pipeline steps used in inline Pipeline - {', '.join(bad)}",
            phase=phase,
        )


@dataclass(frozen=True)
class ExecutionPlan:
    """Immutable result of planning: graph + expanded sets, topological order."""
    config: PipelineConfig
    graph: DependencyGraph
    sets: Tuple[ExecutionSet, ...]

    def set_for(self, name: str) -> ExecutionSet:
        for s in self.sets:
            if s.name == name:
                return s
        raise KeyError(name)

    def levels(self) -> List[List[ExecutionSet]]:
        return [[self.set_for(n) for n in level] for level in self.graph.topo_levels()]

    @property
    def units(self) -> List[ExecutionUnit]:
        return [u for s in self.sets for u in s.units]

    @property
    def unit_count(self) -> int:
        return sum(len(s.units) for s in self.sets)


def build_plan(config: PipelineConfig) -> ExecutionPlan:
    """
    Config -> graph -> expansion. Raises ConfigError / ValidationError
    before anything runs.
    """
    for phase in config.phases:
        # a plunger may legitimately expand to zero steps
        if phase.action is None or (not phase.action.steps and phase.action.kind != "plunger"):
            raise ConfigError(kind=NO_ACTION_SPECIFIED, message=NO_ACTION_MESSAGE, phase=phase.name)
        validate_pipeline_steps(phase.action.steps, phase.name)

    # cycle detection happens here, before any expansion
    graph = build_graph(config.phases)
    sets = expand(config.phases, graph)
    return ExecutionPlan(config=config, graph=graph, sets=tuple(sets))
