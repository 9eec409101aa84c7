# matrix.py
from __future__ import annotations

import itertools
from typing import List, Sequence

from .dag import DependencyGraph
from .errors import DUPLICATE_AXIS, EMPTY_AXIS, ConfigError
from .model import ExecutionSet, ExecutionUnit, PhaseSpec

# Downstream consumers assert on these two lines verbatim.
MULTIPLE_UNITS_LINE = "Multiple phase(s) in an execution set, run in parallel"
SINGLE_UNIT_LINE = "Single phase in an execution set, run alone"


def _check_axes(phase: PhaseSpec) -> None:
    seen: set[str] = set()
    for axis in phase.matrix:
        if axis.name in seen:
            raise ConfigError(
                kind=DUPLICATE_AXIS,
                message=f"Axis '{axis.name}' declared more than once in phase '{phase.name}'",
                phase=phase.name,
            )
        seen.add(axis.name)
        if not axis.values:
            raise ConfigError(
                kind=EMPTY_AXIS,
                message=f"Axis '{axis.name}' in phase '{phase.name}' has no values",
                phase=phase.name,
            )


def expand_phase(phase: PhaseSpec, index: int) -> ExecutionSet:
    """
    One unit per element of the ordered cross product of the phase's axes.

    Example:
        FOO=[bar, baz], PANTS=[trousers, slacks] ->
          name+FOO=bar,PANTS=trousers   name+FOO=bar,PANTS=slacks
          name+FOO=baz,PANTS=trousers   name+FOO=baz,PANTS=slacks
    """
    if not phase.has_matrix:
        return ExecutionSet(phase=phase, index=index, units=(ExecutionUnit(phase, 0),))

    _check_axes(phase)
    names = [a.name for a in phase.matrix]
    combos = itertools.product(*(a.values for a in phase.matrix))
    units = tuple(
        ExecutionUnit(phase, i, tuple(zip(names, combo)))
        for i, combo in enumerate(combos)
    )
    return ExecutionSet(phase=phase, index=index, units=units)


def expand(phases: Sequence[PhaseSpec], graph: DependencyGraph) -> List[ExecutionSet]:
    """Expand every phase; sets come back in topological order."""
    by_name = {p.name: p for p in phases}
    return [expand_phase(by_name[n], graph.index(n)) for n in graph.topo_order()]


def describe_units(units: Sequence[ExecutionUnit]) -> str:
    return MULTIPLE_UNITS_LINE if len(units) > 1 else SINGLE_UNIT_LINE
