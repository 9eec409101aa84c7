# dag.py
from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import Dict, List, Sequence, Set, Tuple

from .errors import (
    CYCLIC_DEPENDENCY,
    DUPLICATE_NAME,
    UNKNOWN_REFERENCE,
    ConfigError,
)
from .model import PhaseSpec


@dataclass(frozen=True)
class DependencyGraph:
    """
    Phase dependency DAG.

    names: phase names in declaration order
    predecessors[n]: phases that must finish before n starts
    successors[n]: phases waiting on n
    """
    names: Tuple[str, ...]
    predecessors: Dict[str, Tuple[str, ...]]
    successors: Dict[str, Tuple[str, ...]]

    def index(self, name: str) -> int:
        return self.names.index(name)

    @property
    def roots(self) -> List[str]:
        return [n for n in self.names if not self.predecessors[n]]

    def topo_order(self) -> List[str]:
        """Kahn's algorithm; ties broken by declaration position."""
        return [n for level in self._kahn(levels=False) for n in level]

    def topo_levels(self) -> List[List[str]]:
        """
        Convert the DAG into topological "levels".
        Everything in a level can run in parallel.
        """
        return self._kahn(levels=True)

    def _kahn(self, *, levels: bool) -> List[List[str]]:
        pos = {n: i for i, n in enumerate(self.names)}
        indeg = {n: len(self.predecessors[n]) for n in self.names}

        if levels:
            out: List[List[str]] = []
            level = [n for n in self.names if indeg[n] == 0]
            while level:
                out.append(level)
                nxt: List[str] = []
                for node in level:
                    for child in self.successors[node]:
                        indeg[child] -= 1
                        if indeg[child] == 0:
                            nxt.append(child)
                level = sorted(nxt, key=pos.__getitem__)
            return out

        heap = [(pos[n], n) for n in self.names if indeg[n] == 0]
        heapq.heapify(heap)
        order: List[str] = []
        while heap:
            _, node = heapq.heappop(heap)
            order.append(node)
            for child in self.successors[node]:
                indeg[child] -= 1
                if indeg[child] == 0:
                    heapq.heappush(heap, (pos[child], child))
        return [order]

    def descendants(self, name: str) -> List[str]:
        """Every phase transitively waiting on `name`, in declaration order."""
        seen: Set[str] = set()
        stack = [name]
        while stack:
            for child in self.successors[stack.pop()]:
                if child not in seen:
                    seen.add(child)
                    stack.append(child)
        return [n for n in self.names if n in seen]


def _find_cycle(names: Sequence[str], preds: Dict[str, List[str]]) -> List[str] | None:
    """3-color DFS over the `after` edges. Returns the cycle path or None."""
    WHITE, GRAY, BLACK = 0, 1, 2
    color = {n: WHITE for n in names}
    path: List[str] = []

    def visit(node: str) -> List[str] | None:
        color[node] = GRAY
        path.append(node)
        for dep in preds[node]:
            if color[dep] == GRAY:
                return path[path.index(dep):] + [dep]
            if color[dep] == WHITE:
                found = visit(dep)
                if found:
                    return found
        path.pop()
        color[node] = BLACK
        return None

    for n in names:
        if color[n] == WHITE:
            found = visit(n)
            if found:
                return found
    return None


def build_graph(phases: Sequence[PhaseSpec]) -> DependencyGraph:
    """
    Build the DAG from PhaseSpecs.

    Requires:
      - phase.name: str (unique)
      - phase.after: names of phases that must run BEFORE this phase
      - phase.unstash: a declared phase that has stashDirs (also lifted to an edge)
    """
    names = [p.name for p in phases]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigError(
            kind=DUPLICATE_NAME,
            message=f"Duplicate phase names found: {', '.join(dupes)}",
            details={"duplicates": dupes},
        )

    by_name = {p.name: p for p in phases}
    preds: Dict[str, List[str]] = {n: [] for n in names}

    for phase in phases:
        for dep in phase.after:
            if dep not in by_name:
                raise ConfigError(
                    kind=UNKNOWN_REFERENCE,
                    message=f"Phase '{phase.name}' runs after missing phase '{dep}'",
                    phase=phase.name,
                    details={"known": ", ".join(names)},
                )
            # Edge dep -> phase.name (dep must run before phase)
            if dep not in preds[phase.name]:
                preds[phase.name].append(dep)

        if phase.unstash is not None:
            source = by_name.get(phase.unstash)
            if source is None:
                raise ConfigError(
                    kind=UNKNOWN_REFERENCE,
                    message=f"Phase '{phase.name}' unstashes missing phase '{phase.unstash}'",
                    phase=phase.name,
                    details={"known": ", ".join(names)},
                )
            if not source.stash_dirs:
                raise ConfigError(
                    kind=UNKNOWN_REFERENCE,
                    message=f"Phase '{phase.name}' unstashes '{phase.unstash}', which declares no stashDirs",
                    phase=phase.name,
                )
            if phase.unstash not in preds[phase.name]:
                preds[phase.name].append(phase.unstash)

    cycle = _find_cycle(names, preds)
    if cycle:
        raise ConfigError(
            kind=CYCLIC_DEPENDENCY,
            message=f"Dependency cycle: {' -> '.join(cycle)}",
            details={"cycle": cycle},
        )

    succs: Dict[str, List[str]] = {n: [] for n in names}
    for n in names:
        for dep in preds[n]:
            succs[dep].append(n)

    return DependencyGraph(
        names=tuple(names),
        predecessors={n: tuple(preds[n]) for n in names},
        successors={n: tuple(succs[n]) for n in names},
    )
