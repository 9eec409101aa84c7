from __future__ import annotations

import io
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from plumber.model import ExecutionUnit, Result
from plumber.runner import UnitContext
from plumber.ui.console import Console


class RecordingRunner:
    """
    ActionRunner fake: records every call and returns canned results.

    results maps a unit display name (or phase name) to a Result or to an
    exception instance to raise. on_run lets a test write files into the
    unit workspace or block on a barrier.
    """

    def __init__(
        self,
        root: Path,
        results: Optional[Dict[str, object]] = None,
        on_run: Optional[Callable[[ExecutionUnit, Path], None]] = None,
    ):
        self.root = root
        self.results = results or {}
        self.on_run = on_run
        self.calls: List[str] = []
        self.contexts: Dict[str, UnitContext] = {}
        self._lock = threading.Lock()

    def workspace(self, unit: ExecutionUnit) -> Path:
        ws = self.root / unit.display_name
        ws.mkdir(parents=True, exist_ok=True)
        return ws

    def run(self, unit: ExecutionUnit, context: UnitContext) -> Result:
        with self._lock:
            self.calls.append(unit.display_name)
            self.contexts[unit.display_name] = context
        if self.on_run is not None:
            self.on_run(unit, self.workspace(unit))
        outcome = self.results.get(unit.display_name, self.results.get(unit.phase_name, Result.SUCCESS))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture()
def console() -> Console:
    return Console(stream=io.StringIO())


@pytest.fixture()
def make_runner(tmp_path: Path) -> Callable[..., RecordingRunner]:
    def make(**kwargs) -> RecordingRunner:
        return RecordingRunner(tmp_path / "ws", **kwargs)
    return make
