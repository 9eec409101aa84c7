"""Build log output formatting for Plumber."""

from __future__ import annotations

import sys
import threading
from typing import Dict, List, Optional, Sequence, TextIO

from ..matrix import describe_units
from ..model import ExecutionUnit, Result, SetState


class Console:
    """
    Centralized build log.

    Every line is written to the stream and kept in memory, so callers
    (and tests) can inspect the whole log after a build.
    """

    def __init__(self, debug: bool = False, stream: Optional[TextIO] = None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Where lines go; defaults to the current sys.stdout
        """
        self.debug = debug
        self._stream = stream
        self._lines: List[str] = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Raw output
    # ------------------------------------------------------------------

    def _emit(self, text: str, *, err: bool = False) -> None:
        with self._lock:
            self._lines.extend(text.splitlines() or [""])
            stream = self._stream or (sys.stderr if err else sys.stdout)
            print(text, file=stream)

    @property
    def lines(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    # ------------------------------------------------------------------
    # Build lifecycle
    # ------------------------------------------------------------------

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}\n" + "-" * len(title))

    def print_build_started(self, build_id: str, phase_count: int, unit_count: int) -> None:
        self._emit(f"\nBUILD STARTED: {build_id}\nPhases: {phase_count}\nUnits: {unit_count}")

    def print_execution_set(self, units: Sequence[ExecutionUnit]) -> None:
        """Heading for a plan level, then one bracketed label per unit, as one block."""
        self._emit("\n".join([describe_units(units)] + [f"  {unit.label}" for unit in units]))

    def print_unit_start(self, unit: ExecutionUnit) -> None:
        self._emit(f"{unit.label} PHASE STARTED")

    def print_unit_output(self, unit: ExecutionUnit, text: str) -> None:
        """Action output, one log line per output line, tagged with the unit."""
        for line in text.splitlines():
            self._emit(f"{unit.label} {line}")

    def print_unit_result(self, unit: ExecutionUnit, result: Result) -> None:
        self._emit(f"{unit.label} STATUS: {result.name}")

    def print_skipped(self, phase: str, reason: str) -> None:
        self._emit(f"[{phase}] STATUS: SKIPPED ({reason})")

    def print_results(self, sets: Dict[str, SetState], result: Result) -> None:
        """Print final results summary."""
        self._emit("\n" + "=" * 40 + "\nRESULTS\n" + "=" * 40)
        for name, state in sets.items():
            self._emit(f"  {name}: {state.name}")
        self._emit(f"Finished: {result.name}")

    # ------------------------------------------------------------------
    # Errors / info
    # ------------------------------------------------------------------

    def print_failure(self, name: str, reason: str) -> None:
        """
        Print failure message.

        Args:
            name: Unit label or phase name
            reason: Failure reason/error message
        """
        self._emit(f"{name} FAILED")
        if self.debug:
            self._emit(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            first = reason.split("\n")[0] if reason else "Unknown error"
            self._emit(f"Error: {first}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        lines.extend(f"  {d}" for d in details or [])
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit("\n".join(lines), err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._emit("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
