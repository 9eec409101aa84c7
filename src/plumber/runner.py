# runner.py
from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple, Union

from .config import parse_config
from .errors import (
    ACTION_FAILED,
    ARCHIVE_FAILED,
    INVALID_CONFIG,
    ConfigError,
    ExecutionError,
    PlumberError,
    TransferError,
)
from .model import (
    BuildReport,
    ExecutionSet,
    ExecutionUnit,
    PipelineConfig,
    Result,
    ScmSpec,
    SetState,
)
from .notify import NotificationDispatcher, NotifierFactory
from .plan import ExecutionPlan, build_plan
from .plungers import PlungerFn
from .registry import Registry
from .transfer import DEFAULT_STASH_DIR, WorkspaceTransfer, stash_key
from .ui.console import Console, get_console

log = logging.getLogger(__name__)

DEFAULT_ARCHIVE_DIR = ".plumber/archive"


# ----------------------------------------------------------------------
# Action runner capability
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class UnitContext:
    """What the engine hands the action runner alongside a unit."""
    build_id: str
    scm: Tuple[ScmSpec, ...]
    env: Dict[str, str] = field(default_factory=dict)
    console: Console = field(default_factory=get_console)
    debug: bool = False


class ActionRunner(Protocol):
    """
    Performs a unit's work (checkout, shell, ...). run() may block for as
    long as it needs, or checkpoint internally; the scheduler only needs
    the terminal result.
    """

    def run(self, unit: ExecutionUnit, context: UnitContext) -> Result: ...

    def workspace(self, unit: ExecutionUnit) -> Path: ...


PipelineInput = Union[Mapping[str, Any], PipelineConfig, ExecutionPlan]


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

class Scheduler:
    """
    Walks the plan's DAG, running every ready ExecutionSet on a thread pool.

    - A set becomes READY once all its predecessors are terminal and none failed.
    - Any predecessor FAILED/SKIPPED -> the set is SKIPPED, transitively.
    - Units of one set never wait on each other; independent sets overlap.
    - Running units are never interrupted.
    """

    def __init__(
        self,
        plan: ExecutionPlan,
        runner: ActionRunner,
        *,
        build_id: str,
        console: Console,
        transfer: WorkspaceTransfer,
        dispatcher: NotificationDispatcher,
        max_workers: Optional[int] = None,
    ):
        self.plan = plan
        self.runner = runner
        self.build_id = build_id
        self.console = console
        self.transfer = transfer
        self.dispatcher = dispatcher
        # default: one thread per unit, so siblings never queue behind each other
        self.max_workers = max_workers or max(1, plan.unit_count)

        graph = plan.graph
        self.state: Dict[str, SetState] = {n: SetState.PENDING for n in graph.names}
        self._waiting: Dict[str, int] = {n: len(graph.predecessors[n]) for n in graph.names}
        self._remaining: Dict[str, int] = {s.name: len(s.units) for s in plan.sets}
        self._order: Dict[str, int] = {u.display_name: i for i, u in enumerate(plan.units)}
        self.unit_results: Dict[str, Result] = {}

        # headings follow the plan's levels, not the order futures complete in
        self._levels = plan.levels()
        self._level_of: Dict[str, int] = {
            s.name: i for i, level in enumerate(self._levels) for s in level
        }
        self._announced: set[int] = set()

    # ---- public -------------------------------------------------------

    def run(self) -> Dict[str, SetState]:
        graph = self.plan.graph
        ready: List[ExecutionSet] = [self.plan.set_for(n) for n in graph.roots]
        for s in ready:
            self.state[s.name] = SetState.READY

        in_flight: Dict[Future, ExecutionUnit] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="plumber") as pool:
            while ready or in_flight:
                # schedule everything that is currently ready, as one round
                if ready:
                    self._dispatch(pool, ready, in_flight)
                    ready = []

                if not in_flight:
                    break

                # wait for at least one completion, then unlock dependents
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in sorted(done, key=lambda f: self._order[in_flight[f].display_name]):
                    unit = in_flight.pop(fut)
                    try:
                        result = fut.result()
                    except Exception:
                        log.warning("unit %s crashed outside its action", unit.display_name, exc_info=True)
                        result = Result.FAILURE
                    self.unit_results[unit.display_name] = result
                    self._remaining[unit.phase_name] -= 1
                    if self._remaining[unit.phase_name] == 0:
                        ready.extend(self._finish_set(self.plan.set_for(unit.phase_name)))

                ready.sort(key=lambda s: (self._level_of[s.name], s.index))

        return dict(self.state)

    # ---- internals ----------------------------------------------------

    def _dispatch(
        self,
        pool: ThreadPoolExecutor,
        ready: List[ExecutionSet],
        in_flight: Dict[Future, ExecutionUnit],
    ) -> None:
        for s in ready:
            self._announce(self._level_of[s.name])
            self.state[s.name] = SetState.RUNNING
            log.debug("set %s running with %d unit(s)", s.name, len(s.units))
            for unit in s.units:
                in_flight[pool.submit(self._run_unit, unit)] = unit

    def _announce(self, level: int) -> None:
        """Heading plus labels for a whole plan level, once, when its first set starts."""
        if level in self._announced:
            return
        self._announced.add(level)
        self.console.print_execution_set([u for s in self._levels[level] for u in s.units])

    def _notify(self, unit: ExecutionUnit, result: Optional[Result] = None) -> None:
        try:
            if result is None:
                self.dispatcher.before(unit, self.build_id)
            else:
                self.dispatcher.after(unit, self.build_id, result)
        except Exception:
            log.warning("notification for %s failed", unit.display_name, exc_info=True)

    def _finish_set(self, s: ExecutionSet) -> List[ExecutionSet]:
        result = Result.worst(*(self.unit_results[u.display_name] for u in s.units))
        terminal = SetState.from_result(result)
        self.state[s.name] = terminal
        log.debug("set %s finished: %s", s.name, terminal.name)

        if terminal.is_failed:
            self._skip_dependents(s.name)
            return []

        newly_ready: List[ExecutionSet] = []
        for child in self.plan.graph.successors[s.name]:
            if self.state[child] is not SetState.PENDING:
                continue
            self._waiting[child] -= 1
            if self._waiting[child] == 0:
                self.state[child] = SetState.READY
                newly_ready.append(self.plan.set_for(child))
        return newly_ready

    def _skip_dependents(self, failed: str) -> None:
        for name in self.plan.graph.descendants(failed):
            if self.state[name] is SetState.PENDING:
                self.state[name] = SetState.SKIPPED
                self.console.print_skipped(name, f"upstream '{failed}' did not succeed")

    def _run_unit(self, unit: ExecutionUnit) -> Result:
        """
        before-notify -> unstash -> action -> stash -> after-notify.
        Failures are scoped to this unit; notifier errors never change its result.
        """
        phase = unit.phase
        config = self.plan.config
        context = UnitContext(
            build_id=self.build_id,
            scm=phase.scm_chain(config.scm),
            env=unit.env,
            console=self.console,
            debug=self.console.debug,
        )

        self._notify(unit)
        self.console.print_unit_start(unit)

        try:
            if phase.unstash:
                self.transfer.restore(self.runner.workspace(unit), phase.unstash)

            result = self.runner.run(unit, context)
            if not isinstance(result, Result):
                raise ExecutionError(
                    kind=ACTION_FAILED,
                    message=f"Action runner returned {result!r}, expected a Result",
                    phase=phase.name,
                )

            if result is not Result.FAILURE and phase.stash_dirs:
                self.transfer.capture(
                    stash_key(unit),
                    self.runner.workspace(unit),
                    phase.stash_dirs,
                    phase=phase.name,
                )
        except PlumberError as e:
            self.console.print_failure(unit.label, str(e))
            result = Result.FAILURE
        except Exception as e:
            log.debug("unit %s raised", unit.display_name, exc_info=True)
            self.console.print_failure(unit.label, f"{type(e).__name__}: {e}")
            result = Result.FAILURE

        self.console.print_unit_result(unit, result)
        self._notify(unit, result)
        return result


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def prepare(
    pipeline: PipelineInput,
    plungers: Optional[Registry[PlungerFn]] = None,
) -> ExecutionPlan:
    """Mapping / PipelineConfig / ExecutionPlan -> validated ExecutionPlan."""
    if isinstance(pipeline, ExecutionPlan):
        return pipeline
    return build_plan(parse_config(pipeline, plungers))


def run_pipeline(
    pipeline: PipelineInput,
    runner: ActionRunner,
    *,
    build_id: str = "build#1",
    max_workers: Optional[int] = None,
    console: Optional[Console] = None,
    transfer: Optional[WorkspaceTransfer] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    stash_root: str | Path = DEFAULT_STASH_DIR,
    archive_root: str | Path = DEFAULT_ARCHIVE_DIR,
    plungers: Optional[Registry[PlungerFn]] = None,
    notifiers: Optional[Registry[NotifierFactory]] = None,
) -> BuildReport:
    """
    Plan and run a pipeline.

    Configuration and validation errors fail the build before any unit
    runs; everything after that is scoped to units and sets.
    """
    # a fresh console per build unless the caller shares one
    console = console or Console(debug=get_console().debug)

    try:
        plan = prepare(pipeline, plungers)
        if dispatcher is None:
            dispatcher = NotificationDispatcher(plan.config.notifiers, console=console, registry=notifiers)
    except PlumberError as e:
        return _invalid_pipeline(console, e)
    except Exception as e:
        # e.g. a notifier factory that blows up while being constructed
        log.debug("pipeline setup raised", exc_info=True)
        return _invalid_pipeline(console, ConfigError(kind=INVALID_CONFIG, message=f"{type(e).__name__}: {e}"))

    previous_debug = console.debug
    if plan.config.debug:
        console.debug = True
    try:
        return _execute(
            plan,
            runner,
            build_id=build_id,
            max_workers=max_workers,
            console=console,
            transfer=transfer or WorkspaceTransfer.for_plan(plan, stash_root),
            dispatcher=dispatcher,
            archive_root=archive_root,
        )
    finally:
        console.debug = previous_debug


def _invalid_pipeline(console: Console, e: PlumberError) -> BuildReport:
    details = [f"kind={e.kind}"]
    if e.phase:
        details.append(f"phase={e.phase}")
    console.print_error("Invalid pipeline", e.message, details=details)
    console.print_info(f"Finished: {Result.FAILURE.name}")
    return BuildReport(result=Result.FAILURE, error=str(e))


def _execute(
    plan: ExecutionPlan,
    runner: ActionRunner,
    *,
    build_id: str,
    max_workers: Optional[int],
    console: Console,
    transfer: WorkspaceTransfer,
    dispatcher: NotificationDispatcher,
    archive_root: str | Path,
) -> BuildReport:
    console.print_build_started(build_id, len(plan.sets), plan.unit_count)

    scheduler = Scheduler(
        plan,
        runner,
        build_id=build_id,
        console=console,
        transfer=transfer,
        dispatcher=dispatcher,
        max_workers=max_workers,
    )
    states = scheduler.run()
    result = Result.worst(*(s.to_result() for s in states.values()))

    report = BuildReport(result=result, sets=states, units=dict(scheduler.unit_results))

    if plan.config.archive_dirs:
        ran = [u for u in plan.units if u.display_name in scheduler.unit_results]
        try:
            report.archived = transfer.archive(
                plan.config.archive_dirs,
                [runner.workspace(u) for u in ran],
                archive_root,
            )
            console.print_info(f"Archived {len(report.archived)} file(s) to {archive_root}")
        except OSError as e:
            err = TransferError(kind=ARCHIVE_FAILED, message=f"Archiving {', '.join(plan.config.archive_dirs)} failed: {e}")
            console.print_error("Archive failed", err.message)
            report.result = Result.FAILURE
            report.error = str(err)

    console.print_results(states, report.result)
    return report
