# notify.py
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple

from .errors import NOTIFIER_FAILED, UNKNOWN_NOTIFIER, NotifierError
from .model import ExecutionUnit, NotificationEvent, NotifierSpec, Result
from .registry import Registry
from .ui.console import Console

log = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, event: NotificationEvent, console: Console) -> None: ...


# A notifier type is a factory: spec config -> Notifier
NotifierFactory = Callable[[NotifierSpec], Notifier]

NOTIFIERS: Registry[NotifierFactory] = Registry("notifier", UNKNOWN_NOTIFIER)


def format_event(kind: str, event: NotificationEvent, **extra: Any) -> str:
    parts = [f"name:{kind}"]
    parts.extend(f"{k}:{v}" for k, v in extra.items())
    parts.append(f"phaseName:{event.phase_name}")
    if event.unit_name and event.unit_name != event.phase_name:
        parts.append(f"unit:{event.unit_name}")
    parts.append(f"before:{str(event.before).lower()}")
    parts.append(f"buildInfo:{event.build_id}")
    parts.append(f"result:{event.result_name}")
    return ", ".join(parts)


class EchoNotifier:
    """Writes one structured line per event to the build log."""

    def __init__(self, spec: NotifierSpec):
        self.spec = spec

    def notify(self, event: NotificationEvent, console: Console) -> None:
        console.print_info(format_event(self.spec.type, event))


class FileNotifier:
    """Appends one structured line per event to config["file"] and echoes it."""

    def __init__(self, spec: NotifierSpec):
        self.spec = spec
        self.path = Path(str(spec.config.get("file") or "notifyOutput"))

    def notify(self, event: NotificationEvent, console: Console) -> None:
        line = format_event(self.spec.type, event, file=self.path.name)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
        console.print_info(line)


NOTIFIERS.register("echo", EchoNotifier)
NOTIFIERS.register("file", FileNotifier)
NOTIFIERS.register("echoToFile", FileNotifier)


class NotificationDispatcher:
    """
    Delivers before/after events to every registered notifier.

    Notifiers are resolved once, here, and invoked synchronously in
    registration order. A failing notifier is logged and skipped; it
    never affects the unit it reports on.
    """

    def __init__(
        self,
        specs: Sequence[NotifierSpec] = (),
        console: Optional[Console] = None,
        registry: Optional[Registry[NotifierFactory]] = None,
    ):
        reg = registry or NOTIFIERS
        self.console = console or Console()
        self._notifiers: List[Tuple[NotifierSpec, Notifier]] = [
            (spec, reg.get(spec.type)(spec)) for spec in specs
        ]
        self._lock = threading.Lock()
        self.failures: List[NotifierError] = []

    def before(self, unit: ExecutionUnit, build_id: str) -> None:
        event = NotificationEvent(
            phase_name=unit.phase_name,
            before=True,
            build_id=build_id,
            unit_name=unit.display_name,
        )
        self.dispatch(event)

    def after(self, unit: ExecutionUnit, build_id: str, result: Result) -> None:
        event = NotificationEvent(
            phase_name=unit.phase_name,
            before=False,
            build_id=build_id,
            result=result,
            unit_name=unit.display_name,
        )
        self.dispatch(event)

    def dispatch(self, event: NotificationEvent) -> None:
        with self._lock:
            for spec, notifier in self._notifiers:
                if event.before and not spec.on_before:
                    continue
                if not event.before and not spec.on_after:
                    continue
                try:
                    notifier.notify(event, self.console)
                except Exception as e:
                    err = NotifierError(
                        kind=NOTIFIER_FAILED,
                        message=f"Notifier '{spec.type}' failed: {e}",
                        phase=event.phase_name,
                        details={"before": event.before},
                    )
                    self.failures.append(err)
                    log.warning("%s", err, exc_info=True)
                    self.console.print_debug(str(err))
