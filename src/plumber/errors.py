# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


# ---------------------------------------------------------------------
# Error kinds
# ---------------------------------------------------------------------

DUPLICATE_NAME = "DuplicateName"
UNKNOWN_REFERENCE = "UnknownReference"
CYCLIC_DEPENDENCY = "CyclicDependency"
DUPLICATE_AXIS = "DuplicateAxis"
EMPTY_AXIS = "EmptyAxis"
NO_ACTION_SPECIFIED = "NoActionSpecified"
UNKNOWN_PLUNGER = "UnknownPlunger"
UNKNOWN_NOTIFIER = "UnknownNotifier"
INVALID_CONFIG = "InvalidConfig"

ILLEGAL_STEPS = "IllegalSteps"

UNKNOWN_STASH = "UnknownStash"
STASH_NOT_CAPTURED_YET = "StashNotCapturedYet"
DUPLICATE_STASH = "DuplicateStash"
ARCHIVE_FAILED = "ArchiveFailed"

ACTION_FAILED = "ActionFailed"
UNKNOWN_STEP = "UnknownStep"
SCM_FAILED = "ScmFailed"

NOTIFIER_FAILED = "NotifierFailed"

NO_ACTION_MESSAGE = "No action or Pipeline code specified"


@dataclass
class PlumberError(Exception):
    """
    Structured pipeline error with enough context for:
      - clean build log output
      - assertions in tests
      - debugging without full tracebacks
    """
    kind: str
    message: str
    phase: str | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.phase:
            lines.append(f"phase={self.phase}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigError(PlumberError):
    """Invalid pipeline configuration, detected before any unit runs."""


class ValidationError(PlumberError):
    """Disallowed constructs inside an inline sub-pipeline."""


class ExecutionError(PlumberError):
    """A unit's action could not be carried out."""


class TransferError(PlumberError):
    """Stash, unstash or archive failure, scoped to one unit."""


class NotifierError(PlumberError):
    """A notifier raised; isolated and logged, never fails the build."""
