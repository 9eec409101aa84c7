# transfer.py
from __future__ import annotations

import hashlib
import json
import shutil
import tarfile
import threading
import time
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import (
    DUPLICATE_STASH,
    STASH_NOT_CAPTURED_YET,
    UNKNOWN_STASH,
    TransferError,
)
from .model import ExecutionUnit

if TYPE_CHECKING:
    from .plan import ExecutionPlan

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Stash entries move files between unit workspaces:
#   capture: files matching a phase's stashDirs -> root/<key stem>.tar.gz
#   restore: root/<key stem>.tar.gz -> consumer workspace
#
# Each entry is written once per build and read any number of times.
# Key = phase name, or the unit display name (phase+AXIS=v,...) for a
# matrix phase, so every matrix unit gets its own entry. The file stem is
# a readable prefix plus a sha256 digest of the key, so two keys never
# share an archive.
#
# Store layout:
#   root/
#     <key stem>.tar.gz
#     <key stem>.manifest.json
# ---------------------------------------------------------------------


DEFAULT_STASH_DIR = ".plumber/stash"
DEFAULT_EXCLUDES = [
    ".git/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.DS_Store",
]


@dataclass(frozen=True)
class StashEntry:
    key: str
    phase: str
    path: Path
    files: Tuple[str, ...]


def stash_key(unit: ExecutionUnit) -> str:
    # display_name is the bare phase name when there is no matrix
    return unit.display_name


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _matches_any_glob(rel: str, globs: Sequence[str]) -> bool:
    return any(fnmatch(rel, g) for g in globs)


def select_files(root: Path, patterns: Sequence[str], excludes: Sequence[str] = ()) -> List[Path]:
    """
    Expand stash/archive patterns into concrete files under root.
    Supports:
      - file path: "outputDir/outputFile"
      - dir path:  "outputDir" (everything below it)
      - glob:      "outputDir/**", "build/*.whl"
    """
    out: List[Path] = []
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        direct = root / pat
        matches = [direct] if direct.exists() else sorted(root.glob(pat))
        for m in matches:
            if m.is_dir():
                out.extend(_iter_files_under(m))
            elif m.is_file():
                out.append(m)

    # de-dupe while preserving order, drop excluded paths
    seen = set()
    uniq: List[Path] = []
    for p in out:
        rel = _relpath(p, root)
        if rel in seen or _matches_any_glob(rel, excludes):
            continue
        seen.add(rel)
        uniq.append(p)
    return uniq


def _extract(archive: Path, dest: Path) -> None:
    with tarfile.open(str(archive), mode="r:gz") as tar:
        if hasattr(tarfile, "data_filter"):
            tar.extractall(path=str(dest), filter="data")
        else:
            tar.extractall(path=str(dest))


class WorkspaceTransfer:
    """
    Write-once, read-many stash store plus the end-of-build archive.

    producers maps a phase name to the stash keys it is expected to
    produce; restore() uses it to tell "never declared" (UnknownStash)
    from "declared but not captured yet" (StashNotCapturedYet).
    """

    def __init__(
        self,
        root: str | Path = DEFAULT_STASH_DIR,
        producers: Optional[Mapping[str, Sequence[str]]] = None,
        excludes: Optional[Sequence[str]] = None,
    ):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.excludes = list(DEFAULT_EXCLUDES) + list(excludes or [])
        self._producers: Dict[str, Tuple[str, ...]] = {
            phase: tuple(keys) for phase, keys in (producers or {}).items()
        }
        self._entries: Dict[str, StashEntry] = {}
        self._reserved: set[str] = set()
        self._lock = threading.Lock()

    @classmethod
    def for_plan(cls, plan: ExecutionPlan, root: str | Path = DEFAULT_STASH_DIR) -> WorkspaceTransfer:
        producers = {
            s.name: [stash_key(u) for u in s.units]
            for s in plan.sets
            if s.phase.stash_dirs
        }
        return cls(root, producers)

    def artifact_path(self, key: str) -> Path:
        return self.root / f"{_stem(key)}.tar.gz"

    def manifest_path(self, key: str) -> Path:
        return self.root / f"{_stem(key)}.manifest.json"

    def get(self, key: str) -> Optional[StashEntry]:
        with self._lock:
            return self._entries.get(key)

    # ------------------------------------------------------------------
    # Stash
    # ------------------------------------------------------------------

    def capture(
        self,
        key: str,
        workspace: str | Path,
        globs: Sequence[str],
        *,
        phase: Optional[str] = None,
    ) -> StashEntry:
        """
        Capture files matching globs from workspace under key.
        A key can be captured once per build.
        """
        with self._lock:
            if key in self._entries or key in self._reserved:
                raise TransferError(
                    kind=DUPLICATE_STASH,
                    message=f"Stash '{key}' was already captured in this build",
                    phase=phase or key,
                )
            self._reserved.add(key)

        try:
            entry = self._write(key, Path(workspace).resolve(), globs, phase or key)
        except BaseException:
            with self._lock:
                self._reserved.discard(key)
            raise

        with self._lock:
            self._reserved.discard(key)
            self._entries[key] = entry
        return entry

    def _write(self, key: str, workspace: Path, globs: Sequence[str], phase: str) -> StashEntry:
        files = select_files(workspace, globs, self.excludes)
        rels = tuple(_relpath(f, workspace) for f in files)

        art = self.artifact_path(key)
        tmp = art.with_suffix(".gz.tmp")
        try:
            # Build tar.gz in tmp, then atomic rename
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                for f, rel in zip(files, rels):
                    tar.add(str(f), arcname=rel, recursive=False)
            tmp.replace(art)
        finally:
            if tmp.exists():
                tmp.unlink(missing_ok=True)

        manifest = {
            "key": key,
            "phase": phase,
            "globs": list(globs),
            "files": list(rels),
            "captured_at_unix": int(time.time()),
        }
        self.manifest_path(key).write_text(
            json.dumps(manifest, sort_keys=True, indent=2, ensure_ascii=False), encoding="utf-8"
        )
        return StashEntry(key=key, phase=phase, path=art, files=rels)

    # ------------------------------------------------------------------
    # Unstash
    # ------------------------------------------------------------------

    def restore(self, workspace: str | Path, phase_name: str) -> List[StashEntry]:
        """
        Restore every entry produced by phase_name into workspace.
        For a matrix producer that is one entry per unit, in unit order;
        later entries overwrite files of earlier ones.
        """
        with self._lock:
            keys = self._producers.get(phase_name)
            if keys is None:
                keys = (phase_name,) if phase_name in self._entries else None
            if keys is None:
                raise TransferError(
                    kind=UNKNOWN_STASH,
                    message=f"No stash named '{phase_name}'",
                    phase=phase_name,
                )
            missing = [k for k in keys if k not in self._entries]
            if missing:
                raise TransferError(
                    kind=STASH_NOT_CAPTURED_YET,
                    message=f"Stash '{phase_name}' has not been captured yet",
                    phase=phase_name,
                    details={"missing": ", ".join(missing)},
                )
            entries = [self._entries[k] for k in keys]

        dest = Path(workspace).resolve()
        dest.mkdir(parents=True, exist_ok=True)
        for entry in entries:
            _extract(entry.path, dest)
        return entries

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    def archive(
        self,
        globs: Sequence[str],
        workspaces: Sequence[str | Path],
        dest: str | Path,
    ) -> List[str]:
        """
        Copy files matching globs from every workspace into dest.
        Workspaces are visited in plan order; later ones overwrite.
        Returns the archived relative paths (sorted, unique).
        """
        out_root = Path(dest).resolve()
        out_root.mkdir(parents=True, exist_ok=True)
        archived: set[str] = set()
        for ws in workspaces:
            ws_path = Path(ws)
            if not ws_path.is_dir():
                continue
            for f in select_files(ws_path, globs, self.excludes):
                rel = _relpath(f, ws_path)
                target = out_root / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(f, target)
                archived.add(rel)
        return sorted(archived)


def _stem(key: str) -> str:
    # readable prefix plus a digest; '_' alone would map "a b" and "a_b" to one file
    readable = "".join(c if c.isalnum() or c in "-_.=+," else "_" for c in key)[:60]
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
    return f"{readable}-{digest}"
