# scm.py
# Source checkout for a unit workspace.
# All Git interactions go through _git() so nothing else in the host layer
# calls subprocess("git ...") directly.

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Sequence

from ..errors import SCM_FAILED, ExecutionError
from ..model import ScmSpec

DEFAULT_BRANCH = "*/master"
IGNORED_DIRS = (".git", ".plumber", "__pycache__")


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises ExecutionError(ScmFailed) on a non-zero exit or a missing git
    binary, so a broken checkout fails only the unit that asked for it.
    """
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=str(cwd) if cwd is not None else None,
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        raise ExecutionError(
            kind=SCM_FAILED,
            message="git command not found. Please install Git.",
        )

    if proc.returncode != 0:
        raise ExecutionError(
            kind=SCM_FAILED,
            message=f"git {args[0]} failed",
            details={"args": " ".join(args), "stderr": proc.stderr.strip()[-2000:]},
        )
    return proc.stdout.strip()


def branch_name(spec: str) -> str:
    """'*/master' -> 'master', 'origin/main' -> 'main', 'dev' -> 'dev'."""
    spec = spec.strip()
    for prefix in ("*/", "origin/", "refs/heads/"):
        if spec.startswith(prefix):
            return spec[len(prefix):]
    return spec


def checkout_git(config: Mapping[str, object], workspace: Path) -> None:
    """
    Fetch config["url"] into workspace and check out config["branch"].
    Works on a workspace that already holds unstashed files or an earlier
    checkout, which a plain clone would refuse.
    """
    url = config.get("url")
    if not url:
        raise ExecutionError(kind=SCM_FAILED, message="git scm requires a 'url'")
    branch = branch_name(str(config.get("branch") or DEFAULT_BRANCH))

    workspace.mkdir(parents=True, exist_ok=True)
    if not (workspace / ".git").exists():
        _git(["init"], cwd=workspace)
        _git(["remote", "add", "origin", str(url)], cwd=workspace)

    _git(["fetch", "origin"], cwd=workspace)
    _git(["checkout", "-f", "-B", branch, f"origin/{branch}"], cwd=workspace)


def checkout_dir(config: Mapping[str, object], workspace: Path) -> None:
    """Copy a local source tree (config["path"]) into the workspace."""
    src = Path(str(config.get("path") or ".")).expanduser().resolve()
    if not src.is_dir():
        raise ExecutionError(
            kind=SCM_FAILED,
            message=f"Source directory not found: {src}",
        )
    workspace.mkdir(parents=True, exist_ok=True)
    # never copy the work root into itself
    ws = workspace.resolve()

    def ignore(dirname: str, names: list[str]) -> list[str]:
        out = [n for n in names if n in IGNORED_DIRS]
        out.extend(n for n in names if (Path(dirname) / n).resolve() == ws)
        return out

    shutil.copytree(src, workspace, ignore=ignore, dirs_exist_ok=True)


SCM_TYPES: Dict[str, Callable[[Mapping[str, object], Path], None]] = {
    "git": checkout_git,
    "dir": checkout_dir,
}


def checkout(chain: Sequence[ScmSpec], workspace: str | Path) -> None:
    """Apply every SCM entry of the chain to the workspace, in order."""
    ws = Path(workspace)
    for spec in chain:
        fn = SCM_TYPES.get(spec.name)
        if fn is None:
            raise ExecutionError(
                kind=SCM_FAILED,
                message=f"Unknown scm '{spec.name}'",
                details={"available": ", ".join(sorted(SCM_TYPES))},
            )
        fn(spec.config, ws)
