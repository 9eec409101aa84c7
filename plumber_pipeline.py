# plumber_pipeline.py
# Pipeline for plumber itself: lint, then tests across Python versions, then a wheel
from __future__ import annotations

from plumber.dsl import axis, inline, local_dir, notifier, phase, pipeline, script, step


PIPELINE = pipeline(
    # Lint - runs ruff on the codebase
    phase("lint", script("ruff check src tests")),

    # Tests - one unit per interpreter, all in parallel
    phase(
        "test",
        inline(
            step("sh", "python$PY -m pip install -e '.[test]'"),
            step("sh", "python$PY -m pytest -q"),
        ),
        after=["lint"],
        matrix=[axis("PY", "3.10", "3.11", "3.12")],
    ),

    # Wheel - built once the tests pass, handed to the publish phase
    phase(
        "wheel",
        script("python -m pip wheel --no-deps -w dist ."),
        after=["test"],
        stash_dirs=["dist/*.whl"],
    ),
    phase(
        "publish-check",
        script("ls dist"),
        unstash="wheel",
    ),
    scm=[local_dir(".")],
    archive_dirs=["dist/**"],
    notifiers=[notifier("echo", before=True)],
)
