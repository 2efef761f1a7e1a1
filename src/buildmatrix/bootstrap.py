"""bootstrap.py

Process bootstrap for buildmatrix.

This module is intentionally tiny and side-effectful.

Rules:
1) Only bootstrap is allowed to *mutate* os.environ for shared run context.
2) Call bootstrap_base_env() exactly once at the true entrypoint.
3) Call bootstrap_run_context() after argparse parsing, before init_logging().

Jobs never see these mutations directly: each job gets its own
StagedEnvironment value built from a snapshot.
"""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path

from buildmatrix.env import load_env_file, reset_env_caches

_BOOTSTRAPPED = False


def bootstrap_base_env(env_file: str | Path | None = None) -> None:
    global _BOOTSTRAPPED
    if _BOOTSTRAPPED:
        return

    path = Path(env_file or os.environ.get("BUILDMATRIX_ENV_FILE") or Path.cwd() / ".env")
    load_env_file(path.expanduser())

    os.environ.setdefault(
        "BUILDMATRIX_RUN_ID",
        datetime.now().strftime("%Y-%m-%d_%H-%M-%S"),
    )

    reset_env_caches()
    _BOOTSTRAPPED = True


def bootstrap_run_context(
    *,
    command: str,
    pipeline: str | None = None,
    branch: str | None = None,
    verbose: bool | None = None,
    quiet: bool | None = None,
) -> None:
    """Establish run-scoped context used by logging and the pipeline driver."""

    os.environ["BUILDMATRIX_COMMAND"] = command

    if pipeline:
        os.environ["BUILDMATRIX_PIPELINE"] = pipeline
    else:
        os.environ.pop("BUILDMATRIX_PIPELINE", None)

    if branch:
        os.environ["BUILDMATRIX_BRANCH"] = branch

    if verbose is not None:
        os.environ["BUILDMATRIX_VERBOSE"] = "1" if verbose else "0"
    if quiet is not None:
        os.environ["BUILDMATRIX_QUIET"] = "1" if quiet else "0"

    # Context changes must invalidate cached env views.
    reset_env_caches()
