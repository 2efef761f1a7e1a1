from __future__ import annotations

import os
from pathlib import Path

# ---------------------------------------------------------------------
# Base directories (override-friendly)
# ---------------------------------------------------------------------


def _resolve_dir(env_var: str, default: Path) -> Path:
    """
    Resolve a directory path from an environment variable or default.
    Ensures the directory exists.
    """
    raw = os.environ.get(env_var)
    path = Path(raw).expanduser().resolve() if raw else default
    path.mkdir(parents=True, exist_ok=True)
    return path


def home_dir() -> Path:
    """
    State directory for logs and reports.

    Defaults to ``./.buildmatrix`` under the current working directory.
    """
    return _resolve_dir("BUILDMATRIX_HOME", Path.cwd() / ".buildmatrix")


def logs_dir() -> Path:
    raw = os.environ.get("BUILDMATRIX_LOGS_DIR")
    path = Path(raw).expanduser().resolve() if raw else home_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path
