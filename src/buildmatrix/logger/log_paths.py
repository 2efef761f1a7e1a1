from __future__ import annotations

from pathlib import Path
from typing import Optional

from buildmatrix.env import logs_dir


def run_logs_dir(command: str, pipeline: Optional[str] = None) -> Path:
    """``logs/<command>/`` or, for pipeline runs, ``logs/<command>/<pipeline>/``."""
    path = logs_dir() / command
    if pipeline:
        path = path / pipeline
    path.mkdir(parents=True, exist_ok=True)
    return path
