from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

from buildmatrix.env import get_logging_env
from buildmatrix.logger.console import build_console_handler
from buildmatrix.logger.context import job_context
from buildmatrix.logger.file import build_file_handler, repoint_file_handler
from buildmatrix.logger.log_paths import run_logs_dir
from buildmatrix.logger.retention import enforce_retention
from buildmatrix.logger.state import STATE

# Chatty libraries that would otherwise log every connection at DEBUG.
_NOISY = ("urllib3", "requests")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def _level(level: str) -> int:
    lvl = logging.getLevelName(level.upper())
    return lvl if isinstance(lvl, int) else logging.INFO


def _run_id() -> str:
    run_id = os.environ.get("BUILDMATRIX_RUN_ID")
    if not run_id:
        run_id = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        os.environ["BUILDMATRIX_RUN_ID"] = run_id
    return run_id


def run_log_path(command: str, pipeline: Optional[str], run_id: str) -> Path:
    """``logs/<command>/[<pipeline>/]<command>-<run_id>.log``"""
    return run_logs_dir(command, pipeline) / f"{command}-{run_id}.log"


def current_log_file() -> Optional[Path]:
    return STATE.log_file


def init_logging(command: Optional[str] = None, pipeline: Optional[str] = None) -> Path:
    """
    Initialize logging for the whole process and return the run log path.

    Handlers live on the root logger only; named loggers propagate. Calling
    again for a different run repoints the file handler instead of adding a
    second one.
    """
    env = get_logging_env()
    for name in _NOISY:
        logging.getLogger(name).setLevel(logging.WARNING)

    command = command or os.environ.get("BUILDMATRIX_COMMAND") or "buildmatrix"
    pipeline = pipeline or os.environ.get("BUILDMATRIX_PIPELINE") or None
    run_id = _run_id()
    logfile = run_log_path(command, pipeline, run_id)

    enforce_retention(logfile.parent, env.log_retention)

    root = logging.getLogger()
    root_level = logging.DEBUG if env.verbose else _level(env.log_level)

    if STATE.initialized and STATE.log_file == logfile:
        root.setLevel(root_level)
        return logfile

    file_handler = next((h for h in root.handlers if isinstance(h, logging.FileHandler)), None)

    root.handlers.clear()
    root.setLevel(root_level)

    if file_handler is None:
        file_handler = build_file_handler(logfile, run_id=run_id)
    else:
        repoint_file_handler(file_handler, logfile, run_id=run_id)

    root.addHandler(file_handler)
    root.addHandler(build_console_handler(root_level))

    STATE.initialized = True
    STATE.run_id = run_id
    STATE.log_file = logfile
    return logfile


__all__ = ["current_log_file", "get_logger", "init_logging", "job_context", "run_log_path"]
