from __future__ import annotations

import logging
from pathlib import Path

from buildmatrix.logger.context import ContextFilter

FILE_FORMAT = "%(asctime)s | [%(levelname)s] | %(run_id)s | %(job)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _stamp(handler: logging.FileHandler, run_id: str) -> None:
    handler.filters.clear()
    handler.addFilter(ContextFilter(run_id=run_id))


def build_file_handler(logfile: Path, *, run_id: str) -> logging.FileHandler:
    logfile.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(logfile, encoding="utf-8")
    handler.setLevel(logging.NOTSET)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    _stamp(handler, run_id)
    return handler


def repoint_file_handler(handler: logging.FileHandler, logfile: Path, *, run_id: str) -> None:
    """Switch an existing handler to a new run file instead of stacking a second one."""
    logfile.parent.mkdir(parents=True, exist_ok=True)

    handler.acquire()
    try:
        handler.close()
        handler.baseFilename = str(logfile)
        handler.stream = handler._open()
    finally:
        handler.release()

    _stamp(handler, run_id)
