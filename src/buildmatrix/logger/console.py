from __future__ import annotations

import logging
import sys

from rich.console import Console
from rich.logging import RichHandler

from buildmatrix.env import get_logging_env


def _console() -> Console:
    # Resolved per handler so pytest's capsys sees the current sys.stdout.
    return Console(file=sys.stdout, soft_wrap=True)


class ConsoleGateFilter(logging.Filter):
    """Quiet mode lets only errors through to the console."""

    def filter(self, record: logging.LogRecord) -> bool:
        le = get_logging_env()

        if le.quiet:
            return record.levelno >= logging.ERROR

        return True


def build_console_handler(level: int = logging.INFO) -> logging.Handler:
    handler = RichHandler(
        console=_console(),
        show_level=True,
        show_time=False,
        show_path=False,
        markup=False,
    )
    handler.setLevel(level)

    # RichHandler renders the level column; the formatter must not repeat it.
    handler.setFormatter(logging.Formatter("%(message)s"))

    handler.addFilter(ConsoleGateFilter())
    return handler
