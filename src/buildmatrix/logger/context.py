from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

NO_JOB = "-"

_current = threading.local()


def current_job() -> str:
    return getattr(_current, "job", NO_JOB)


@contextmanager
def job_context(job_id: str) -> Iterator[None]:
    """Tag every record emitted on this thread with ``job_id``."""
    previous = current_job()
    _current.job = job_id
    try:
        yield
    finally:
        _current.job = previous


class ContextFilter(logging.Filter):
    """
    Stamps ``run_id`` and ``job`` onto each record.

    Jobs run on worker threads, so the job id comes from the emitting
    thread. Attributes already present on the record (``extra=``) win.
    """

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "run_id"):
            record.run_id = self.run_id
        if not hasattr(record, "job"):
            record.job = current_job()
        return True
