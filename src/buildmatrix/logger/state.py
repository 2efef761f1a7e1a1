"""Process-wide logging state, owned by init_logging."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class LoggingState:
    initialized: bool = False
    run_id: Optional[str] = None
    log_file: Optional[Path] = None

    @property
    def log_dir(self) -> Optional[Path]:
        return self.log_file.parent if self.log_file else None

    def reset(self) -> None:
        self.initialized = False
        self.run_id = None
        self.log_file = None


STATE = LoggingState()
