from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from buildmatrix.env.paths import home_dir, logs_dir
from buildmatrix.pipeline.errors import ConfigurationError

# CI systems expose the branch under different names; first hit wins.
BRANCH_VARIABLES = (
    "BUILDMATRIX_BRANCH",
    "APPVEYOR_REPO_BRANCH",
    "GITHUB_HEAD_REF",
    "GITHUB_REF_NAME",
    "CI_COMMIT_BRANCH",
    "BRANCH_NAME",
)

# ------------------------------------------------------------
# dotenv (bootstrap owns usage)
# ------------------------------------------------------------


def load_env_file(path: Path) -> bool:
    """
    Seed os.environ from a .env file.
    Never overrides variables that are already set.
    """
    if not path.is_file():
        return False
    return load_dotenv(path, override=False)


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------


def _as_bool(v: str) -> bool:
    return v.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(v: str, default: int) -> int:
    try:
        return int(v)
    except ValueError:
        return default


def _as_positive_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number of seconds, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def detect_branch_source() -> tuple[Optional[str], Optional[str]]:
    """Return ``(variable, branch)`` for the first CI variable that is set."""
    for name in BRANCH_VARIABLES:
        value = os.environ.get(name, "").strip()
        if value:
            return name, value
    return None, None


def detect_branch() -> Optional[str]:
    return detect_branch_source()[1]


# ------------------------------------------------------------
# Logging environment (SAFE ANYWHERE)
# ------------------------------------------------------------


@dataclass(frozen=True)
class LoggingEnvironment:
    log_level: str
    log_retention: int
    verbose: bool
    quiet: bool


def get_logging_env() -> LoggingEnvironment:
    return LoggingEnvironment(
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        log_retention=_as_int(os.environ.get("LOG_RETENTION", "30"), 30),
        verbose=_as_bool(os.environ.get("BUILDMATRIX_VERBOSE", "0")),
        quiet=_as_bool(os.environ.get("BUILDMATRIX_QUIET", "0")),
    )


# ------------------------------------------------------------
# Full runtime environment
# ------------------------------------------------------------


class Environment:
    def __init__(self):
        # Logging snapshot (immutable)
        self._logging = get_logging_env()

        # ---- RUN CONTEXT ----
        self.command = os.environ.get("BUILDMATRIX_COMMAND", "buildmatrix")
        self.pipeline = os.environ.get("BUILDMATRIX_PIPELINE", "")
        self.run_id = os.environ.get("BUILDMATRIX_RUN_ID", "")
        self.branch_source, self.branch = detect_branch_source()

        # ---- EXECUTION ----
        workers = _as_int(os.environ.get("BUILDMATRIX_WORKERS", "0"), 0)
        self.workers: Optional[int] = workers if workers > 0 else None
        self.fetch_timeout = _as_positive_float("BUILDMATRIX_FETCH_TIMEOUT", 300.0)
        self.command_timeout = _as_positive_float("BUILDMATRIX_COMMAND_TIMEOUT", None)

    @property
    def home(self) -> Path:
        return home_dir()

    @property
    def logs_dir(self) -> Path:
        return logs_dir()

    def as_dict(self) -> dict:
        return {
            "Logging": {
                "log_level": self.log_level,
                "log_retention": self.log_retention,
                "verbose": self.verbose,
                "quiet": self.quiet,
                "logs_dir": str(self.logs_dir),
            },
            "Run": {
                "command": self.command,
                "pipeline": self.pipeline or "-",
                "run_id": self.run_id or "-",
                "branch": self.branch or "(unknown)",
                "branch_source": self.branch_source or "-",
            },
            "Execution": {
                "workers": self.workers or "auto",
                "fetch_timeout": self.fetch_timeout,
                "command_timeout": self.command_timeout or "none",
            },
        }

    # ---- logging passthrough ----
    @property
    def log_level(self) -> str:
        return self._logging.log_level

    @property
    def log_retention(self) -> int:
        return self._logging.log_retention

    @property
    def verbose(self) -> bool:
        return self._logging.verbose

    @property
    def quiet(self) -> bool:
        return self._logging.quiet


_ENV: Optional[Environment] = None


def reset_env_caches() -> None:
    """Invalidate cached views of environment variables."""
    global _ENV
    _ENV = None


def get_env() -> Environment:
    global _ENV
    if _ENV is None:
        _ENV = Environment()
    return _ENV
