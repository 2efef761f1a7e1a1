from __future__ import annotations

from typing import Optional


class BuildMatrixError(Exception):
    """Base exception for pipeline errors."""

    pass


class ConfigurationError(BuildMatrixError):
    """Raised when the pipeline file or matrix is malformed. Fatal, pre-flight."""

    pass


class TransportError(BuildMatrixError):
    """Raised when an artifact could not be retrieved."""

    pass


class InstallError(BuildMatrixError):
    """Raised when the toolchain installer (or its verify command) fails."""

    pass


class StageError(BuildMatrixError):
    """Raised when a fetched artifact cannot be placed on disk."""

    pass


class RunError(BuildMatrixError):
    """Raised when the build or test command fails."""

    def __init__(self, message: str, *, phase: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.phase = phase
        self.exit_code = exit_code


__all__ = [
    "BuildMatrixError",
    "ConfigurationError",
    "TransportError",
    "InstallError",
    "StageError",
    "RunError",
]
