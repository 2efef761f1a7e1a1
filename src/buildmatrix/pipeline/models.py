from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional


# ------------------------------------------------------------------
# Jobs
# ------------------------------------------------------------------


@dataclass(frozen=True)
class JobDescriptor:
    platform: str
    triple: str
    branch_gate: bool = True

    @property
    def job_id(self) -> str:
        return f"{self.platform}/{self.triple}"


# ------------------------------------------------------------------
# Artifacts
# ------------------------------------------------------------------


class ArtifactKind(str, Enum):
    TOOLCHAIN = "toolchain"
    NATIVE_DEPENDENCY = "native_dependency"


@dataclass(frozen=True)
class ArtifactSpec:
    name: str
    kind: ArtifactKind
    source_url: str
    destination: Path
    triple: str
    sha256: Optional[str] = None
    extract: bool = False


class FetchStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    TRANSPORT_ERROR = "transport_error"
    CHECKSUM_MISMATCH = "checksum_mismatch"


@dataclass(frozen=True)
class FetchResult:
    """
    Outcome of a single retrieval.

    The payload lives in a temp file (``path``) until the stager promotes it.
    ``path`` is None for every non-ok status; the fetcher never leaves
    partial files behind.
    """

    spec: ArtifactSpec
    status: FetchStatus
    path: Optional[Path] = None
    size: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.OK


# ------------------------------------------------------------------
# Environment
# ------------------------------------------------------------------


def _path_key(env: Mapping[str, str]) -> str:
    # Windows spells it "Path"; keep whatever casing the parent used.
    for k in env:
        if k.upper() == "PATH":
            return k
    return "PATH"


@dataclass(frozen=True)
class StagedEnvironment:
    install_dir: Path
    path_prefix_additions: tuple[Path, ...] = ()
    extra_vars: Mapping[str, str] = field(default_factory=dict)

    def to_process_env(self, base: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        """
        Build the child-process environment.

        Additions are prepended in order, so the last addition ends up first
        on the search path and wins command resolution.
        """
        env = dict(os.environ if base is None else base)
        key = _path_key(env)

        search = env.get(key, "")
        for entry in self.path_prefix_additions:
            search = f"{entry}{os.pathsep}{search}" if search else str(entry)
        env[key] = search

        env.update(self.extra_vars)
        return env


# ------------------------------------------------------------------
# Outcomes
# ------------------------------------------------------------------


class Phase(str, Enum):
    FETCH = "fetch"
    STAGE = "stage"
    BUILD = "build"
    TEST = "test"
    SUCCEEDED = "succeeded"


class JobStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RunOutcome:
    job: JobDescriptor
    status: JobStatus
    phase: Phase
    build_exit: int = -1
    test_exit: int = -1
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCEEDED

    @classmethod
    def failed(
        cls,
        job: JobDescriptor,
        phase: Phase,
        error: str,
        *,
        build_exit: int = -1,
        test_exit: int = -1,
    ) -> "RunOutcome":
        return cls(
            job=job,
            status=JobStatus.FAILED,
            phase=phase,
            build_exit=build_exit,
            test_exit=test_exit,
            error=error,
        )

    def as_dict(self) -> dict:
        return {
            "platform": self.job.platform,
            "triple": self.job.triple,
            "status": self.status.value,
            "phase": self.phase.value,
            "build_exit": self.build_exit,
            "test_exit": self.test_exit,
            "error": self.error,
        }


class PipelineResult(str, Enum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


_EXIT_CODES: dict[PipelineResult, int] = {
    PipelineResult.OK: 0,
    PipelineResult.SKIPPED: 0,
    PipelineResult.FAILED: 1,
    PipelineResult.CANCELLED: 130,
}


@dataclass(frozen=True)
class PipelineReport:
    overall: PipelineResult
    outcomes: tuple[RunOutcome, ...] = ()
    skipped_reason: Optional[str] = None
    cancelled_jobs: tuple[JobDescriptor, ...] = ()

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self.overall]

    @property
    def failures(self) -> list[RunOutcome]:
        return [o for o in self.outcomes if o.status == JobStatus.FAILED]

    def as_dict(self) -> dict:
        return {
            "overall": self.overall.value,
            "exit_code": self.exit_code,
            "skipped_reason": self.skipped_reason,
            "jobs": [o.as_dict() for o in self.outcomes],
            "cancelled": [j.job_id for j in self.cancelled_jobs],
        }
