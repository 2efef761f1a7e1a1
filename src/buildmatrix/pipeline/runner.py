from __future__ import annotations

import logging
import os
import re
import signal
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Sequence

from buildmatrix.branding import BUILDMATRIX_HEADER, BUILDMATRIX_SECTION_END, SYMBOLS
from buildmatrix.logger import get_logger
from buildmatrix.pipeline.errors import RunError
from buildmatrix.pipeline.models import (
    JobDescriptor,
    JobStatus,
    Phase,
    RunOutcome,
    StagedEnvironment,
)

log = get_logger("buildmatrix.runner")

EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


class RunnerState(str, Enum):
    NOT_STARTED = "not_started"
    BUILDING = "building"
    TESTING = "testing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class CommandResult:
    argv: tuple[str, ...]
    exit_code: int
    timed_out: bool = False
    tail: str = ""
    launch_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


# ------------------------------------------------------------
# Child output forwarding
# ------------------------------------------------------------

_CHILD_LEVEL_RE = re.compile(
    r"""
    ^\s*
    (?:
        \[\s*(DEBUG|INFO|WARNING|WARN|ERROR|CRITICAL)\s*\]
        |
        (DEBUG|INFO|WARNING|WARN|ERROR|CRITICAL)
    )
    [:\s]+
    (.*\S)?\s*$
    """,
    re.VERBOSE,
)

_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _parse_child_level(line: str) -> tuple[int | None, str]:
    m = _CHILD_LEVEL_RE.match(line)
    if not m:
        return None, line.rstrip()

    lvl = (m.group(1) or m.group(2) or "").upper()
    rest = (m.group(3) or "").rstrip()
    return _LEVEL_MAP.get(lvl), rest


# ------------------------------------------------------------
# Core execution
# ------------------------------------------------------------


def _group_kwargs() -> dict:
    # Own process group, so a timeout also reaches grandchildren holding the pipe.
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _kill_tree(proc: subprocess.Popen) -> None:
    if os.name == "nt":
        subprocess.run(
            ["taskkill", "/F", "/T", "/PID", str(proc.pid)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
        return

    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def run_command(
    argv: Sequence[str],
    *,
    env: Mapping[str, str],
    cwd: Path,
    timeout: Optional[float] = None,
    prefix: str = "",
    logger: logging.Logger = log,
) -> CommandResult:
    """
    Run an external command, forwarding its output line by line.

    Exit-code-only contract: 127 when the command cannot be launched,
    124 when it is killed after ``timeout`` seconds.
    """
    argv = tuple(str(a) for a in argv)
    logger.info(f"{prefix}$ {' '.join(argv)}")

    try:
        proc = subprocess.Popen(
            argv,
            cwd=str(cwd),
            env=dict(env),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
            bufsize=1,
            **_group_kwargs(),
        )
    except OSError as e:
        logger.error(f"{prefix}could not launch {argv[0]}: {e}")
        return CommandResult(argv=argv, exit_code=EXIT_NOT_FOUND, launch_error=str(e))

    expired = threading.Event()

    def _kill() -> None:
        expired.set()
        _kill_tree(proc)

    timer = threading.Timer(timeout, _kill) if timeout else None
    if timer is not None:
        timer.daemon = True
        timer.start()

    tail_lines: list[str] = []
    try:
        assert proc.stdout is not None
        for raw in proc.stdout:
            line = raw.rstrip("\n")
            if not line:
                continue

            tail_lines.append(line)
            if len(tail_lines) > 200:
                del tail_lines[0]

            level, msg = _parse_child_level(line)
            logger.log(level or logging.INFO, f"{prefix}{msg}", extra={"passthrough": True})

        exit_code = proc.wait()
    finally:
        if timer is not None:
            timer.cancel()

    if expired.is_set():
        logger.error(f"{prefix}{argv[0]} timed out after {timeout}s")
        return CommandResult(
            argv=argv,
            exit_code=EXIT_TIMEOUT,
            timed_out=True,
            tail="\n".join(tail_lines),
        )

    return CommandResult(argv=argv, exit_code=exit_code, tail="\n".join(tail_lines))


# ------------------------------------------------------------
# Build / test state machine
# ------------------------------------------------------------


class BuildTestRunner:
    """
    Runs the build command and, only if it exits 0, the test command.

    States: not_started -> building -> testing -> succeeded. Any non-zero
    exit moves straight to failed, which is terminal.
    """

    def __init__(
        self,
        job: JobDescriptor,
        staged: StagedEnvironment,
        *,
        build: Sequence[str],
        test: Sequence[str],
        cwd: Path,
        timeout: Optional[float] = None,
        base_env: Optional[Mapping[str, str]] = None,
    ):
        self.job = job
        self.staged = staged
        self.build = tuple(build)
        self.test = tuple(test)
        self.cwd = cwd
        self.timeout = timeout
        self.base_env = base_env
        self.state = RunnerState.NOT_STARTED
        self.exit_codes: dict[Phase, int] = {}

    def _step(
        self,
        state: RunnerState,
        phase: Phase,
        argv: tuple[str, ...],
        env: Mapping[str, str],
    ) -> CommandResult:
        triple = self.job.triple
        self.state = state
        log.info(BUILDMATRIX_HEADER(f"{phase.value.title()}: {triple}"))

        result = run_command(
            argv,
            env=env,
            cwd=self.cwd,
            timeout=self.timeout,
            prefix=f"[{triple}] ",
        )
        self.exit_codes[phase] = result.exit_code

        if not result.ok:
            log.error(f"[{triple}] {SYMBOLS.FAIL} {phase.value} failed (exit {result.exit_code})")
            raise RunError(_describe(result), phase=phase.value, exit_code=result.exit_code)
        return result

    def run(self) -> RunOutcome:
        if self.state != RunnerState.NOT_STARTED:
            raise RuntimeError(f"Runner for {self.job.job_id} already used ({self.state.value})")

        env = self.staged.to_process_env(self.base_env)

        try:
            self._step(RunnerState.BUILDING, Phase.BUILD, self.build, env)
            self._step(RunnerState.TESTING, Phase.TEST, self.test, env)
        except RunError as e:
            self.state = RunnerState.FAILED
            return RunOutcome.failed(
                self.job,
                Phase(e.phase),
                str(e),
                build_exit=self.exit_codes.get(Phase.BUILD, -1),
                test_exit=self.exit_codes.get(Phase.TEST, -1),
            )
        finally:
            log.info(BUILDMATRIX_SECTION_END())

        self.state = RunnerState.SUCCEEDED
        log.info(f"[{self.job.triple}] {SYMBOLS.OK} build and tests passed")
        return RunOutcome(
            job=self.job,
            status=JobStatus.SUCCEEDED,
            phase=Phase.SUCCEEDED,
            build_exit=self.exit_codes[Phase.BUILD],
            test_exit=self.exit_codes[Phase.TEST],
        )


def _describe(result: CommandResult) -> str:
    if result.timed_out:
        return f"{result.argv[0]} timed out"
    if result.launch_error:
        return f"{result.argv[0]} could not be launched: {result.launch_error}"
    return f"{result.argv[0]} exited with {result.exit_code}"
