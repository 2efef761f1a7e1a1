from __future__ import annotations

import argparse
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from buildmatrix.branding import SYMBOLS
from buildmatrix.env import logs_dir


# ----------------------------
# Help dispatch (subparser-local)
# ----------------------------


def dispatch_subparser_help(
    parser: argparse.ArgumentParser, path: list[str] | None
) -> int:
    """
    Implements consistent `X help [subcmd ...]` behavior for a subtree parser.
    """
    if not path:
        parser.print_help()
        return 0

    try:
        parser.parse_args(path + ["--help"])
    except SystemExit:
        pass
    return 0


def add_log_dir_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--pipeline", help="Pipeline name (logs/<command>/<pipeline>/)")
    p.add_argument(
        "--for",
        dest="log_command",
        default="run",
        help="Command whose logs to inspect (default: run)",
    )
    p.add_argument("--dir", help="Explicit log directory")


# ----------------------------
# Log files
# ----------------------------


def resolve_log_dir(
    *, pipeline: str | None, explicit: str | None, command: str = "run"
) -> Path:
    if explicit:
        return Path(explicit).expanduser().resolve()

    base = logs_dir() / command
    return base / pipeline if pipeline else base


def find_log_file(log_dir: Path, name: str) -> Path | None:
    if not log_dir.is_dir():
        return None

    for p in (log_dir / name, log_dir / f"{name}.log"):
        if p.is_file():
            return p

    return next((p for p in log_dir.rglob("*.log") if p.stem == name), None)


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def print_tail(path: Path, lines: int) -> None:
    try:
        data = read_text(path).splitlines()
    except OSError as e:
        print(f"[error reading log] {e}")
        return

    for line in data[-lines:] if lines > 0 else data:
        print(line)


# ----------------------------
# Run status inference (log-driven)
# ----------------------------

RUN_STATUSES = ("ok", "failed", "skipped", "cancelled")

_STATUS_RE = re.compile(r"RUN_STATUS=(\w+)\s*$")

# Summary lines written by the driver, e.g. "✖ x64/t2: failed in fetch (...)".
_JOB_LINE_RE = re.compile(
    rf"[{SYMBOLS.OK}{SYMBOLS.FAIL}{SYMBOLS.SKIPPED}] (?P<job>\S+): "
    r"(?P<state>succeeded|failed|cancelled|not dispatched)"
)


@dataclass
class RunSummary:
    status: str = "incomplete"
    jobs: dict[str, str] = field(default_factory=dict)

    def count(self, state: str) -> int:
        return sum(1 for s in self.jobs.values() if s == state)

    @property
    def jobs_label(self) -> str:
        if not self.jobs:
            return "-"
        parts = [f"{self.count('succeeded')} ok"]
        failed = self.count("failed")
        if failed:
            parts.append(f"{failed} failed")
        return ", ".join(parts)


def summarize_run(path: Path) -> RunSummary:
    """
    Read a run log back into a RunSummary.

    The last ``RUN_STATUS=<value>`` marker wins. A log without one belongs
    to a run that crashed, was killed, or is still going.
    """
    try:
        text = read_text(path)
    except OSError:
        return RunSummary(status="unknown")

    summary = RunSummary()
    for line in text.splitlines():
        m = _STATUS_RE.search(line)
        if m and m.group(1) in RUN_STATUSES:
            summary.status = m.group(1)
            continue

        m = _JOB_LINE_RE.search(line)
        if m:
            state = m.group("state")
            summary.jobs[m.group("job")] = "cancelled" if state == "not dispatched" else state

    if summary.status == "incomplete" and "Configuration error" in text:
        summary.status = "config_error"
    return summary


def infer_run_status(path: Path) -> str:
    return summarize_run(path).status


# ----------------------------
# Run listing
# ----------------------------


@dataclass(frozen=True)
class RunFile:
    run_id: str
    path: Path
    mtime: float
    size: int


def list_run_files(log_dir: Path) -> list[RunFile]:
    """Every ``*.log`` below ``log_dir``, newest first."""
    if not log_dir.is_dir():
        return []

    items: list[RunFile] = []
    for p in log_dir.rglob("*.log"):
        try:
            st = p.stat()
        except OSError:
            continue
        items.append(RunFile(run_id=p.stem, path=p, mtime=st.st_mtime, size=st.st_size))

    items.sort(key=lambda r: r.mtime, reverse=True)
    return items


def format_mtime(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


# ----------------------------
# CLI output helpers
# ----------------------------


def print_table(headers: list[str], rows: list[list[str]]) -> None:
    """Plain fixed-width table; stays greppable when piped."""
    if not rows:
        print("(no results)")
        return

    widths = [max(len(h), *(len(str(r[i])) for r in rows)) for i, h in enumerate(headers)]
    fmt = "  ".join(f"{{:{w}}}" for w in widths)

    print(fmt.format(*headers))
    print(fmt.format(*("-" * w for w in widths)))
    for row in rows:
        print(fmt.format(*(str(c) for c in row)))
