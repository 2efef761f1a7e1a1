from __future__ import annotations

from pathlib import Path


def enforce_retention(log_dir: Path, keep: int) -> int:
    """Delete all but the newest ``keep`` log files; returns how many were removed."""
    if keep <= 0:
        return 0

    logs = sorted(
        log_dir.glob("*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )

    removed = 0
    for old in logs[keep:]:
        try:
            old.unlink()
            removed += 1
        except OSError:
            # Held open elsewhere (Windows); pruned on a later run.
            continue
    return removed
