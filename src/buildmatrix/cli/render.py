from __future__ import annotations

import sys

from rich.console import Console
from rich.table import Table

from buildmatrix.branding import SYMBOLS
from buildmatrix.pipeline.models import JobStatus, PipelineReport


class _Render:
    """Lazy stdout console so redirected/captured stdout is honored."""

    def print(self, *objects, **kwargs) -> None:
        Console(file=sys.stdout, soft_wrap=True).print(*objects, **kwargs)


RENDER = _Render()

_STATUS_STYLE = {
    JobStatus.SUCCEEDED: ("green", SYMBOLS.OK),
    JobStatus.FAILED: ("red", SYMBOLS.FAIL),
    JobStatus.CANCELLED: ("yellow", SYMBOLS.SKIPPED),
}


def report_table(report: PipelineReport) -> Table:
    table = Table(title=f"Pipeline: {report.overall.value}", show_lines=False)
    table.add_column("job")
    table.add_column("status")
    table.add_column("phase")
    table.add_column("build", justify="right")
    table.add_column("test", justify="right")
    table.add_column("detail", overflow="fold")

    for o in report.outcomes:
        style, symbol = _STATUS_STYLE[o.status]
        table.add_row(
            o.job.job_id,
            f"[{style}]{symbol} {o.status.value}[/{style}]",
            o.phase.value,
            "-" if o.build_exit < 0 else str(o.build_exit),
            "-" if o.test_exit < 0 else str(o.test_exit),
            o.error or "",
        )

    for job in report.cancelled_jobs:
        table.add_row(job.job_id, f"[yellow]{SYMBOLS.SKIPPED} not dispatched[/yellow]", "-", "-", "-", "")

    return table
