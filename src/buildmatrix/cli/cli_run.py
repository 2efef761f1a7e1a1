from __future__ import annotations

import argparse
import json
from pathlib import Path

from buildmatrix.branding import BUILDMATRIX_BANNER
from buildmatrix.cli.render import RENDER, report_table
from buildmatrix.env import get_env
from buildmatrix.logger import get_logger
from buildmatrix.pipeline.config import load_pipeline
from buildmatrix.pipeline.driver import run_pipeline
from buildmatrix.pipeline.errors import ConfigurationError
from buildmatrix.pipeline.models import PipelineReport

EXIT_CONFIG_ERROR = 2

log = get_logger("buildmatrix.cli.run")


# ------------------------------------------------------------
# Parser
# ------------------------------------------------------------


def build_run_parser(subparsers: argparse._SubParsersAction) -> None:
    run = subparsers.add_parser(
        "run", help="Fetch, stage, build and test every job of a pipeline"
    )

    run.add_argument("pipeline", help="Pipeline file (.yml, .yaml or .json)")
    run.add_argument("--branch", help="Branch name for the branch gate (default: from CI env)")
    run.add_argument(
        "--ignore-branch-gate",
        action="store_true",
        help="Run even if the branch gate would skip",
    )
    run.add_argument(
        "--triple",
        action="append",
        default=[],
        help="Only run this target triple (repeatable)",
    )
    run.add_argument("--workers", type=int, default=None, help="Parallel jobs")
    run.add_argument("--report", help="Write the pipeline report as JSON to this file")
    run.add_argument("--verbose", action="store_true")
    run.add_argument("--quiet", action="store_true")


# ------------------------------------------------------------
# Handler
# ------------------------------------------------------------


def write_report(report: PipelineReport, path: str | Path) -> Path:
    out = Path(path).expanduser()
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(report.as_dict(), indent=2) + "\n", encoding="utf-8")
    return out


def handle_run(args: argparse.Namespace) -> int:
    log.info(BUILDMATRIX_BANNER)
    log.info(f"Pipeline file: {args.pipeline}")

    try:
        env = get_env()
        log.info(f"Branch: {env.branch or '(unknown)'}")

        config = load_pipeline(args.pipeline)
        if args.triple:
            config = config.with_triples(args.triple)

        report = run_pipeline(
            config,
            branch=env.branch,
            ignore_branch_gate=args.ignore_branch_gate,
            workers=args.workers or env.workers,
            fetch_timeout=env.fetch_timeout,
            command_timeout=env.command_timeout,
        )
    except ConfigurationError as e:
        log.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    if args.report:
        out = write_report(report, args.report)
        log.info(f"Report written to {out}")

    if not env.quiet:
        if report.outcomes or report.cancelled_jobs:
            RENDER.print(report_table(report))
        elif report.skipped_reason:
            RENDER.print(f"[yellow]Skipped:[/yellow] {report.skipped_reason}")

    for failure in report.failures:
        log.error(f"{failure.job.job_id} failed in {failure.phase.value}: {failure.error}")

    return report.exit_code
