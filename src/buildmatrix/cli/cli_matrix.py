from __future__ import annotations

import argparse
from dataclasses import replace

from rich.table import Table

from buildmatrix.cli.cli_run import EXIT_CONFIG_ERROR
from buildmatrix.cli.render import RENDER
from buildmatrix.env import get_env
from buildmatrix.logger import get_logger
from buildmatrix.pipeline.composer import compose_environment
from buildmatrix.pipeline.config import BranchGate, load_pipeline
from buildmatrix.pipeline.errors import ConfigurationError
from buildmatrix.pipeline.matrix import (
    check_disjoint,
    evaluate_branch_gate,
    plan_artifacts,
    resolve_jobs,
)

log = get_logger("buildmatrix.cli.matrix")


def build_matrix_parser(subparsers: argparse._SubParsersAction) -> None:
    p = subparsers.add_parser(
        "matrix", help="Show resolved jobs and their artifact plan (no network)"
    )
    p.add_argument("pipeline", help="Pipeline file (.yml, .yaml or .json)")
    p.add_argument("--branch", help="Branch name for the branch gate (default: from CI env)")


def handle_matrix(args: argparse.Namespace) -> int:
    try:
        branch = get_env().branch
        config = load_pipeline(args.pipeline)
        gate_open = evaluate_branch_gate(config.branches, branch)
        # Show the plan even when the gate is closed.
        jobs = resolve_jobs(replace(config, branches=BranchGate()))
        check_disjoint(config, jobs)
    except ConfigurationError as e:
        log.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    RENDER.print(f"\n[bold]{config.name}[/bold]  ({len(jobs)} jobs)")
    RENDER.print(f"Workspace: {config.workspace}")
    gate = "[green]open[/green]" if gate_open else "[yellow]closed (run would be skipped)[/yellow]"
    RENDER.print(f"Branch: {branch or '(unknown)'}  gate: {gate}\n")

    table = Table(show_lines=True)
    table.add_column("job")
    table.add_column("artifact")
    table.add_column("source")
    table.add_column("destination", overflow="fold")

    for job in jobs:
        for spec in plan_artifacts(config, job):
            table.add_row(job.job_id, spec.name, spec.source_url, str(spec.destination))

    RENDER.print(table)

    for job in jobs:
        staged = compose_environment(config, job)
        RENDER.print(f"\n[bold cyan]{job.job_id}[/bold cyan] PATH additions (highest precedence last):")
        for entry in staged.path_prefix_additions:
            RENDER.print(f"  + {entry}")

    RENDER.print()
    return 0

