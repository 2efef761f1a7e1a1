from __future__ import annotations

import argparse

from buildmatrix.cli.common import (
    RunFile,
    add_log_dir_args,
    dispatch_subparser_help,
    format_mtime,
    list_run_files,
    print_tail,
    print_table,
    resolve_log_dir,
    summarize_run,
)


def build_runs_parser(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("runs", help="Past runs and their per-job results (log-driven)")
    sp = p.add_subparsers(dest="runs_cmd", required=True)

    help_p = sp.add_parser("help", help="Show help for runs")
    help_p.add_argument("path", nargs="*", help="Subcommand path")
    help_p.set_defaults(_help_parser=p)

    list_p = sp.add_parser("list", help="List runs, newest first")
    add_log_dir_args(list_p)

    latest_p = sp.add_parser("latest", help="Show the most recent run")
    add_log_dir_args(latest_p)
    latest_p.add_argument("--tail", type=int, default=0, help="Also print this many log lines")

    show_p = sp.add_parser("show", help="Show a specific run")
    show_p.add_argument("run_id", help="Run id (log filename stem)")
    add_log_dir_args(show_p)
    show_p.add_argument("--tail", type=int, default=40, help="Lines to show from end")


def _show(run: RunFile, tail: int) -> None:
    summary = summarize_run(run.path)

    print(f"Run:    {run.run_id}")
    print(f"Path:   {run.path}")
    print(f"Time:   {format_mtime(run.mtime)}")
    print(f"Status: {summary.status}")

    if summary.jobs:
        print()
        print_table(["job", "result"], [[job, state] for job, state in summary.jobs.items()])

    if tail:
        print()
        print_tail(run.path, tail)


def handle_runs(args: argparse.Namespace) -> int:
    if args.runs_cmd == "help":
        return dispatch_subparser_help(args._help_parser, list(args.path or []))

    log_dir = resolve_log_dir(pipeline=args.pipeline, explicit=args.dir, command=args.log_command)
    runs = list_run_files(log_dir)

    if args.runs_cmd == "list":
        rows = []
        for r in runs:
            summary = summarize_run(r.path)
            rows.append([r.run_id, summary.status, summary.jobs_label, format_mtime(r.mtime)])
        print_table(["run_id", "status", "jobs", "time"], rows)
        return 0

    if not runs:
        print(f"No runs found in {log_dir}")
        return 1

    if args.runs_cmd == "latest":
        _show(runs[0], args.tail)
        return 0

    if args.runs_cmd == "show":
        match = next((r for r in runs if args.run_id in (r.run_id, r.path.name)), None)
        if match is None:
            print(f"Run not found: {args.run_id}")
            return 1
        _show(match, args.tail)
        return 0

    raise RuntimeError(f"Unknown runs command: {args.runs_cmd}")
