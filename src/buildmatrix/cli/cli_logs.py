from __future__ import annotations

import argparse

from buildmatrix.cli.common import (
    add_log_dir_args,
    dispatch_subparser_help,
    find_log_file,
    format_mtime,
    infer_run_status,
    list_run_files,
    print_table,
    read_text,
    resolve_log_dir,
)


def build_logs_parser(subparsers: argparse._SubParsersAction) -> None:
    logs = subparsers.add_parser("logs", help="Read run log files")
    lsub = logs.add_subparsers(dest="logs_cmd", required=True)

    help_p = lsub.add_parser("help", help="Show help for logs")
    help_p.add_argument("path", nargs="*", help="Subcommand path (e.g. list, show)")
    help_p.set_defaults(_help_parser=logs)

    list_p = lsub.add_parser("list", help="List log files, newest first")
    add_log_dir_args(list_p)

    show_p = lsub.add_parser("show", help="Print the end of a log file")
    show_p.add_argument("name", help="Log filename or stem")
    add_log_dir_args(show_p)
    show_p.add_argument("--tail", type=int, default=120, help="Lines from end (0 = all)")
    show_p.add_argument("--job", help="Only lines from this job, e.g. x64/x86_64-pc-windows-gnu")


def job_lines(lines: list[str], job: str) -> list[str]:
    """Keep lines whose job column (``| <job> |``) matches."""
    needle = f"| {job} |"
    return [line for line in lines if needle in line]


def handle_logs(args: argparse.Namespace) -> int:
    if args.logs_cmd == "help":
        return dispatch_subparser_help(args._help_parser, list(args.path or []))

    log_dir = resolve_log_dir(pipeline=args.pipeline, explicit=args.dir, command=args.log_command)

    if args.logs_cmd == "list":
        rows = [
            [str(r.path.relative_to(log_dir)), infer_run_status(r.path), format_mtime(r.mtime)]
            for r in list_run_files(log_dir)
        ]
        print_table(["file", "state", "time"], rows)
        return 0

    if args.logs_cmd == "show":
        path = find_log_file(log_dir, args.name)
        if path is None:
            print(f"Log not found: {args.name}")
            return 1

        lines = read_text(path).splitlines()
        if args.job:
            lines = job_lines(lines, args.job)
        for line in lines[-args.tail:] if args.tail > 0 else lines:
            print(line)
        return 0

    raise RuntimeError(f"Unknown logs command: {args.logs_cmd}")
