from __future__ import annotations

import argparse
import sys
from pathlib import Path

from buildmatrix.bootstrap import bootstrap_base_env, bootstrap_run_context


def _dispatch_help(argv: list[str]) -> int:
    # Support:
    #   buildmatrix help
    #   buildmatrix help run
    #   buildmatrix run help
    argv = [a for a in argv if a != "help"]

    try:
        build_parser().parse_args(argv + ["--help"])
    except SystemExit:
        pass
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="buildmatrix",
        description="Matrix CI runner: fetch toolchains and native deps, then build and test per target triple.",
    )

    sub = p.add_subparsers(dest="command", required=True)

    help_cmd = sub.add_parser("help", help="Show help")
    help_cmd.add_argument("path", nargs="*", help="Command path to show help for")
    help_cmd.set_defaults(_help=True)

    # Keep imports inside builder to avoid early side effects.
    from buildmatrix.cli.cli_env import build_env_parser
    from buildmatrix.cli.cli_logs import build_logs_parser
    from buildmatrix.cli.cli_matrix import build_matrix_parser
    from buildmatrix.cli.cli_run import build_run_parser
    from buildmatrix.cli.cli_runs import build_runs_parser

    build_run_parser(sub)
    build_matrix_parser(sub)
    build_env_parser(sub)
    build_runs_parser(sub)
    build_logs_parser(sub)

    return p


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)

    # Load .env and base environment early
    bootstrap_base_env()

    if not argv:
        build_parser().print_help()
        return 0

    if argv[0] == "help" or (argv[-1] == "help" and argv[0] in ("run", "matrix")):
        return _dispatch_help(argv)

    parser = build_parser()
    args = parser.parse_args(argv)

    pipeline_file = getattr(args, "pipeline", None) if args.command in ("run", "matrix") else None

    # Stamp run context early (so logging and env views agree)
    bootstrap_run_context(
        command=args.command,
        pipeline=Path(pipeline_file).stem if pipeline_file else None,
        branch=getattr(args, "branch", None),
        # Flags only ever switch these on; .env / CI settings stay in force otherwise.
        verbose=True if getattr(args, "verbose", False) else None,
        quiet=True if getattr(args, "quiet", False) else None,
    )

    # Initialize logging AFTER run-context env stamping
    from buildmatrix.logger import get_logger, init_logging

    init_logging()

    log = get_logger("buildmatrix")
    log.debug(f"Command: {args.command}")

    from buildmatrix.cli.cli_run import EXIT_CONFIG_ERROR
    from buildmatrix.pipeline.errors import ConfigurationError

    try:
        return _dispatch(args)
    except ConfigurationError as e:
        # Bad BUILDMATRIX_* values surface on first get_env() in any command.
        log.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR


def _dispatch(args: argparse.Namespace) -> int:
    if args.command == "run":
        from buildmatrix.cli.cli_run import handle_run

        return handle_run(args)

    if args.command == "matrix":
        from buildmatrix.cli.cli_matrix import handle_matrix

        return handle_matrix(args)

    if args.command == "env":
        from buildmatrix.cli.cli_env import handle_env

        return handle_env(args)

    if args.command == "runs":
        from buildmatrix.cli.cli_runs import handle_runs

        return handle_runs(args)

    if args.command == "logs":
        from buildmatrix.cli.cli_logs import handle_logs

        return handle_logs(args)

    raise RuntimeError(f"Unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
