from __future__ import annotations

import argparse
import json

from rich.table import Table

from buildmatrix.cli.common import dispatch_subparser_help
from buildmatrix.cli.render import RENDER
from buildmatrix.env import BRANCH_VARIABLES, get_env


def build_env_parser(subparsers: argparse._SubParsersAction) -> None:
    env = subparsers.add_parser("env", help="Show how buildmatrix sees this machine")
    sub = env.add_subparsers(dest="env_cmd", required=True)

    help_p = sub.add_parser("help", help="Show help for env")
    help_p.add_argument("path", nargs="*", help="Subcommand path")
    help_p.set_defaults(_help_parser=env)

    dump_p = sub.add_parser("dump", help="Resolved settings (env vars, .env, defaults)")
    dump_p.add_argument("--json", action="store_true", help="Machine-readable output")

    sub.add_parser("branch", help="Which CI variable supplies the branch")


def handle_env(args: argparse.Namespace) -> int:
    if args.env_cmd == "help":
        return dispatch_subparser_help(args._help_parser, list(args.path or []))

    if args.env_cmd == "dump":
        return handle_env_dump(as_json=args.json)

    if args.env_cmd == "branch":
        return handle_env_branch()

    raise RuntimeError(f"Unknown env command: {args.env_cmd}")


def handle_env_dump(*, as_json: bool = False) -> int:
    data = get_env().as_dict()

    if as_json:
        print(json.dumps(data, indent=2, default=str))
        return 0

    for section, values in data.items():
        table = Table(title=section, show_header=False, title_justify="left")
        table.add_column("key", style="cyan")
        table.add_column("value")
        for key, value in values.items():
            table.add_row(key, str(value))
        RENDER.print(table)

    return 0


def handle_env_branch() -> int:
    env = get_env()

    for name in BRANCH_VARIABLES:
        marker = "→" if name == env.branch_source else " "
        RENDER.print(f" {marker} {name}")

    RENDER.print(f"\nBranch: {env.branch or '(unknown)'}")
    return 0
