from __future__ import annotations

import argparse

from rich.console import Console
from rich.table import Table

from ...runner import AgentSnapshotRunner
from ..helpers.jsonio import print_json


def _handler(args: argparse.Namespace, runner: AgentSnapshotRunner) -> int:
    case = runner.find_case(args.case)
    info = runner.get_snapshot_info(case)
    if args.json:
        print_json(info.model_dump(mode="json"))
        return 0
    table = Table(title=f"Snapshot: {info.name}", show_header=False)
    table.add_column("Field")
    table.add_column("Value", overflow="fold")
    table.add_row("Case module", case.path)
    table.add_row("Path", str(info.path))
    table.add_row("Exists", "yes" if info.exists else "no")
    table.add_row("Loops", str(info.loop_count))
    Console().print(table)
    return 0


def register(sub: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    inf = sub.add_parser("info", help="Show the recorded snapshot of one case")
    inf.add_argument("case", help="Case name")
    inf.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    inf.set_defaults(func=_handler)
