from __future__ import annotations

import argparse

from rich.console import Console
from rich.table import Table

from ...runner import AgentSnapshotRunner
from ..helpers.jsonio import print_json


def _handler(args: argparse.Namespace, runner: AgentSnapshotRunner) -> int:
    infos = [(case, runner.get_snapshot_info(case)) for case in runner.list_cases()]
    if args.json:
        print_json(
            [
                {
                    "name": case.name,
                    "path": case.path,
                    "snapshot_path": str(info.path),
                    "exists": info.exists,
                    "loops": info.loop_count,
                }
                for case, info in infos
            ]
        )
        return 0
    table = Table(title="Snapshot Cases")
    table.add_column("Name")
    table.add_column("Case Module", overflow="fold")
    table.add_column("Snapshot", overflow="fold")
    table.add_column("Loops", justify="right")
    for case, info in infos:
        table.add_row(
            case.name,
            case.path,
            str(info.path),
            str(info.loop_count) if info.exists else "-",
        )
    Console().print(table)
    return 0


def register(sub: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    lst = sub.add_parser("list", help="List configured cases and their snapshots")
    lst.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    lst.set_defaults(func=_handler)
