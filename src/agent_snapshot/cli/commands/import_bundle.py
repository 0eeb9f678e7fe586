from __future__ import annotations

import argparse

from ...exporters.bundle import restore_bundle
from ...runner import AgentSnapshotRunner


def _handler(args: argparse.Namespace, runner: AgentSnapshotRunner) -> int:
    case = runner.find_case(args.case)
    store = restore_bundle(args.bundle, case.snapshot_path)
    print(f"Restored {store.count_loops()} loop(s) into {store.root}")
    return 0


def register(sub: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    imp = sub.add_parser(
        "import", help="Unpack a bundle into a case's snapshot directory (replaces it)"
    )
    imp.add_argument("case", help="Case name")
    imp.add_argument("bundle", help="Bundle file written by 'export'")
    imp.set_defaults(func=_handler)
