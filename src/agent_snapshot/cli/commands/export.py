from __future__ import annotations

import argparse
from pathlib import Path

from ...exceptions import SnapshotNotFoundError
from ...exporters.bundle import write_bundle
from ...runner import AgentSnapshotRunner
from ...store import SnapshotStore


def _handler(args: argparse.Namespace, runner: AgentSnapshotRunner) -> int:
    case = runner.find_case(args.case)
    if not runner.get_snapshot_info(case).exists:
        raise SnapshotNotFoundError(case.snapshot_path)
    out = Path(args.out) if args.out else Path(f"{case.name}.snapshot.zst")
    dest = write_bundle(SnapshotStore(case.snapshot_path), out, name=case.name)
    print("Exported bundle:", dest)
    return 0


def register(sub: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    exp = sub.add_parser("export", help="Pack a case's snapshot into one zstd bundle")
    exp.add_argument("case", help="Case name")
    exp.add_argument(
        "--out", default=None, help="Output file (default: <case>.snapshot.zst in the cwd)"
    )
    exp.set_defaults(func=_handler)
