from __future__ import annotations

import argparse
import asyncio

from ...models import SnapshotTestResult
from ...runner import ALL_CASES, AgentSnapshotRunner


def _handler(args: argparse.Namespace, runner: AgentSnapshotRunner) -> int:
    outcome = asyncio.run(runner.test(args.case, update_snapshots=args.update_snapshots))
    results = outcome if isinstance(outcome, dict) else {args.case: outcome}
    verb = "Updated" if args.update_snapshots else "Passed"
    for name, result in results.items():
        _report(verb, name, result)
    return 0


def _report(verb: str, name: str, result: SnapshotTestResult) -> None:
    print(
        f"{verb}: {name} ({result.meta.loop_count} loop(s), {result.meta.execution_time:.1f} ms)"
    )


def register(sub: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    tst = sub.add_parser(
        "test",
        aliases=["replay"],
        help="Replay snapshots and verify the agent against them",
        description=(
            "Replay recorded model responses and tool results, verifying requests,\n"
            "event streams and tool calls. Use -u to rewrite drifted records."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    tst.add_argument(
        "case", nargs="?", default=ALL_CASES, help=f"Case name, or '{ALL_CASES}' (default)"
    )
    tst.add_argument(
        "-u",
        "--update-snapshot",
        dest="update_snapshots",
        action="store_true",
        help="Update mismatching records instead of failing",
    )
    tst.set_defaults(func=_handler)
