from __future__ import annotations

import argparse
import asyncio

from ...runner import ALL_CASES, AgentSnapshotRunner


def _handler(args: argparse.Namespace, runner: AgentSnapshotRunner) -> int:
    asyncio.run(runner.generate(args.case))
    if args.case == ALL_CASES:
        print(f"Generated {len(runner.cases)} snapshot(s)")
    else:
        print("Generated snapshot:", args.case)
    return 0


def register(sub: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    gen = sub.add_parser(
        "generate",
        help="Record snapshots by running cases against the real model",
        description=(
            "Run each case's agent for real and record every loop.\n"
            "Existing loop records for the case are replaced."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    gen.add_argument(
        "case", nargs="?", default=ALL_CASES, help=f"Case name, or '{ALL_CASES}' (default)"
    )
    gen.set_defaults(func=_handler)
