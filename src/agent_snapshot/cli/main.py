from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable
from importlib import import_module
from typing import Any

from ..runner import AgentSnapshotRunner

logger = logging.getLogger(__name__)

Handler = Callable[[argparse.Namespace, AgentSnapshotRunner], int]


def _register_commands(sub: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    # Import locally to keep `agent_snapshot.runner` free of CLI imports
    from .commands import export as _cmd_export
    from .commands import generate as _cmd_generate
    from .commands import import_bundle as _cmd_import
    from .commands import info as _cmd_info
    from .commands import list_cases as _cmd_list
    from .commands import test as _cmd_test

    _cmd_generate.register(sub)
    _cmd_test.register(sub)
    _cmd_list.register(sub)
    _cmd_info.register(sub)
    _cmd_export.register(sub)
    _cmd_import.register(sub)


def build_parser(*, with_cases: bool = True) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="agent-snapshot",
        description="Record agent runs as snapshots and replay them as deterministic tests.",
    )
    if with_cases:
        p.add_argument(
            "cases",
            help="Python path to the case list: module:attribute (list of case configs)",
        )
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)
    _register_commands(sub)
    return p


def load_cases(target: str) -> list[Any]:
    """Resolve ``module:attribute`` to a list of case configs.

    The attribute may also be a zero-argument callable returning the list.
    """
    mod_name, sep, attr = target.partition(":")
    if not sep or not mod_name or not attr:
        raise ValueError(f"expected module:attribute, got {target!r}")
    obj = getattr(import_module(mod_name), attr)
    if callable(obj):
        obj = obj()
    return list(obj)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _dispatch(args: argparse.Namespace, runner: AgentSnapshotRunner) -> int:
    func: Handler | None = getattr(args, "func", None)
    if func is None:
        # Should not happen due to required=True
        return 1
    try:
        return int(func(args, runner))
    except Exception as exc:
        logger.debug("Command %s failed", args.cmd, exc_info=True)
        print(f"Command failed: {exc}", file=sys.stderr)
        return 1


def run_cli(runner: AgentSnapshotRunner, argv: list[str] | None = None) -> int:
    """Run a subcommand against an already configured runner."""
    args = build_parser(with_cases=False).parse_args(argv)
    _configure_logging(args.verbose)
    return _dispatch(args, runner)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        cases = load_cases(args.cases)
    except Exception as exc:
        print(f"Failed to load cases from {args.cases}: {exc}", file=sys.stderr)
        return 1
    return _dispatch(args, AgentSnapshotRunner(cases))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
