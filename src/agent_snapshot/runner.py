from __future__ import annotations

import importlib
import importlib.util
import logging
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .exceptions import CaseNotFoundError, InvalidCaseModuleError
from .models import SnapshotCaseConfig, SnapshotInfo, SnapshotTestResult, TestRunConfig
from .runtime import AgentRuntime
from .snapshot import AgentSnapshot
from .store import SnapshotStore

logger = logging.getLogger(__name__)

ALL_CASES = "all"


@dataclass
class SnapshotCase:
    """What a case module provides: the agent and the options to run it with."""

    agent: AgentRuntime
    run_options: Any


def _import_case_module(path: str) -> Any:
    file_path = Path(path)
    if file_path.suffix == ".py":
        if not file_path.is_file():
            raise InvalidCaseModuleError(path, "file does not exist")
        module_name = f"_agent_snapshot_case_{abs(hash(str(file_path.resolve())))}"
        spec = importlib.util.spec_from_file_location(module_name, file_path)
        if spec is None or spec.loader is None:
            raise InvalidCaseModuleError(path, "cannot build an import spec")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception:
            sys.modules.pop(module_name, None)
            raise
        return module
    return importlib.import_module(path)


def _exports(source: Any) -> tuple[Any, Any] | None:
    agent = getattr(source, "agent", None)
    run_options = getattr(source, "run_options", None)
    if agent is None or run_options is None:
        return None
    return agent, run_options


def load_snapshot_case(case: SnapshotCaseConfig) -> SnapshotCase:
    """Import a case module and pull out `agent` and `run_options`.

    Named module attributes are tried first, then the attributes of a
    `default` object. A callable `agent` that is not itself a runtime is
    treated as a factory and called, so each load gets a fresh agent.
    """
    try:
        module = _import_case_module(case.path)
    except InvalidCaseModuleError:
        raise
    except Exception as exc:
        raise InvalidCaseModuleError(case.path, str(exc)) from exc

    found = _exports(module)
    if found is None:
        default = getattr(module, "default", None)
        found = _exports(default) if default is not None else None
    if found is None:
        raise InvalidCaseModuleError(
            case.path,
            "must export 'agent' and 'run_options' (module attributes or on a 'default' object)",
        )

    agent, run_options = found
    if isinstance(agent, type) or (callable(agent) and not hasattr(agent, "register_hook")):
        agent = agent()
    if not hasattr(agent, "register_hook"):
        raise InvalidCaseModuleError(case.path, f"'agent' is not a hookable runtime: {agent!r}")
    return SnapshotCase(agent=agent, run_options=run_options)


def _coerce_case(item: SnapshotCaseConfig | Mapping[str, Any]) -> SnapshotCaseConfig:
    if isinstance(item, SnapshotCaseConfig):
        return item
    return SnapshotCaseConfig.model_validate(dict(item))


class AgentSnapshotRunner:
    """Generate or test several named snapshot cases.

    Each case is loaded fresh and driven through its own `AgentSnapshot`.
    """

    def __init__(self, cases: Iterable[SnapshotCaseConfig | Mapping[str, Any]]) -> None:
        self.cases = [_coerce_case(c) for c in cases]
        logger.info("Initialized runner with %d test cases", len(self.cases))

    def get_case(self, name: str) -> SnapshotCaseConfig | None:
        for case in self.cases:
            if case.name == name:
                return case
        return None

    def list_cases(self) -> list[SnapshotCaseConfig]:
        return list(self.cases)

    def find_case(self, name: str) -> SnapshotCaseConfig:
        case = self.get_case(name)
        if case is None:
            raise CaseNotFoundError(name, [c.name for c in self.cases])
        return case

    def get_snapshot_info(self, case: SnapshotCaseConfig) -> SnapshotInfo:
        path = Path(case.snapshot_path)
        if not path.is_dir():
            return SnapshotInfo(exists=False, loop_count=0, path=path, name=case.name)
        store = SnapshotStore(path)
        return SnapshotInfo(
            exists=store.exists(), loop_count=store.count_loops(), path=path, name=case.name
        )

    async def generate(self, case_name: str | None = None) -> None:
        if not case_name or case_name == ALL_CASES:
            await self.generate_all()
            return
        await self.generate_snapshot(self.find_case(case_name))

    async def test(
        self, case_name: str | None = None, update_snapshots: bool = False
    ) -> SnapshotTestResult | dict[str, SnapshotTestResult]:
        if not case_name or case_name == ALL_CASES:
            return await self.test_all(update_snapshots)
        return await self.test_snapshot(self.find_case(case_name), update_snapshots)

    async def generate_all(self) -> None:
        logger.info("Generating snapshots for %d cases", len(self.cases))
        for case in self.cases:
            try:
                await self.generate_snapshot(case)
            except Exception as exc:
                logger.error("Failed to generate snapshot for %s: %s", case.name, exc)
                raise
        logger.info("All snapshots generated successfully")

    async def test_all(self, update_snapshots: bool = False) -> dict[str, SnapshotTestResult]:
        logger.info("Testing %d snapshots", len(self.cases))
        results: dict[str, SnapshotTestResult] = {}
        for case in self.cases:
            try:
                results[case.name] = await self.test_snapshot(case, update_snapshots)
            except Exception as exc:
                logger.error("Test failed for %s: %s", case.name, exc)
                raise
        logger.info("All tests passed")
        return results

    async def generate_snapshot(self, case: SnapshotCaseConfig) -> None:
        logger.info("Generating snapshot: %s", case.name)
        loaded = load_snapshot_case(case)
        snapshot = AgentSnapshot(
            loaded.agent, snapshot_path=case.snapshot_path, snapshot_name=case.name
        )
        await snapshot.generate(loaded.run_options)
        logger.info("Snapshot generated: %s", case.snapshot_path)

    async def test_snapshot(
        self, case: SnapshotCaseConfig, update_snapshots: bool = False
    ) -> SnapshotTestResult:
        logger.info("Testing snapshot: %s", case.name)
        if update_snapshots:
            logger.warning("Update mode: snapshots will be updated instead of verified")
        loaded = load_snapshot_case(case)
        snapshot = AgentSnapshot(
            loaded.agent,
            snapshot_path=case.snapshot_path,
            snapshot_name=case.name,
            update_snapshots=update_snapshots,
        )
        result = await snapshot.test(
            loaded.run_options, TestRunConfig(update_snapshots=update_snapshots)
        )
        logger.info("Test passed: %s", case.name)
        return result

    def cli(self, argv: list[str] | None = None) -> int:
        from .cli.main import run_cli

        return run_cli(self, argv)

