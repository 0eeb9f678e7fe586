from __future__ import annotations

from pathlib import Path

import pytest

from agent_snapshot import AgentSnapshot

from .fakes import ScriptedAgent


@pytest.fixture
def snapshot_dir(tmp_path: Path) -> Path:
    return tmp_path / "snapshots" / "weather"


@pytest.fixture
def agent() -> ScriptedAgent:
    return ScriptedAgent()


@pytest.fixture
def run_options() -> dict[str, str]:
    return {"prompt": "What's the weather in Paris and Lyon?"}


@pytest.fixture
def recorded(snapshot_dir: Path) -> AgentSnapshot:
    """An orchestrator bound to `snapshot_dir`; call `generate` to record."""
    return AgentSnapshot(ScriptedAgent(), snapshot_path=snapshot_dir)
