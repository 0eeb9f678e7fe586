from __future__ import annotations

from pathlib import Path

import pytest

from agent_snapshot import AgentSnapshot, ArtifactKind
from agent_snapshot.codec import to_bytes, zstd_compress
from agent_snapshot.exporters import read_bundle, restore_bundle, serialize_snapshot, write_bundle
from agent_snapshot.store import SnapshotStore

from .fakes import ScriptedAgent


@pytest.mark.asyncio
async def test_bundle_restores_an_equivalent_snapshot(recorded, tmp_path: Path, run_options):
    await recorded.generate(run_options)

    bundle = write_bundle(recorded.store, tmp_path / "weather.zst")
    payload = read_bundle(bundle)
    assert payload["name"] == "weather"
    assert [loop["index"] for loop in payload["loops"]] == [1, 2, 3]
    assert "tool-calls" not in payload["loops"][2]["artifacts"]

    restored = restore_bundle(bundle, tmp_path / "restored")
    assert restored.loop_indices() == [1, 2, 3]
    assert restored.read_tool_calls(1) == recorded.store.read_tool_calls(1)
    assert restored.read_event_stream() == recorded.store.read_event_stream()
    assert serialize_snapshot(restored, name="weather") == serialize_snapshot(recorded.store)

    result = await AgentSnapshot(ScriptedAgent(), snapshot_path=tmp_path / "restored").test(
        run_options
    )
    assert result.meta.loop_count == 3


def test_read_bundle_rejects_foreign_payloads(tmp_path: Path):
    path = tmp_path / "other.zst"
    path.write_bytes(zstd_compress(to_bytes({"format": "something-else"})))
    with pytest.raises(ValueError):
        read_bundle(path)


def test_serialize_empty_snapshot(tmp_path: Path):
    store = SnapshotStore(tmp_path / "empty")
    assert serialize_snapshot(store) == {
        "format": "agent-snapshot-bundle/1",
        "name": "empty",
        "loops": [],
        "event_stream": None,
    }
    assert not store.has_artifact(None, ArtifactKind.EVENT_STREAM)
