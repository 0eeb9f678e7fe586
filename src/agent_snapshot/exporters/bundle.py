"""Single-file snapshot bundles.

Packs every loop record of a snapshot into one zstd-compressed JSON document,
e.g. to attach a failing snapshot to a CI run. The on-disk snapshot stays the
source of truth; a bundle can be unpacked back into that layout.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from ..codec import from_bytes, to_bytes, zstd_compress, zstd_decompress
from ..store import ArtifactKind, SnapshotStore

BUNDLE_FORMAT = "agent-snapshot-bundle/1"


def serialize_snapshot(store: SnapshotStore, *, name: str | None = None) -> dict[str, Any]:
    """Serialize a snapshot's artifacts to a JSON-like dict."""
    loops: list[dict[str, Any]] = []
    for idx in store.loop_indices():
        artifacts: dict[str, Any] = {}
        for kind in ArtifactKind:
            if store.has_artifact(idx, kind):
                artifacts[kind.value] = store.read_artifact(idx, kind)
        loops.append({"index": idx, "artifacts": artifacts})
    final_events: list[Any] | None = None
    if store.has_artifact(None, ArtifactKind.EVENT_STREAM):
        final_events = store.read_event_stream(None)
    return {
        "format": BUNDLE_FORMAT,
        "name": name or store.root.name,
        "loops": loops,
        "event_stream": final_events,
    }


def write_bundle(store: SnapshotStore, dest: Path | str, *, name: str | None = None) -> Path:
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    payload = serialize_snapshot(store, name=name)
    dest.write_bytes(zstd_compress(to_bytes(payload)))
    return dest


def read_bundle(src: Path | str) -> dict[str, Any]:
    payload = from_bytes(zstd_decompress(Path(src).read_bytes()))
    if not isinstance(payload, dict) or payload.get("format") != BUNDLE_FORMAT:
        raise ValueError(f"not an agent-snapshot bundle: {src}")
    return payload


def restore_bundle(src: Path | str, root: Path | str) -> SnapshotStore:
    """Unpack a bundle into a snapshot directory, replacing what is there."""
    payload = read_bundle(src)
    store = SnapshotStore(Path(root))
    store.reset()
    for loop in payload["loops"]:
        for kind_value, value in loop["artifacts"].items():
            store.write_artifact(int(loop["index"]), ArtifactKind(kind_value), value)
    if payload.get("event_stream") is not None:
        store.write_event_stream(None, payload["event_stream"])
    return store
