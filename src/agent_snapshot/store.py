from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .codec import dump_jsonl, load_jsonl, to_jsonable
from .exceptions import MissingArtifactError
from .models import ToolCallRecord
from .normalizer import ComparisonResult, NormalizerConfig, SnapshotNormalizer

logger = logging.getLogger(__name__)

LOOP_DIR_RE = re.compile(r"^loop-(\d+)$")
ACTUAL_SUFFIX = ".actual.jsonl"


class ArtifactKind(str, Enum):
    LLM_REQUEST = "llm-request"
    LLM_RESPONSE = "llm-response"
    LLM_RESPONSE_CHUNKS = "llm-response-chunks"
    EVENT_STREAM = "event-stream"
    TOOL_CALLS = "tool-calls"

    @property
    def filename(self) -> str:
        return f"{self.value}.jsonl"

    @property
    def actual_filename(self) -> str:
        return f"{self.value}{ACTUAL_SUFFIX}"

    @property
    def is_sequence(self) -> bool:
        # Sequences are stored one element per line; the rest as a single line
        return self in (
            ArtifactKind.LLM_RESPONSE_CHUNKS,
            ArtifactKind.EVENT_STREAM,
            ArtifactKind.TOOL_CALLS,
        )


@dataclass
class SnapshotStore:
    """Flat, loop-indexed snapshot layout on disk.

    - `root`: snapshot directory (created if missing).
    - `normalizer_config`: extra normalization used by `verify_artifact`.

    Layout::

        <root>/event-stream.jsonl
        <root>/loop-<n>/{llm-request,llm-response,llm-response-chunks,
                         event-stream,tool-calls}.jsonl
    """

    root: Path
    normalizer_config: NormalizerConfig | None = None
    normalizer: SnapshotNormalizer = field(init=False)

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.normalizer = SnapshotNormalizer(self.normalizer_config)

    def update_normalizer_config(self, config: NormalizerConfig | None) -> None:
        self.normalizer_config = config
        self.normalizer = SnapshotNormalizer(config)

    # --- layout ---

    def loop_indices(self) -> list[int]:
        """Indices of `loop-<n>` directories, sorted numerically."""
        if not self.root.is_dir():
            return []
        indices: list[int] = []
        for child in self.root.iterdir():
            m = LOOP_DIR_RE.match(child.name)
            if m and child.is_dir():
                indices.append(int(m.group(1)))
        return sorted(indices)

    def count_loops(self) -> int:
        return len(self.loop_indices())

    def exists(self) -> bool:
        return self.root.is_dir() and self.count_loops() > 0

    def is_contiguous(self) -> bool:
        indices = self.loop_indices()
        return indices == list(range(1, len(indices) + 1))

    def loop_dir(self, loop: int) -> Path:
        return self.root / f"loop-{loop}"

    def ensure_loop_dir(self, loop: int) -> Path:
        if loop < 1:
            raise ValueError(f"loop index must start at 1, got {loop}")
        path = self.loop_dir(loop)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def artifact_path(self, loop: int | None, kind: ArtifactKind) -> Path:
        base = self.root if loop is None else self.loop_dir(loop)
        return base / kind.filename

    def actual_path(self, loop: int | None, kind: ArtifactKind) -> Path:
        base = self.root if loop is None else self.loop_dir(loop)
        return base / kind.actual_filename

    def has_artifact(self, loop: int | None, kind: ArtifactKind) -> bool:
        return self.artifact_path(loop, kind).is_file()

    def reset(self) -> None:
        """Drop every loop record and the final event stream."""
        for idx in self.loop_indices():
            shutil.rmtree(self.loop_dir(idx))
        for kind in ArtifactKind:
            self.artifact_path(None, kind).unlink(missing_ok=True)
        self.cleanup_actual_files()

    # --- raw read/write ---

    def write_artifact(self, loop: int | None, kind: ArtifactKind, value: Any) -> Path:
        if loop is not None:
            self.ensure_loop_dir(loop)
        path = self.artifact_path(loop, kind)
        values = list(value) if kind.is_sequence else [value]
        _write_atomic(path, dump_jsonl(values))
        logger.debug("Wrote %s (%d line(s))", path, len(values))
        return path

    def read_artifact(self, loop: int | None, kind: ArtifactKind) -> Any:
        path = self.artifact_path(loop, kind)
        if not path.is_file():
            raise MissingArtifactError(loop=loop or 0, artifact=kind.value, path=path)
        values = load_jsonl(path.read_bytes())
        if kind.is_sequence:
            return values
        return values[0] if values else None

    def write_actual(self, loop: int | None, kind: ArtifactKind, value: Any) -> Path:
        path = self.actual_path(loop, kind)
        path.parent.mkdir(parents=True, exist_ok=True)
        values = list(value) if kind.is_sequence else [value]
        _write_atomic(path, dump_jsonl(values))
        return path

    def cleanup_actual_files(self) -> int:
        """Delete scratch `*.actual.jsonl` files; recorded artifacts are untouched."""
        removed = 0
        for path in self.root.rglob(f"*{ACTUAL_SUFFIX}"):
            path.unlink(missing_ok=True)
            removed += 1
        if removed:
            logger.debug("Removed %d actual file(s) under %s", removed, self.root)
        return removed

    # --- typed helpers ---

    def write_llm_request(self, loop: int, payload: Any) -> Path:
        return self.write_artifact(loop, ArtifactKind.LLM_REQUEST, payload)

    def read_llm_request(self, loop: int) -> Any:
        return self.read_artifact(loop, ArtifactKind.LLM_REQUEST)

    def write_llm_response(self, loop: int, payload: Any) -> Path:
        return self.write_artifact(loop, ArtifactKind.LLM_RESPONSE, payload)

    def read_llm_response(self, loop: int) -> Any:
        return self.read_artifact(loop, ArtifactKind.LLM_RESPONSE)

    def write_streaming_chunks(self, loop: int, chunks: list[Any]) -> Path | None:
        if not chunks:
            return None
        return self.write_artifact(loop, ArtifactKind.LLM_RESPONSE_CHUNKS, chunks)

    def read_streaming_chunks(self, loop: int) -> list[Any]:
        return list(self.read_artifact(loop, ArtifactKind.LLM_RESPONSE_CHUNKS))

    def write_tool_calls(self, loop: int, records: list[ToolCallRecord]) -> Path:
        return self.write_artifact(
            loop, ArtifactKind.TOOL_CALLS, [r.model_dump(mode="json") for r in records]
        )

    def read_tool_calls(self, loop: int) -> list[ToolCallRecord]:
        if not self.has_artifact(loop, ArtifactKind.TOOL_CALLS):
            return []
        rows = self.read_artifact(loop, ArtifactKind.TOOL_CALLS)
        return [ToolCallRecord.model_validate(r) for r in rows]

    def write_event_stream(self, loop: int | None, events: list[Any]) -> Path:
        return self.write_artifact(loop, ArtifactKind.EVENT_STREAM, events)

    def read_event_stream(self, loop: int | None = None) -> list[Any]:
        return list(self.read_artifact(loop, ArtifactKind.EVENT_STREAM))

    # --- verification ---

    def verify_artifact(
        self,
        loop: int | None,
        kind: ArtifactKind,
        actual: Any,
        *,
        expected: Any | None = None,
        update: bool = False,
    ) -> ComparisonResult:
        """Compare a live value with the recording.

        On mismatch the recording is overwritten in update mode; otherwise the
        live value is kept next to it as `<artifact>.actual.jsonl`.
        """

        if expected is None:
            expected = self.read_artifact(loop, kind)
        live = to_jsonable(actual)
        result = self.normalizer.compare(expected, live)
        if result.equal:
            return result
        if update:
            self.write_artifact(loop, kind, live)
            logger.warning("Updated %s snapshot for loop %s", kind.value, loop)
        else:
            path = self.write_actual(loop, kind, live)
            logger.debug("Wrote mismatching %s to %s", kind.value, path)
        return result


def _write_atomic(path: Path, data: bytes) -> None:
    # Write to a temp file first, then move it into place
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_bytes(data)
    tmp_path.replace(path)
