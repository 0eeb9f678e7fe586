from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from typing import Any

import orjson
import zstandard as zstd

_CANONICAL = orjson.OPT_SORT_KEYS


def _default(obj: Any) -> Any:
    # Pydantic models, dataclasses, exceptions and sets show up in agent payloads
    dump = getattr(obj, "model_dump", None)
    if callable(dump):
        return dump(mode="json")
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    if isinstance(obj, BaseException):
        return {"name": type(obj).__name__, "message": str(obj)}
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=repr)
    if isinstance(obj, bytes):
        return obj.decode("utf-8", errors="replace")
    return repr(obj)


def to_bytes(obj: Any) -> bytes:
    """Serialize a Python object to canonical JSON bytes using orjson.

    - Sorts keys so equal structures always encode to identical bytes.
    - Objects orjson does not know are reduced via `_default`.
    """

    return orjson.dumps(obj, default=_default, option=_CANONICAL)


def from_bytes(data: bytes) -> Any:
    """Deserialize JSON bytes to Python object using orjson."""
    return orjson.loads(data)


def to_jsonable(obj: Any) -> Any:
    """Reduce a live payload to what it reads back as once recorded.

    Values orjson cannot encode (e.g. self-referential structures) are
    returned unchanged for the normalizer to handle.
    """
    try:
        return from_bytes(to_bytes(obj))
    except TypeError:
        return obj


def stable_stringify(obj: Any) -> str:
    """Key-order-independent text form used for equality checks."""
    return to_bytes(obj).decode("utf-8")


def pretty(obj: Any) -> str:
    """Indented, key-sorted JSON text for human-readable diffs."""
    return orjson.dumps(obj, default=_default, option=_CANONICAL | orjson.OPT_INDENT_2).decode(
        "utf-8"
    )


def dump_jsonl(values: Iterable[Any]) -> bytes:
    """Encode values as JSON Lines, one canonical value per line."""
    lines = [to_bytes(v) for v in values]
    if not lines:
        return b""
    return b"\n".join(lines) + b"\n"


def load_jsonl(data: bytes) -> list[Any]:
    """Decode JSON Lines; blank lines are skipped."""
    return [from_bytes(line) for line in data.splitlines() if line.strip()]


_ZSTD_LEVEL_DEFAULT = 8


def zstd_compress(data: bytes, *, level: int = _ZSTD_LEVEL_DEFAULT) -> bytes:
    """Compress bytes with Zstandard (one-shot)."""

    compressor = zstd.ZstdCompressor(level=level)
    return compressor.compress(data)


def zstd_decompress(data: bytes) -> bytes:
    """Decompress Zstandard-compressed bytes (one-shot)."""
    decompressor = zstd.ZstdDecompressor()
    return decompressor.decompress(data)
