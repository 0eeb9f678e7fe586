"""Normalization and comparison of recorded agent payloads.

Volatile values (ids, timestamps, latencies, inline images) are replaced with
fixed sentinel tokens before two payloads are compared, so a replayed run can
be checked against its recording without tripping over values that change on
every execution.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from pydantic import BaseModel

from .codec import pretty, stable_stringify
from .exceptions import NormalizationError

FieldPattern: TypeAlias = "str | re.Pattern[str]"

CIRCULAR_MARKER = "[Circular]"

# orjson encodes ints in this range only
_INT_MIN = -(2**63)
_INT_MAX = 2**64 - 1


@dataclass(frozen=True)
class FieldRule:
    """Replace any member whose key or path matches `pattern` with `replacement`.

    `deep=False` restricts the rule to top-level members.
    """

    pattern: FieldPattern
    replacement: Any = None
    deep: bool = True


@dataclass(frozen=True)
class CustomNormalizer:
    """Compute the replacement from the raw value and its path."""

    pattern: FieldPattern
    normalizer: Callable[[Any, str], Any]


def _i(expr: str) -> re.Pattern[str]:
    return re.compile(expr, re.IGNORECASE)


# Specific identifiers come before the generic `id` suffix rule so that e.g.
# `sessionId` becomes <<SESSION_ID>> rather than <<ID>>.
DEFAULT_FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule(_i(r"tool_?call_?id"), "<<TOOL_CALL_ID>>"),
    FieldRule(_i(r"session_?id"), "<<SESSION_ID>>"),
    FieldRule(_i(r"message_?id"), "<<MESSAGE_ID>>"),
    FieldRule(_i(r"id$"), "<<ID>>"),
    FieldRule(_i(r"timestamp"), "<<TIMESTAMP>>"),
    FieldRule(_i(r"created"), "<<TIMESTAMP>>"),
    FieldRule(_i(r"start_?time"), "<<TIMESTAMP>>"),
    FieldRule(_i(r"elapsed_?ms"), "<<ELAPSED_MS>>"),
    FieldRule(_i(r"ttft_?ms|first_?token"), "<<TTFT_MS>>"),
    FieldRule(_i(r"ttlt_?ms|total_?latency"), "<<TTLT_MS>>"),
    FieldRule(_i(r"execution_?time"), "<<EXECUTION_TIME>>"),
    FieldRule(_i(r"image_url"), "<<IMAGE_URL>>"),
)


def _coerce_rule(rule: FieldRule | tuple[Any, ...]) -> FieldRule:
    if isinstance(rule, FieldRule):
        return rule
    return FieldRule(*rule)


def _coerce_custom(item: CustomNormalizer | tuple[Any, ...]) -> CustomNormalizer:
    if isinstance(item, CustomNormalizer):
        return item
    return CustomNormalizer(*item)


@dataclass
class NormalizerConfig:
    """Caller-side normalization settings.

    Precedence, evaluated per member:

    1. `fields_to_ignore`: matching members are dropped entirely.
    2. `custom_normalizers`: always evaluated before any rule. This is the
       way to override a built-in rule.
    3. built-in rules, then `fields_to_normalize` in the order given. Caller
       rules come after the built-ins, so a built-in that also matches wins.

    A `str` pattern must equal the member key or its full path
    (``messages[0].content``); a compiled regex is searched in either.
    Tuples are accepted in place of `FieldRule` / `CustomNormalizer`.
    """

    fields_to_normalize: list[FieldRule] = field(default_factory=list)
    fields_to_ignore: list[FieldPattern] = field(default_factory=list)
    custom_normalizers: list[CustomNormalizer] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.fields_to_normalize = [_coerce_rule(r) for r in self.fields_to_normalize]
        self.custom_normalizers = [_coerce_custom(c) for c in self.custom_normalizers]
        self.fields_to_ignore = list(self.fields_to_ignore)

    def merged_with(self, other: NormalizerConfig | None) -> NormalizerConfig:
        if other is None:
            return NormalizerConfig(
                fields_to_normalize=list(self.fields_to_normalize),
                fields_to_ignore=list(self.fields_to_ignore),
                custom_normalizers=list(self.custom_normalizers),
            )
        return NormalizerConfig(
            fields_to_normalize=[*self.fields_to_normalize, *other.fields_to_normalize],
            fields_to_ignore=[*self.fields_to_ignore, *other.fields_to_ignore],
            custom_normalizers=[*self.custom_normalizers, *other.custom_normalizers],
        )


@dataclass(frozen=True)
class ComparisonResult:
    equal: bool
    diff: str | None = None


_UNMATCHED = object()


def _matches(pattern: FieldPattern, key: str, path: str) -> bool:
    if isinstance(pattern, str):
        return key == pattern or path == pattern
    return bool(pattern.search(key) or pattern.search(path))


def _members(obj: Any) -> Iterable[tuple[Any, Any]] | None:
    if isinstance(obj, Mapping):
        return obj.items()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return [(f.name, getattr(obj, f.name)) for f in dataclasses.fields(obj)]
    if isinstance(obj, BaseModel):
        # pydantic v2 models iterate as (field, value) pairs without copying
        return list(iter(obj))
    return None


def _items(obj: Any) -> list[Any] | None:
    if isinstance(obj, (list, tuple)):
        return list(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=repr)
    return None


class SnapshotNormalizer:
    """Normalizes snapshots for consistent comparison.

    Stateless between calls: the containers visited on the current path are
    passed down the recursion, so a shared instance is safe to reuse.
    """

    def __init__(self, config: NormalizerConfig | None = None) -> None:
        base = NormalizerConfig(fields_to_normalize=list(DEFAULT_FIELD_RULES))
        self.config = base.merged_with(config)

    def merge(self, config: NormalizerConfig | None) -> SnapshotNormalizer:
        """Return a new normalizer with `config` layered over this one."""
        out = SnapshotNormalizer.__new__(SnapshotNormalizer)
        out.config = self.config.merged_with(config)
        return out

    def normalize(self, obj: Any, path: str = "") -> Any:
        return self._normalize(obj, path, frozenset())

    def compare(self, expected: Any, actual: Any) -> ComparisonResult:
        normalized_expected = self.normalize(expected)
        normalized_actual = self.normalize(actual)

        try:
            if stable_stringify(normalized_expected) == stable_stringify(normalized_actual):
                return ComparisonResult(equal=True, diff=None)
            diff = generate_simple_diff(pretty(normalized_expected), pretty(normalized_actual))
        except TypeError as exc:
            return ComparisonResult(equal=False, diff=f"Payloads could not be serialized: {exc}")
        return ComparisonResult(equal=False, diff=diff)

    def _normalize(self, obj: Any, path: str, seen: frozenset[int]) -> Any:
        if isinstance(obj, int) and not isinstance(obj, bool):
            if _INT_MIN <= obj <= _INT_MAX:
                return obj
            return str(obj)
        if obj is None or isinstance(obj, (str, bytes, int, float, bool)):
            return obj

        members = _members(obj)
        items = _items(obj) if members is None else None
        if members is None and items is None:
            return obj

        # Only ancestors count: a container shared by two siblings is not a cycle
        # and is normalized in full under both keys.
        if id(obj) in seen:
            return CIRCULAR_MARKER
        seen = seen | {id(obj)}

        if items is not None:
            return [self._normalize(item, f"{path}[{i}]", seen) for i, item in enumerate(items)]

        result: dict[str, Any] = {}
        for raw_key, value in members or ():
            key = str(raw_key)
            current_path = f"{path}.{key}" if path else key

            if self._should_ignore(key, current_path):
                continue

            replaced = self._normalize_field(key, value, current_path)
            if replaced is _UNMATCHED:
                result[key] = self._normalize(value, current_path, seen)
            else:
                result[key] = replaced
        return result

    def _should_ignore(self, key: str, path: str) -> bool:
        return any(_matches(p, key, path) for p in self.config.fields_to_ignore)

    def _normalize_field(self, key: str, value: Any, path: str) -> Any:
        for custom in self.config.custom_normalizers:
            if _matches(custom.pattern, key, path):
                try:
                    return custom.normalizer(value, path)
                except Exception as exc:
                    raise NormalizationError(path, exc) from exc

        top_level = "." not in path and "[" not in path
        for rule in self.config.fields_to_normalize:
            if not rule.deep and not top_level:
                continue
            if _matches(rule.pattern, key, path):
                return rule.replacement
        return _UNMATCHED


def generate_simple_diff(expected: str, actual: str) -> str:
    """Line-by-line diff of two texts; only for human diagnostics."""
    expected_lines = expected.split("\n")
    actual_lines = actual.split("\n")
    max_lines = max(len(expected_lines), len(actual_lines))

    diff_lines = ["Expected vs Actual:", ""]
    for i in range(max_lines):
        expected_line = expected_lines[i] if i < len(expected_lines) else ""
        actual_line = actual_lines[i] if i < len(actual_lines) else ""
        if expected_line != actual_line:
            if expected_line:
                diff_lines.append(f"- {expected_line}")
            if actual_line:
                diff_lines.append(f"+ {actual_line}")
    return "\n".join(diff_lines)
