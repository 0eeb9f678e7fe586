from __future__ import annotations

from pathlib import Path


class AgentSnapshotError(Exception):
    """Base class for snapshot record/replay errors."""


class HookExecutionError(AgentSnapshotError):
    """An instrumented callback failed while the agent was running.

    Captured by the hook and surfaced only after the run completes.
    """

    def __init__(self, hook: str, cause: BaseException) -> None:
        self.hook = hook
        self.cause = cause
        super().__init__(f"Hook {hook} failed: {cause}")


class SnapshotNotFoundError(AgentSnapshotError):
    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"Snapshot not found at {path}. Generate it first using .generate()")


class CorruptSnapshotError(AgentSnapshotError):
    def __init__(self, path: Path, indices: list[int]) -> None:
        self.path = path
        self.indices = indices
        super().__init__(
            f"Snapshot at {path} has non-contiguous loop directories: {indices}; "
            "regenerate it with .generate()"
        )


class LoopCountMismatchError(AgentSnapshotError):
    def __init__(self, *, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Loop count mismatch: executed {actual} but snapshot has {expected} loops"
        )


class NormalizationError(AgentSnapshotError):
    def __init__(self, path: str, cause: BaseException) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Custom normalizer failed at {path or '<root>'}: {cause}")


class MissingArtifactError(AgentSnapshotError):
    def __init__(self, *, loop: int, artifact: str, path: Path | None = None) -> None:
        self.loop = loop
        self.artifact = artifact
        self.path = path
        where = f" ({path})" if path is not None else ""
        super().__init__(f"Missing recorded {artifact} for loop {loop}{where}")


class SnapshotMismatchError(AgentSnapshotError):
    """Live replay behavior differs from the recording."""

    category = "artifact"

    def __init__(self, loop: int | None, diff: str | None) -> None:
        self.loop = loop
        self.diff = diff
        where = "final state" if loop is None else f"loop {loop}"
        msg = f"{self.category} mismatch at {where}"
        if diff:
            msg = f"{msg}:\n{diff}"
        super().__init__(msg)


class LLMRequestMismatch(SnapshotMismatchError):
    category = "LLM request"


class EventStreamMismatch(SnapshotMismatchError):
    category = "Event stream"


class ToolCallMismatch(SnapshotMismatchError):
    category = "Tool call"


class InvalidCaseModuleError(AgentSnapshotError):
    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load case module {path!r}: {reason}")


class CaseNotFoundError(AgentSnapshotError):
    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        super().__init__(f'Case "{name}" not found. Available cases: {", ".join(available)}')
