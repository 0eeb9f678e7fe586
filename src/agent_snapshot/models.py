from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .normalizer import NormalizerConfig


class ToolCallRecord(BaseModel):
    """One tool invocation captured during a loop.

    Exactly one of `result` / `error` is set; `has_error` disambiguates a
    successful call that legitimately returned ``None``.
    """

    tool_call_id: str
    name: str
    args: Any = None
    result: Any = None
    error: Any = None
    has_error: bool = False
    execution_time: float | None = None

    @model_validator(mode="after")
    def _one_outcome(self) -> ToolCallRecord:
        if self.has_error and self.result is not None:
            raise ValueError("tool call record cannot carry both a result and an error")
        if not self.has_error and self.error is not None:
            raise ValueError("tool call record has an error but has_error is False")
        return self

    @property
    def outcome(self) -> Any:
        return self.error if self.has_error else self.result


class VerificationSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    verify_llm_requests: bool = True
    verify_event_streams: bool = True
    verify_tool_calls: bool = True


class VerificationOptions(BaseModel):
    """Partial verification overrides; `None` defers to the next level."""

    verify_llm_requests: bool | None = None
    verify_event_streams: bool | None = None
    verify_tool_calls: bool | None = None


def resolve_verification(
    per_call: VerificationOptions | None, per_snapshot: VerificationOptions | None
) -> VerificationSettings:
    """Per-call override > per-orchestrator option > built-in default."""
    resolved: dict[str, bool] = {}
    for name in VerificationSettings.model_fields:
        value: bool | None = None
        for source in (per_call, per_snapshot):
            if source is not None and getattr(source, name) is not None:
                value = getattr(source, name)
                break
        resolved[name] = True if value is None else value
    return VerificationSettings(**resolved)


@dataclass
class AgentSnapshotOptions:
    snapshot_path: Path | str
    snapshot_name: str | None = None
    update_snapshots: bool = False
    normalizer_config: NormalizerConfig | None = None
    verification: VerificationOptions | None = None


@dataclass
class TestRunConfig:
    """Per-call settings for `AgentSnapshot.test`.

    `timeout` (seconds) is advisory; aborting the run is left to the runtime.
    """

    __test__ = False  # not a pytest test class

    update_snapshots: bool | None = None
    timeout: float | None = None
    normalizer_config: NormalizerConfig | None = None
    verification: VerificationOptions | None = None


class GenerationMeta(BaseModel):
    snapshot_name: str
    execution_time: float


class TestMeta(BaseModel):
    __test__ = False

    snapshot_name: str
    execution_time: float
    loop_count: int


class SnapshotGenerationResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    snapshot_path: Path
    loop_count: int
    response: Any = None
    events: list[Any] = Field(default_factory=list)
    meta: GenerationMeta


class SnapshotTestResult(BaseModel):
    __test__ = False
    model_config = ConfigDict(arbitrary_types_allowed=True)

    response: Any = None
    events: list[Any] = Field(default_factory=list)
    meta: TestMeta


class SnapshotInfo(BaseModel):
    exists: bool
    loop_count: int
    path: Path
    name: str


class SnapshotCaseConfig(BaseModel):
    """A named batch case: where its module lives and where its snapshot goes."""

    name: str
    path: str
    snapshot_path: Path
