"""Agent snapshot testing.

Records real agent runs loop by loop and replays them as deterministic tests,
with normalization of volatile fields before comparison.
"""

from .exceptions import (
    AgentSnapshotError,
    CaseNotFoundError,
    CorruptSnapshotError,
    EventStreamMismatch,
    HookExecutionError,
    InvalidCaseModuleError,
    LLMRequestMismatch,
    LoopCountMismatchError,
    MissingArtifactError,
    NormalizationError,
    SnapshotMismatchError,
    SnapshotNotFoundError,
    ToolCallMismatch,
)
from .hooks import AgentGenerateSnapshotHook, AgentHookBase, AgentReplaySnapshotHook
from .models import (
    AgentSnapshotOptions,
    SnapshotCaseConfig,
    SnapshotGenerationResult,
    SnapshotInfo,
    SnapshotTestResult,
    TestRunConfig,
    ToolCallRecord,
    VerificationOptions,
    VerificationSettings,
)
from .normalizer import (
    DEFAULT_FIELD_RULES,
    ComparisonResult,
    CustomNormalizer,
    FieldRule,
    NormalizerConfig,
    SnapshotNormalizer,
)
from .runner import AgentSnapshotRunner
from .runtime import AgentRuntime, HookableRuntime, HookPoint, ToolCallRef
from .snapshot import AgentSnapshot
from .store import ArtifactKind, SnapshotStore

__all__ = [
    "DEFAULT_FIELD_RULES",
    "AgentGenerateSnapshotHook",
    "AgentHookBase",
    "AgentReplaySnapshotHook",
    "AgentRuntime",
    "AgentSnapshot",
    "AgentSnapshotError",
    "AgentSnapshotOptions",
    "AgentSnapshotRunner",
    "ArtifactKind",
    "CaseNotFoundError",
    "ComparisonResult",
    "CorruptSnapshotError",
    "CustomNormalizer",
    "EventStreamMismatch",
    "FieldRule",
    "HookExecutionError",
    "HookPoint",
    "HookableRuntime",
    "InvalidCaseModuleError",
    "LLMRequestMismatch",
    "LoopCountMismatchError",
    "MissingArtifactError",
    "NormalizationError",
    "NormalizerConfig",
    "SnapshotCaseConfig",
    "SnapshotGenerationResult",
    "SnapshotInfo",
    "SnapshotMismatchError",
    "SnapshotNormalizer",
    "SnapshotNotFoundError",
    "SnapshotStore",
    "SnapshotTestResult",
    "TestRunConfig",
    "ToolCallMismatch",
    "ToolCallRecord",
    "ToolCallRef",
    "VerificationOptions",
    "VerificationSettings",
]
