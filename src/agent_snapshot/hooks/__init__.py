from .base import AgentHookBase, HookErrorCollector
from .generate import AgentGenerateSnapshotHook
from .replay import AgentReplaySnapshotHook, ReplayLLMClient

__all__ = [
    "AgentGenerateSnapshotHook",
    "AgentHookBase",
    "AgentReplaySnapshotHook",
    "HookErrorCollector",
    "ReplayLLMClient",
]
