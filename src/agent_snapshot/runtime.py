"""Integration surface between the snapshot engine and an agent runtime.

The engine never reaches into runtime internals. A runtime exposes one
listener slot per `HookPoint`, reports its events and loop iteration, and
accepts a substitute model client for replay. `HookableRuntime` is a
reference base class that implements the slot bookkeeping.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

HookCallback = Callable[..., Any]
Disposer = Callable[[], None]


class HookPoint(str, Enum):
    LLM_REQUEST = "on_llm_request"
    LLM_RESPONSE = "on_llm_response"
    LLM_STREAMING_RESPONSE = "on_llm_streaming_response"
    LOOP_START = "on_each_agent_loop_start"
    LOOP_END = "on_agent_loop_end"
    BEFORE_TOOL_CALL = "on_before_tool_call"
    AFTER_TOOL_CALL = "on_after_tool_call"
    TOOL_CALL_ERROR = "on_tool_call_error"
    PROCESS_TOOL_CALLS = "on_process_tool_calls"


@dataclass(frozen=True)
class ToolCallRef:
    tool_call_id: str
    name: str


class LLMClient(Protocol):
    async def create(self, request: dict[str, Any]) -> Any:
        """Return a completion, or an async iterator of chunks when streaming."""


@runtime_checkable
class AgentRuntime(Protocol):
    """What the snapshot engine needs from an agent runtime.

    Callback signatures per hook point (any may be sync or async):

    - LLM_REQUEST(session_id, payload) / LLM_RESPONSE(session_id, payload)
    - LLM_STREAMING_RESPONSE(session_id, payload) with ``payload["chunks"]``
    - LOOP_START(session_id) / LOOP_END(session_id)
    - BEFORE_TOOL_CALL(session_id, tool_call, args) -> args | None
    - AFTER_TOOL_CALL(session_id, tool_call, result) -> result | None
    - TOOL_CALL_ERROR(session_id, tool_call, error) -> error | None
    - PROCESS_TOOL_CALLS(session_id, tool_calls) -> list[results] | None;
      a list replaces the runtime's own tool dispatch.

    During replay the PROCESS_TOOL_CALLS hook always returns one dict per live
    call, in call order::

        {"tool_call_id": str, "tool_name": str, "content": Any,
         "is_error": bool, "elapsed_ms": float | None}

    ``content`` holds the recorded result, or the recorded error when
    ``is_error`` is true. A live call with no recorded outcome gets an
    ``is_error`` entry whose content describes the missing recording.
    """

    def get_hook(self, point: HookPoint) -> HookCallback | None: ...

    def register_hook(self, point: HookPoint, callback: HookCallback) -> Disposer: ...

    def get_events(self) -> list[Any]: ...

    def get_current_loop_iteration(self) -> int: ...

    def set_custom_llm_client(self, client: LLMClient) -> None: ...

    def set_replay_mode(self) -> None: ...

    async def run(self, run_options: Any) -> Any: ...


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class HookableRuntime:
    """Listener slots for every `HookPoint`.

    Registering a callback replaces the current one; the returned disposer
    puts the previous callback back.
    """

    def __init__(self) -> None:
        self._hooks: dict[HookPoint, HookCallback] = {}
        self.is_replay = False

    def get_hook(self, point: HookPoint) -> HookCallback | None:
        return self._hooks.get(point)

    def register_hook(self, point: HookPoint, callback: HookCallback) -> Disposer:
        previous = self._hooks.get(point)
        self._hooks[point] = callback

        def _dispose() -> None:
            if previous is None:
                self._hooks.pop(point, None)
            else:
                self._hooks[point] = previous

        return _dispose

    async def emit(self, point: HookPoint, *args: Any) -> Any:
        """Fire the callback registered for `point`, awaiting it if needed."""
        callback = self._hooks.get(point)
        if callback is None:
            return None
        return await maybe_await(callback(*args))

    def set_replay_mode(self) -> None:
        self.is_replay = True

