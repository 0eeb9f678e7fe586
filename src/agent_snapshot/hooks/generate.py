from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..codec import to_jsonable
from ..models import ToolCallRecord
from ..runtime import AgentRuntime, HookPoint, ToolCallRef
from ..store import SnapshotStore
from .base import AgentHookBase

logger = logging.getLogger(__name__)


@dataclass
class _PendingToolCall:
    tool_call_id: str
    name: str
    args: Any
    started: float


def describe_error(error: Any) -> Any:
    if isinstance(error, BaseException):
        return f"{type(error).__name__}: {error}"
    return to_jsonable(error)


def chunks_of(payload: Any) -> list[Any]:
    if isinstance(payload, dict):
        return list(payload.get("chunks") or [])
    return list(payload or [])


class AgentGenerateSnapshotHook(AgentHookBase):
    """Records a real agent run into a loop-indexed snapshot.

    Every artifact is written as a whole file through the store; tool calls
    are accumulated per loop and the loop's file rewritten on each outcome.
    """

    def __init__(
        self,
        agent: AgentRuntime,
        *,
        snapshot_path: Path | str,
        snapshot_name: str,
        store: SnapshotStore | None = None,
    ) -> None:
        super().__init__(agent, snapshot_path=snapshot_path, snapshot_name=snapshot_name)
        self.store = store if store is not None else SnapshotStore(self.snapshot_path)
        self._loop = 0
        self._pending: dict[str, _PendingToolCall] = {}
        self._tool_calls: dict[int, list[ToolCallRecord]] = {}

    async def on_each_agent_loop_start(self, session_id: str) -> None:
        self._loop = self.current_loop or self._loop + 1
        self.store.ensure_loop_dir(self._loop)
        logger.debug("Recording loop %d of %s", self._loop, self.snapshot_name)
        await self.call_original(HookPoint.LOOP_START, session_id)

    async def on_llm_request(self, session_id: str, payload: Any) -> None:
        self.store.write_llm_request(self._loop, payload)
        await self.call_original(HookPoint.LLM_REQUEST, session_id, payload)

    async def on_llm_response(self, session_id: str, payload: Any) -> None:
        self.store.write_llm_response(self._loop, payload)
        await self.call_original(HookPoint.LLM_RESPONSE, session_id, payload)

    async def on_llm_streaming_response(self, session_id: str, payload: Any) -> None:
        chunks = chunks_of(payload)
        self.store.write_streaming_chunks(self._loop, chunks)
        logger.debug("Wrote %d streaming chunks for loop %d", len(chunks), self._loop)
        await self.call_original(HookPoint.LLM_STREAMING_RESPONSE, session_id, payload)

    async def on_agent_loop_end(self, session_id: str) -> None:
        events = list(self.agent.get_events())
        self.store.write_event_stream(self._loop, events)
        self.store.write_event_stream(None, events)
        await self.call_original(HookPoint.LOOP_END, session_id)

    async def on_before_tool_call(self, session_id: str, tool_call: ToolCallRef, args: Any) -> Any:
        args = await self.pass_through(HookPoint.BEFORE_TOOL_CALL, session_id, tool_call, args)
        self._pending[tool_call.tool_call_id] = _PendingToolCall(
            tool_call_id=tool_call.tool_call_id,
            name=tool_call.name,
            args=to_jsonable(args),
            started=time.perf_counter(),
        )
        return args

    async def on_after_tool_call(self, session_id: str, tool_call: ToolCallRef, result: Any) -> Any:
        result = await self.pass_through(HookPoint.AFTER_TOOL_CALL, session_id, tool_call, result)
        self._finish(tool_call, result=to_jsonable(result))
        return result

    async def on_tool_call_error(self, session_id: str, tool_call: ToolCallRef, error: Any) -> Any:
        error = await self.pass_through(HookPoint.TOOL_CALL_ERROR, session_id, tool_call, error)
        self._finish(tool_call, error=describe_error(error), has_error=True)
        return error

    async def on_process_tool_calls(
        self, session_id: str, tool_calls: list[Any]
    ) -> list[Any] | None:
        # Let the runtime dispatch the real tools
        result: list[Any] | None = await self.call_original(
            HookPoint.PROCESS_TOOL_CALLS, session_id, tool_calls
        )
        return result

    def _finish(self, tool_call: ToolCallRef, **outcome: Any) -> None:
        pending = self._pending.pop(tool_call.tool_call_id, None)
        elapsed = None
        args = None
        if pending is not None:
            elapsed = round((time.perf_counter() - pending.started) * 1000.0, 3)
            args = pending.args
        record = ToolCallRecord(
            tool_call_id=tool_call.tool_call_id,
            name=tool_call.name,
            args=args,
            execution_time=elapsed,
            **outcome,
        )
        records = self._tool_calls.setdefault(self._loop, [])
        records.append(record)
        self.store.write_tool_calls(self._loop, records)
