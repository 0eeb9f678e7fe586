from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import orjson

from ..codec import to_jsonable
from ..exceptions import (
    AgentSnapshotError,
    EventStreamMismatch,
    LLMRequestMismatch,
    LoopCountMismatchError,
    MissingArtifactError,
    ToolCallMismatch,
)
from ..models import ToolCallRecord, VerificationSettings
from ..normalizer import NormalizerConfig
from ..runtime import AgentRuntime, HookPoint, ToolCallRef
from ..store import ArtifactKind, SnapshotStore
from .base import AgentHookBase

logger = logging.getLogger(__name__)


@dataclass
class RecordedLoop:
    index: int
    request: Any = None
    response: Any = None
    chunks: list[Any] | None = None
    events: list[Any] | None = None
    tool_calls: list[ToolCallRecord] = field(default_factory=list)


def load_recorded_loop(store: SnapshotStore, loop: int) -> RecordedLoop:
    rec = RecordedLoop(index=loop)
    if store.has_artifact(loop, ArtifactKind.LLM_RESPONSE_CHUNKS):
        rec.chunks = store.read_streaming_chunks(loop)
    elif store.has_artifact(loop, ArtifactKind.LLM_RESPONSE):
        rec.response = store.read_llm_response(loop)
    else:
        raise MissingArtifactError(
            loop=loop,
            artifact=ArtifactKind.LLM_RESPONSE.value,
            path=store.artifact_path(loop, ArtifactKind.LLM_RESPONSE),
        )
    if store.has_artifact(loop, ArtifactKind.LLM_REQUEST):
        rec.request = store.read_llm_request(loop)
    if store.has_artifact(loop, ArtifactKind.EVENT_STREAM):
        rec.events = store.read_event_stream(loop)
    rec.tool_calls = store.read_tool_calls(loop)
    return rec


def response_of(payload: Any) -> Any:
    """The completion inside an LLM_RESPONSE hook payload."""
    if isinstance(payload, dict) and "response" in payload:
        return payload["response"]
    return payload


async def _iter_chunks(chunks: list[Any]) -> AsyncIterator[Any]:
    for chunk in chunks:
        yield chunk


class ReplayLLMClient:
    """Synthetic model client serving recorded completions in loop order.

    The N-th `create` call returns loop N's recorded response (or an async
    iterator over its recorded chunks) whatever the request says; request
    verification is the hook's job.
    """

    def __init__(self, loops: dict[int, RecordedLoop], loop_count: int) -> None:
        self.loops = loops
        self.loop_count = loop_count
        self.calls = 0

    async def create(self, request: dict[str, Any]) -> Any:
        self.calls += 1
        loop = self.calls
        if loop > self.loop_count:
            raise LoopCountMismatchError(expected=self.loop_count, actual=loop)
        recorded = self.loops[loop]
        logger.debug("Replaying LLM response for loop %d", loop)
        if recorded.chunks is not None:
            return _iter_chunks(list(recorded.chunks))
        return response_of(recorded.response)


def tool_call_view(tool_call: Any) -> dict[str, Any]:
    """Reduce a runtime tool call to `{tool_call_id, name, args}`.

    Accepts `ToolCallRef`, OpenAI-style ``{"id", "function": {"name",
    "arguments"}}`` dicts and flat ``{"tool_call_id", "name", "args"}`` dicts.
    """
    if isinstance(tool_call, ToolCallRef):
        return {"tool_call_id": tool_call.tool_call_id, "name": tool_call.name, "args": None}
    data = tool_call if isinstance(tool_call, dict) else to_jsonable(tool_call)
    fn = data.get("function") or {}
    args = fn.get("arguments", data.get("args", data.get("arguments")))
    if isinstance(args, (str, bytes)):
        try:
            args = orjson.loads(args)
        except orjson.JSONDecodeError:
            pass
    return {
        "tool_call_id": data.get("id") or data.get("tool_call_id"),
        "name": fn.get("name") or data.get("name"),
        "args": to_jsonable(args),
    }


def tool_result_of(record: ToolCallRecord, tool_call_id: str | None = None) -> dict[str, Any]:
    """Recorded outcome, addressed to the live call id when one is given."""
    return {
        "tool_call_id": tool_call_id or record.tool_call_id,
        "tool_name": record.name,
        "content": record.outcome,
        "is_error": record.has_error,
        "elapsed_ms": record.execution_time,
    }


def unmatched_result(view: dict[str, Any], error: Exception) -> dict[str, Any]:
    return {
        "tool_call_id": view["tool_call_id"],
        "tool_name": view["name"],
        "content": str(error),
        "is_error": True,
        "elapsed_ms": None,
    }


class AgentReplaySnapshotHook(AgentHookBase):
    """Replays a recorded snapshot and verifies the live run against it.

    Verification failures never propagate into the runtime: they are recorded
    as the hook's error and the run keeps going on recorded data. In update
    mode a mismatching artifact is rewritten with the live value instead.
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
        self.update_snapshots = False
        self.verification = VerificationSettings()
        self.loop_count = 0
        self.loops: dict[int, RecordedLoop] = {}
        self._client: ReplayLLMClient | None = None
        self._loop = 0

    async def setup(
        self,
        agent: AgentRuntime,
        snapshot_path: Path | str,
        loop_count: int,
        *,
        update_snapshots: bool = False,
        normalizer_config: NormalizerConfig | None = None,
        verification: VerificationSettings | None = None,
    ) -> None:
        """Load every recorded loop, build the replay client and hook the agent.

        Loading failures are recorded as the hook's error.
        """
        self.agent = agent
        self.snapshot_path = Path(snapshot_path)
        self.store = SnapshotStore(self.snapshot_path, normalizer_config=normalizer_config)
        self.loop_count = loop_count
        self.update_snapshots = update_snapshots
        self.verification = verification or VerificationSettings()

        try:
            self.loops = {i: load_recorded_loop(self.store, i) for i in range(1, loop_count + 1)}
        except AgentSnapshotError as exc:
            self.record_error("setup", exc)
            return

        self._client = ReplayLLMClient(self.loops, loop_count)
        self.hook_agent()
        logger.debug(
            "Replay hook ready for %s: %d loops, update=%s, %s",
            self.snapshot_name,
            loop_count,
            update_snapshots,
            self.verification,
        )

    def get_mock_llm_client(self) -> ReplayLLMClient | None:
        return self._client

    def _recorded(self) -> RecordedLoop:
        recorded = self.loops.get(self._loop)
        if recorded is None:
            raise LoopCountMismatchError(expected=self.loop_count, actual=self._loop)
        return recorded

    async def on_each_agent_loop_start(self, session_id: str) -> None:
        self._loop = self.current_loop or self._loop + 1
        await self.call_original(HookPoint.LOOP_START, session_id)

    async def on_llm_request(self, session_id: str, payload: Any) -> None:
        await self.call_original(HookPoint.LLM_REQUEST, session_id, payload)
        if not self.verification.verify_llm_requests:
            return
        recorded = self._recorded()
        result = self.store.verify_artifact(
            self._loop,
            ArtifactKind.LLM_REQUEST,
            payload,
            expected=recorded.request,
            update=self.update_snapshots,
        )
        if result.equal:
            return
        if self.update_snapshots:
            recorded.request = to_jsonable(payload)
            return
        raise LLMRequestMismatch(self._loop, result.diff)

    async def on_llm_response(self, session_id: str, payload: Any) -> None:
        await self.call_original(HookPoint.LLM_RESPONSE, session_id, payload)

    async def on_llm_streaming_response(self, session_id: str, payload: Any) -> None:
        await self.call_original(HookPoint.LLM_STREAMING_RESPONSE, session_id, payload)

    async def on_agent_loop_end(self, session_id: str) -> None:
        await self.call_original(HookPoint.LOOP_END, session_id)
        if not self.verification.verify_event_streams:
            return
        recorded = self._recorded()
        events = list(self.agent.get_events())
        result = self.store.verify_artifact(
            self._loop,
            ArtifactKind.EVENT_STREAM,
            events,
            expected=recorded.events or [],
            update=self.update_snapshots,
        )
        if not result.equal and not self.update_snapshots:
            raise EventStreamMismatch(self._loop, result.diff)

    def verify_final_event_stream(self, events: list[Any]) -> None:
        """Check the run's final events against the top-level recording."""
        if not self.verification.verify_event_streams:
            return
        if not self.store.has_artifact(None, ArtifactKind.EVENT_STREAM):
            if self.update_snapshots:
                self.store.write_event_stream(None, events)
            return
        result = self.store.verify_artifact(
            None, ArtifactKind.EVENT_STREAM, events, update=self.update_snapshots
        )
        if not result.equal and not self.update_snapshots:
            self.record_error("final_event_stream", EventStreamMismatch(None, result.diff))

    async def on_before_tool_call(self, session_id: str, tool_call: ToolCallRef, args: Any) -> Any:
        return await self.pass_through(HookPoint.BEFORE_TOOL_CALL, session_id, tool_call, args)

    async def on_after_tool_call(self, session_id: str, tool_call: ToolCallRef, result: Any) -> Any:
        return await self.pass_through(HookPoint.AFTER_TOOL_CALL, session_id, tool_call, result)

    async def on_tool_call_error(self, session_id: str, tool_call: ToolCallRef, error: Any) -> Any:
        return await self.pass_through(HookPoint.TOOL_CALL_ERROR, session_id, tool_call, error)

    async def on_process_tool_calls(
        self, session_id: str, tool_calls: list[Any]
    ) -> list[Any] | None:
        # Always answer with a list: None would let the runtime dispatch real tools
        live = [tool_call_view(tc) for tc in tool_calls]
        recorded = self.loops.get(self._loop)
        if recorded is None:
            self.record_error(
                HookPoint.PROCESS_TOOL_CALLS,
                LoopCountMismatchError(expected=self.loop_count, actual=self._loop),
            )
            recorded = RecordedLoop(index=self._loop)
        elif self.verification.verify_tool_calls:
            self._verify_tool_calls(recorded, live)

        by_id = {r.tool_call_id: r for r in recorded.tool_calls}
        results: list[Any] = []
        for position, view in enumerate(live):
            record = by_id.get(view["tool_call_id"])
            if record is None and position < len(recorded.tool_calls):
                record = recorded.tool_calls[position]
            if record is None:
                missing = MissingArtifactError(
                    loop=self._loop, artifact=f"tool call {view['tool_call_id']}"
                )
                self.record_error(HookPoint.PROCESS_TOOL_CALLS, missing)
                results.append(unmatched_result(view, missing))
                continue
            results.append(tool_result_of(record, view["tool_call_id"]))
        logger.debug("Replayed %d tool call(s) for loop %d", len(results), self._loop)
        return results

    def _verify_tool_calls(self, recorded: RecordedLoop, live: list[dict[str, Any]]) -> None:
        expected = [
            {"tool_call_id": r.tool_call_id, "name": r.name, "args": r.args}
            for r in recorded.tool_calls
        ]
        result = self.store.normalizer.compare(expected, live)
        if result.equal:
            return
        if self.update_snapshots:
            self._update_tool_calls(recorded, live)
            return
        self.store.write_actual(self._loop, ArtifactKind.TOOL_CALLS, live)
        # Keep serving recorded outcomes; the mismatch surfaces after the run
        self.record_error(HookPoint.PROCESS_TOOL_CALLS, ToolCallMismatch(self._loop, result.diff))

    def _update_tool_calls(self, recorded: RecordedLoop, live: list[dict[str, Any]]) -> None:
        by_id = {r.tool_call_id: r for r in recorded.tool_calls}
        updated: list[ToolCallRecord] = []
        for position, view in enumerate(live):
            base = by_id.get(view["tool_call_id"])
            if base is None and position < len(recorded.tool_calls):
                base = recorded.tool_calls[position]
            if base is None:
                # No recorded outcome to keep; store the call with an empty result
                updated.append(
                    ToolCallRecord(
                        tool_call_id=view["tool_call_id"], name=view["name"], args=view["args"]
                    )
                )
                continue
            updated.append(
                base.model_copy(
                    update={
                        "tool_call_id": view["tool_call_id"],
                        "name": view["name"],
                        "args": view["args"],
                    }
                )
            )
        recorded.tool_calls = updated
        self.store.write_tool_calls(self._loop, updated)
        logger.warning("Updated tool-calls snapshot for loop %d", self._loop)
