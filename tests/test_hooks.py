from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from agent_snapshot.exceptions import (
    HookExecutionError,
    LoopCountMismatchError,
    NormalizationError,
)
from agent_snapshot.hooks import (
    AgentGenerateSnapshotHook,
    AgentHookBase,
    HookErrorCollector,
    ReplayLLMClient,
)
from agent_snapshot.hooks.replay import RecordedLoop, tool_call_view
from agent_snapshot.runtime import HookableRuntime, HookPoint, ToolCallRef
from agent_snapshot.store import ArtifactKind

from .fakes import ScriptedAgent, failing_tool


class ExplodingHook(AgentHookBase):
    """Fails on every model request; everything else is a no-op."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.requests = 0

    async def on_llm_request(self, session_id: str, payload: Any) -> None:
        self.requests += 1
        raise RuntimeError(f"cannot handle request #{self.requests}")

    async def on_llm_response(self, session_id: str, payload: Any) -> None:
        pass

    async def on_llm_streaming_response(self, session_id: str, payload: Any) -> None:
        pass

    async def on_each_agent_loop_start(self, session_id: str) -> None:
        await self.call_original(HookPoint.LOOP_START, session_id)

    async def on_agent_loop_end(self, session_id: str) -> None:
        pass

    async def on_before_tool_call(self, session_id: str, tool_call: ToolCallRef, args: Any) -> Any:
        return await self.pass_through(HookPoint.BEFORE_TOOL_CALL, session_id, tool_call, args)

    async def on_after_tool_call(self, session_id: str, tool_call: ToolCallRef, result: Any) -> Any:
        return result

    async def on_tool_call_error(self, session_id: str, tool_call: ToolCallRef, error: Any) -> Any:
        return error

    async def on_process_tool_calls(self, session_id: str, tool_calls: list[Any]) -> None:
        return None


class BrokenRegistry(HookableRuntime):
    def __init__(self, fail_after: int) -> None:
        super().__init__()
        self.fail_after = fail_after

    def register_hook(self, point: HookPoint, callback: Any) -> Any:
        if len(self._hooks) >= self.fail_after:
            raise RuntimeError("registry full")
        return super().register_hook(point, callback)


def test_collector_keeps_first_error():
    collector = HookErrorCollector("demo")
    first = HookExecutionError("on_llm_request", ValueError("first"))
    collector.record(first)
    collector.record(HookExecutionError("on_agent_loop_end", ValueError("second")))

    assert collector.has_error()
    assert collector.last_error is first
    assert collector.take_error() is first
    assert collector.take_error() is None
    assert not collector.has_error()


@pytest.mark.asyncio
async def test_collector_guard_swallows_and_records():
    collector = HookErrorCollector("demo")

    async def boom() -> None:
        raise KeyError("k")

    assert await collector.guard(HookPoint.LOOP_END, boom) is None
    err = collector.last_error
    assert err is not None
    assert err.hook == "on_agent_loop_end"
    assert isinstance(err.cause, KeyError)


@pytest.mark.asyncio
async def test_collector_guard_lets_normalization_errors_through():
    collector = HookErrorCollector("demo")

    def broken_verify() -> None:
        raise NormalizationError("messages", KeyError("k"))

    with pytest.raises(NormalizationError):
        await collector.guard(HookPoint.LLM_REQUEST, broken_verify)
    assert not collector.has_error()


def test_register_hook_disposer_restores_previous():
    runtime = HookableRuntime()

    def first(*_: Any) -> None: ...

    def second(*_: Any) -> None: ...

    dispose_first = runtime.register_hook(HookPoint.LOOP_START, first)
    dispose_second = runtime.register_hook(HookPoint.LOOP_START, second)
    assert runtime.get_hook(HookPoint.LOOP_START) is second

    dispose_second()
    assert runtime.get_hook(HookPoint.LOOP_START) is first
    dispose_first()
    assert runtime.get_hook(HookPoint.LOOP_START) is None


@pytest.mark.asyncio
async def test_hook_errors_never_reach_the_runtime(tmp_path: Path):
    runtime = HookableRuntime()
    hook = ExplodingHook(runtime, snapshot_path=tmp_path, snapshot_name="demo")
    hook.hook_agent()

    assert await runtime.emit(HookPoint.LLM_REQUEST, "s", {}) is None
    assert await runtime.emit(HookPoint.LLM_REQUEST, "s", {}) is None

    err = hook.get_last_error()
    assert err is not None
    assert err.hook == "on_llm_request"
    assert "#1" in str(err.cause)
    hook.clear_error()
    assert not hook.has_error()


@pytest.mark.asyncio
async def test_unhook_restores_original_callbacks(tmp_path: Path):
    runtime = HookableRuntime()
    seen: list[str] = []

    def original_loop_start(session_id: str) -> None:
        seen.append(session_id)

    def original_before(session_id: str, ref: ToolCallRef, args: Any) -> Any:
        return {**args, "units": "metric"}

    runtime.register_hook(HookPoint.LOOP_START, original_loop_start)
    runtime.register_hook(HookPoint.BEFORE_TOOL_CALL, original_before)

    hook = ExplodingHook(runtime, snapshot_path=tmp_path, snapshot_name="demo")
    with hook.hooked():
        assert hook.is_hooked
        assert runtime.get_hook(HookPoint.LOOP_START) is not original_loop_start
        await runtime.emit(HookPoint.LOOP_START, "s-1")
        rewritten = await runtime.emit(
            HookPoint.BEFORE_TOOL_CALL, "s-1", ToolCallRef("c", "t"), {"city": "Paris"}
        )

    assert seen == ["s-1"]
    assert rewritten == {"city": "Paris", "units": "metric"}
    assert not hook.is_hooked
    assert runtime.get_hook(HookPoint.LOOP_START) is original_loop_start
    assert runtime.get_hook(HookPoint.BEFORE_TOOL_CALL) is original_before
    assert runtime.get_hook(HookPoint.LLM_REQUEST) is None


def test_hook_agent_twice_registers_once(tmp_path: Path):
    agent = ScriptedAgent()
    hook = ExplodingHook(agent, snapshot_path=tmp_path, snapshot_name="demo")
    hook.hook_agent()
    hook.hook_agent()
    assert agent.register_calls == len(HookPoint)

    hook.unhook_agent()
    hook.unhook_agent()
    assert all(agent.get_hook(p) is None for p in HookPoint)


def test_failed_install_rolls_back(tmp_path: Path):
    runtime = BrokenRegistry(fail_after=3)
    hook = ExplodingHook(runtime, snapshot_path=tmp_path, snapshot_name="demo")

    with pytest.raises(RuntimeError, match="registry full"):
        hook.hook_agent()
    assert not hook.is_hooked
    assert all(runtime.get_hook(p) is None for p in HookPoint)


@pytest.mark.asyncio
async def test_generate_hook_records_tool_errors(tmp_path: Path):
    agent = ScriptedAgent(
        [
            {"content": "Trying.", "tool_calls": [("flaky", {"attempt": 1})]},
            {"content": "It failed."},
        ],
        tools={"flaky": failing_tool},
    )
    hook = AgentGenerateSnapshotHook(agent, snapshot_path=tmp_path, snapshot_name="flaky")
    with hook.hooked():
        await agent.run({"prompt": "go"})

    assert not hook.has_error()
    records = hook.store.read_tool_calls(1)
    assert len(records) == 1
    assert records[0].name == "flaky"
    assert records[0].args == {"attempt": 1}
    assert records[0].has_error is True
    assert records[0].error == "ValueError: service unavailable"
    assert records[0].result is None
    assert records[0].execution_time is not None
    assert hook.store.has_artifact(2, ArtifactKind.LLM_RESPONSE)
    assert not hook.store.has_artifact(2, ArtifactKind.TOOL_CALLS)


@pytest.mark.asyncio
async def test_replay_client_serves_loops_in_order():
    loops = {
        1: RecordedLoop(index=1, response={"response": {"message": "one"}}),
        2: RecordedLoop(index=2, chunks=[{"delta": "t"}, {"delta": "wo"}]),
    }
    client = ReplayLLMClient(loops, loop_count=2)

    assert await client.create({"anything": True}) == {"message": "one"}
    chunks = [c async for c in await client.create({})]
    assert chunks == [{"delta": "t"}, {"delta": "wo"}]

    with pytest.raises(LoopCountMismatchError) as ei:
        await client.create({})
    assert (ei.value.expected, ei.value.actual) == (2, 3)


def test_tool_call_view_reads_openai_style_calls():
    view = tool_call_view(
        {"id": "call-1", "function": {"name": "get_weather", "arguments": '{"city": "Paris"}'}}
    )
    assert view == {"tool_call_id": "call-1", "name": "get_weather", "args": {"city": "Paris"}}
    assert tool_call_view({"tool_call_id": "c", "name": "n", "args": {"a": 1}}) == {
        "tool_call_id": "c",
        "name": "n",
        "args": {"a": 1},
    }
