"""Scripted agent runtime used across the test suite.

Every run mints fresh session ids, call ids and timestamps, so a recording and
its replay only compare equal after normalization.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import AsyncIterator, Callable
from typing import Any

import orjson

from agent_snapshot.runtime import HookableRuntime, HookPoint, ToolCallRef, maybe_await


def _uid(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def make_tool_call(name: str, args: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": _uid("call"),
        "type": "function",
        "function": {"name": name, "arguments": orjson.dumps(args).decode("utf-8")},
    }


async def _aiter(items: list[Any]) -> AsyncIterator[Any]:
    for item in items:
        yield item


class ScriptedLLMClient:
    """Answers the N-th request with the N-th scripted turn.

    A turn is ``{"content": str, "tool_calls": [(name, args), ...]}``.
    """

    def __init__(self, script: list[dict[str, Any]]) -> None:
        self.script = script
        self.requests: list[dict[str, Any]] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def create(self, request: dict[str, Any]) -> Any:
        turn = self.script[len(self.requests)]
        self.requests.append(request)
        tool_calls = [make_tool_call(name, args) for name, args in turn.get("tool_calls", [])]
        completion_id = _uid("chatcmpl")
        created = time.time()
        if request.get("stream"):
            words = turn["content"].split(" ")
            chunks: list[dict[str, Any]] = [
                {
                    "id": completion_id,
                    "created": created,
                    "delta": {"content": word if i == 0 else f" {word}"},
                }
                for i, word in enumerate(words)
            ]
            if tool_calls:
                chunks.append({"id": completion_id, "delta": {"tool_calls": tool_calls}})
            return _aiter(chunks)
        return {
            "id": completion_id,
            "created": created,
            "message": {"role": "assistant", "content": turn["content"], "tool_calls": tool_calls},
        }


def weather_tool(city: str) -> dict[str, Any]:
    return {"city": city, "forecast": "sunny", "celsius": 21}


def failing_tool(**_: Any) -> Any:
    raise ValueError("service unavailable")


WEATHER_SCRIPT: list[dict[str, Any]] = [
    {"content": "Checking Paris.", "tool_calls": [("get_weather", {"city": "Paris"})]},
    {"content": "Checking Lyon.", "tool_calls": [("get_weather", {"city": "Lyon"})]},
    {"content": "Both cities are sunny."},
]


class ScriptedAgent(HookableRuntime):
    """A minimal tool-calling agent loop wired to every hook point."""

    def __init__(
        self,
        script: list[dict[str, Any]] | None = None,
        *,
        tools: dict[str, Callable[..., Any]] | None = None,
        system_prompt: str = "You are a weather assistant.",
        stream: bool = False,
        max_loops: int = 10,
        args_transform: Callable[[str, dict[str, Any]], dict[str, Any]] | None = None,
    ) -> None:
        super().__init__()
        self.llm = ScriptedLLMClient(script if script is not None else WEATHER_SCRIPT)
        self.tools = tools if tools is not None else {"get_weather": weather_tool}
        self.system_prompt = system_prompt
        self.stream = stream
        self.max_loops = max_loops
        self.args_transform = args_transform
        self.tool_invocations: list[tuple[str, dict[str, Any]]] = []
        self.register_calls = 0
        self._client: Any = None
        self._events: list[dict[str, Any]] = []
        self._loop = 0

    # --- runtime surface ---

    def register_hook(self, point: HookPoint, callback: Any) -> Any:
        self.register_calls += 1
        return super().register_hook(point, callback)

    def get_events(self) -> list[dict[str, Any]]:
        return list(self._events)

    def get_current_loop_iteration(self) -> int:
        return self._loop

    def set_custom_llm_client(self, client: Any) -> None:
        self._client = client

    async def run(self, run_options: dict[str, Any]) -> dict[str, Any]:
        session_id = _uid("sess")
        client = self._client or self.llm
        self._events = []
        self._loop = 0
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": run_options["prompt"]},
        ]
        content = ""

        while self._loop < self.max_loops:
            self._loop += 1
            await self.emit(HookPoint.LOOP_START, session_id)
            self._event("loop_start", session_id)

            request = {
                "model": "scripted-1",
                "messages": [dict(m) for m in messages],
                "tools": sorted(self.tools),
                "stream": self.stream,
                "metadata": {"sessionId": session_id, "timestamp": time.time()},
            }
            await self.emit(HookPoint.LLM_REQUEST, session_id, request)

            started = time.perf_counter()
            reply = await client.create(request)
            if self.stream:
                chunks = [chunk async for chunk in reply]
                await self.emit(HookPoint.LLM_STREAMING_RESPONSE, session_id, {"chunks": chunks})
                message = _assemble(chunks)
            else:
                await self.emit(
                    HookPoint.LLM_RESPONSE,
                    session_id,
                    {"response": reply, "elapsed_ms": (time.perf_counter() - started) * 1000},
                )
                message = reply["message"]

            content = message["content"]
            tool_calls = list(message.get("tool_calls") or [])
            messages.append({"role": "assistant", "content": content, "tool_calls": tool_calls})
            self._event("assistant", session_id, content=content)

            if tool_calls:
                for result in await self._process_tool_calls(session_id, tool_calls):
                    messages.append(
                        {
                            "role": "tool",
                            "tool_call_id": result["tool_call_id"],
                            "content": result["content"],
                        }
                    )
                    self._event("tool_result", session_id, **result)

            self._event("loop_end", session_id)
            await self.emit(HookPoint.LOOP_END, session_id)
            if not tool_calls:
                break

        self._event("run_end", session_id, content=content)
        return {"content": content, "sessionId": session_id, "loops": self._loop}

    # --- internals ---

    def _event(self, kind: str, session_id: str, **data: Any) -> None:
        self._events.append(
            {"type": kind, "loop": self._loop, "sessionId": session_id, "timestamp": time.time()}
            | data
        )

    async def _process_tool_calls(
        self, session_id: str, tool_calls: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        calls = []
        for tc in tool_calls:
            name = tc["function"]["name"]
            args = orjson.loads(tc["function"]["arguments"])
            if self.args_transform is not None:
                args = self.args_transform(name, args)
            calls.append(
                {
                    "id": tc["id"],
                    "function": {"name": name, "arguments": orjson.dumps(args).decode("utf-8")},
                }
            )

        replayed = await self.emit(HookPoint.PROCESS_TOOL_CALLS, session_id, calls)
        if replayed is not None:
            return [
                {
                    "tool_call_id": r["tool_call_id"],
                    "content": r["content"],
                    "is_error": r["is_error"],
                    "elapsed_ms": r["elapsed_ms"],
                }
                for r in replayed
            ]

        results = []
        for call in calls:
            ref = ToolCallRef(call["id"], call["function"]["name"])
            args = orjson.loads(call["function"]["arguments"])
            rewritten = await self.emit(HookPoint.BEFORE_TOOL_CALL, session_id, ref, args)
            if rewritten is not None:
                args = rewritten
            self.tool_invocations.append((ref.name, args))
            started = time.perf_counter()
            try:
                value = await maybe_await(self.tools[ref.name](**args))
            except Exception as exc:
                error = await self.emit(HookPoint.TOOL_CALL_ERROR, session_id, ref, exc)
                error = exc if error is None else error
                content: Any = f"{type(error).__name__}: {error}"
                is_error = True
            else:
                out = await self.emit(HookPoint.AFTER_TOOL_CALL, session_id, ref, value)
                content = value if out is None else out
                is_error = False
            results.append(
                {
                    "tool_call_id": ref.tool_call_id,
                    "content": content,
                    "is_error": is_error,
                    "elapsed_ms": (time.perf_counter() - started) * 1000,
                }
            )
        return results


def _assemble(chunks: list[dict[str, Any]]) -> dict[str, Any]:
    content = "".join(c["delta"].get("content", "") for c in chunks)
    tool_calls = [tc for c in chunks for tc in c["delta"].get("tool_calls", [])]
    return {"role": "assistant", "content": content, "tool_calls": tool_calls}
