from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..exceptions import HookExecutionError, NormalizationError
from ..runtime import AgentRuntime, Disposer, HookCallback, HookPoint, ToolCallRef, maybe_await

logger = logging.getLogger(__name__)


class HookErrorCollector:
    """Runs hook callbacks and keeps the first failure.

    Later failures are logged but never replace the first one, so the error
    reported after a run is always the one that started the trouble.
    """

    def __init__(self, owner: str) -> None:
        self.owner = owner
        self._error: HookExecutionError | None = None

    async def guard(self, point: HookPoint, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await maybe_await(fn(*args))
        except NormalizationError:
            # a broken custom normalizer is a configuration error, not drift
            raise
        except Exception as exc:
            self.record(HookExecutionError(point.value, exc))
            return None

    def record(self, error: HookExecutionError) -> None:
        logger.error("Hook execution error in %s: %s", self.owner, error)
        if self._error is None:
            self._error = error

    def has_error(self) -> bool:
        return self._error is not None

    @property
    def last_error(self) -> HookExecutionError | None:
        return self._error

    def take_error(self) -> HookExecutionError | None:
        err, self._error = self._error, None
        return err

    def clear(self) -> None:
        self._error = None


class AgentHookBase(ABC):
    """Installs instrumented callbacks on an agent runtime and removes them again.

    `hook_agent()` remembers the runtime's current callback for each
    `HookPoint` and registers a wrapper that routes the event to the matching
    `on_*` method through a `HookErrorCollector`. Nothing raised by an `on_*`
    method reaches the runtime; callers check `has_error()` after the run.
    `unhook_agent()` runs the disposers in reverse, restoring the originals.
    """

    def __init__(self, agent: AgentRuntime, *, snapshot_path: Path | str, snapshot_name: str):
        self.agent = agent
        self.snapshot_path = Path(snapshot_path)
        self.snapshot_name = snapshot_name
        self.current_run_options: Any | None = None
        self._errors = HookErrorCollector(snapshot_name)
        self._originals: dict[HookPoint, HookCallback | None] = {}
        self._disposers: list[Disposer] = []
        self._hooked = False

        self.snapshot_path.mkdir(parents=True, exist_ok=True)

    def set_current_run_options(self, options: Any) -> None:
        self.current_run_options = options

    @property
    def is_hooked(self) -> bool:
        return self._hooked

    def hook_agent(self) -> None:
        if self._hooked:
            logger.warning("Agent already hooked, skipping")
            return

        try:
            for point, handler in self._handlers().items():
                self._originals[point] = self.agent.get_hook(point)
                self._disposers.append(self.agent.register_hook(point, self._wrap(point, handler)))
        except Exception:
            self._dispose_all()
            raise

        self._hooked = True
        logger.debug("Hooked into agent: %s", self.snapshot_name)

    def unhook_agent(self) -> None:
        if not self._hooked:
            logger.warning("Agent not hooked, nothing to restore: %s", self.snapshot_name)
            return
        self._dispose_all()
        self._hooked = False
        logger.debug("Unhooked from agent: %s", self.snapshot_name)

    @contextmanager
    def hooked(self) -> Iterator[AgentHookBase]:
        self.hook_agent()
        try:
            yield self
        finally:
            self.unhook_agent()

    def _dispose_all(self) -> None:
        for dispose in reversed(self._disposers):
            dispose()
        self._disposers = []
        self._originals = {}

    def _handlers(self) -> dict[HookPoint, Callable[..., Any]]:
        return {
            HookPoint.LLM_REQUEST: self.on_llm_request,
            HookPoint.LLM_RESPONSE: self.on_llm_response,
            HookPoint.LLM_STREAMING_RESPONSE: self.on_llm_streaming_response,
            HookPoint.LOOP_START: self.on_each_agent_loop_start,
            HookPoint.LOOP_END: self.on_agent_loop_end,
            HookPoint.BEFORE_TOOL_CALL: self.on_before_tool_call,
            HookPoint.AFTER_TOOL_CALL: self.on_after_tool_call,
            HookPoint.TOOL_CALL_ERROR: self.on_tool_call_error,
            HookPoint.PROCESS_TOOL_CALLS: self.on_process_tool_calls,
        }

    def _wrap(self, point: HookPoint, handler: Callable[..., Any]) -> HookCallback:
        async def _instrumented(*args: Any) -> Any:
            return await self._errors.guard(point, handler, *args)

        _instrumented.__qualname__ = f"{type(self).__name__}.{point.value}"
        return _instrumented

    async def call_original(self, point: HookPoint, *args: Any) -> Any:
        """Invoke the callback the runtime had before we hooked it, if any."""
        original = self._originals.get(point)
        if original is None:
            return None
        return await maybe_await(original(*args))

    async def pass_through(
        self, point: HookPoint, session_id: str, ref: ToolCallRef, value: Any
    ) -> Any:
        # Tool hooks return the (possibly rewritten) value; None keeps it as is
        out = await self.call_original(point, session_id, ref, value)
        return value if out is None else out

    @property
    def current_loop(self) -> int:
        return int(self.agent.get_current_loop_iteration())

    # --- error API ---

    def has_error(self) -> bool:
        return self._errors.has_error()

    def get_last_error(self) -> HookExecutionError | None:
        return self._errors.last_error

    def take_error(self) -> HookExecutionError | None:
        return self._errors.take_error()

    def clear_error(self) -> None:
        self._errors.clear()

    def record_error(self, where: HookPoint | str, exc: BaseException) -> None:
        label = where.value if isinstance(where, HookPoint) else where
        self._errors.record(HookExecutionError(label, exc))

    # --- extension points ---

    @abstractmethod
    async def on_llm_request(self, session_id: str, payload: Any) -> None: ...

    @abstractmethod
    async def on_llm_response(self, session_id: str, payload: Any) -> None: ...

    @abstractmethod
    async def on_llm_streaming_response(self, session_id: str, payload: Any) -> None: ...

    @abstractmethod
    async def on_each_agent_loop_start(self, session_id: str) -> None: ...

    @abstractmethod
    async def on_agent_loop_end(self, session_id: str) -> None: ...

    @abstractmethod
    async def on_before_tool_call(self, session_id: str, tool_call: ToolCallRef, args: Any) -> Any:
        ...

    @abstractmethod
    async def on_after_tool_call(
        self, session_id: str, tool_call: ToolCallRef, result: Any
    ) -> Any: ...

    @abstractmethod
    async def on_tool_call_error(
        self, session_id: str, tool_call: ToolCallRef, error: Any
    ) -> Any: ...

    @abstractmethod
    async def on_process_tool_calls(
        self, session_id: str, tool_calls: list[Any]
    ) -> list[Any] | None: ...
