from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

from .exceptions import CorruptSnapshotError, LoopCountMismatchError, SnapshotNotFoundError
from .hooks.generate import AgentGenerateSnapshotHook
from .hooks.replay import AgentReplaySnapshotHook
from .models import (
    AgentSnapshotOptions,
    GenerationMeta,
    SnapshotGenerationResult,
    SnapshotInfo,
    SnapshotTestResult,
    TestMeta,
    TestRunConfig,
    VerificationSettings,
    resolve_verification,
)
from .normalizer import NormalizerConfig
from .runtime import AgentRuntime
from .store import SnapshotStore

logger = logging.getLogger(__name__)


class AgentSnapshot:
    """Snapshot-based testing for one agent runtime.

    `generate()` records a real run; `test()` replays it with a synthetic model
    client and verifies the live run against the recording.

    Not reentrant: one `generate`/`test` at a time per instance.
    """

    def __init__(
        self, agent: AgentRuntime, options: AgentSnapshotOptions | None = None, **kwargs: Any
    ) -> None:
        if options is None:
            options = AgentSnapshotOptions(**kwargs)
        elif kwargs:
            raise TypeError("pass either an AgentSnapshotOptions or keyword options, not both")
        self.agent = agent
        self.options = options
        self.snapshot_path = Path(options.snapshot_path).resolve()
        self.snapshot_name = options.snapshot_name or self.snapshot_path.name
        self.store = SnapshotStore(self.snapshot_path, normalizer_config=options.normalizer_config)

    async def generate(self, run_options: Any) -> SnapshotGenerationResult:
        """Run the agent against the real model and record every loop."""
        logger.info("Generating snapshot: %s", self.snapshot_name)
        start = time.perf_counter()

        self.store.reset()
        hook = AgentGenerateSnapshotHook(
            self.agent,
            snapshot_path=self.snapshot_path,
            snapshot_name=self.snapshot_name,
            store=self.store,
        )
        hook.set_current_run_options(run_options)

        try:
            hook.hook_agent()
            response = await self.agent.run(run_options)
            events = list(self.agent.get_events())
            self.store.write_event_stream(None, events)
        except Exception as exc:
            logger.error("Snapshot generation failed: %s", exc)
            raise
        finally:
            if hook.is_hooked:
                hook.unhook_agent()

        error = hook.take_error()
        if error is not None:
            logger.error("Snapshot generation failed: %s", error)
            raise error from error.cause

        loop_count = self.count_loops()
        logger.info("Snapshot generated successfully with %d loops", loop_count)
        return SnapshotGenerationResult(
            snapshot_path=self.snapshot_path,
            loop_count=loop_count,
            response=response,
            events=events,
            meta=GenerationMeta(
                snapshot_name=self.snapshot_name,
                execution_time=(time.perf_counter() - start) * 1000.0,
            ),
        )

    async def test(
        self, run_options: Any, config: TestRunConfig | None = None
    ) -> SnapshotTestResult:
        """Replay the recorded snapshot and verify the agent against it."""
        logger.info("Testing against snapshot: %s", self.snapshot_name)
        if not self.snapshot_exists():
            raise SnapshotNotFoundError(self.snapshot_path)
        if not self.store.is_contiguous():
            raise CorruptSnapshotError(self.snapshot_path, self.store.loop_indices())

        config = config or TestRunConfig()
        start = time.perf_counter()
        update_snapshots = self._resolve_update_mode(config)
        verification = self._resolve_verification(config)
        normalizer_config = self._resolve_normalizer_config(config)
        if update_snapshots:
            logger.warning("Update mode enabled - snapshots will be updated instead of verified")
        if config.timeout is not None:
            logger.debug("Advisory timeout for %s: %ss", self.snapshot_name, config.timeout)

        loop_count = self.count_loops()
        logger.info("Found %d loops in snapshot", loop_count)

        hook = AgentReplaySnapshotHook(
            self.agent, snapshot_path=self.snapshot_path, snapshot_name=self.snapshot_name
        )
        hook.set_current_run_options(run_options)

        try:
            await hook.setup(
                self.agent,
                self.snapshot_path,
                loop_count,
                update_snapshots=update_snapshots,
                normalizer_config=normalizer_config,
                verification=verification,
            )
            self._raise_hook_error(hook)

            client = hook.get_mock_llm_client()
            if client is None:
                raise RuntimeError("replay hook did not produce an LLM client")
            self.agent.set_custom_llm_client(client)
            self.agent.set_replay_mode()

            response = await self.agent.run(run_options)
            events = list(self.agent.get_events())

            # A different number of loops is structural drift, reported ahead of
            # any value mismatch it would also cause
            executed_loops = int(self.agent.get_current_loop_iteration())
            if executed_loops != loop_count:
                raise LoopCountMismatchError(expected=loop_count, actual=executed_loops)

            hook.verify_final_event_stream(events)
            self._raise_hook_error(hook)

            self.store.cleanup_actual_files()
        except Exception as exc:
            logger.error("Test failed: %s", exc)
            raise
        finally:
            if hook.is_hooked:
                hook.unhook_agent()

        logger.info("Test completed successfully: %s", self.snapshot_name)
        return SnapshotTestResult(
            response=response,
            events=events,
            meta=TestMeta(
                snapshot_name=self.snapshot_name,
                execution_time=(time.perf_counter() - start) * 1000.0,
                loop_count=executed_loops,
            ),
        )

    def update_normalizer_config(self, config: NormalizerConfig) -> None:
        self.options.normalizer_config = config
        self.store.update_normalizer_config(config)

    def get_agent(self) -> AgentRuntime:
        return self.agent

    def snapshot_exists(self) -> bool:
        return self.store.exists()

    def count_loops(self) -> int:
        return self.store.count_loops()

    def get_snapshot_info(self) -> SnapshotInfo:
        return SnapshotInfo(
            exists=self.snapshot_exists(),
            loop_count=self.count_loops(),
            path=self.snapshot_path,
            name=self.snapshot_name,
        )

    def _resolve_update_mode(self, config: TestRunConfig) -> bool:
        if config.update_snapshots is not None:
            return config.update_snapshots
        return bool(self.options.update_snapshots)

    def _resolve_verification(self, config: TestRunConfig) -> VerificationSettings:
        return resolve_verification(config.verification, self.options.verification)

    def _resolve_normalizer_config(self, config: TestRunConfig) -> NormalizerConfig | None:
        if config.normalizer_config is not None:
            return config.normalizer_config
        return self.options.normalizer_config

    @staticmethod
    def _raise_hook_error(hook: AgentReplaySnapshotHook) -> None:
        error = hook.take_error()
        if error is not None:
            raise error from error.cause
