"""
subagent-runtime — bounded-concurrency task pool

File: src/subagent_runtime/pool.py
Last updated: 2026-10-18

Purpose
- Spawn independent AI-completion runs without blocking the caller, execute at
  most ``max_concurrency`` of them at once and announce each outcome once.

What is included in this file
- ``TaskPool``: synchronous ``spawn``, FIFO admission, per-run deadline,
  announce + cleanup + completion hook, cancellation of queued runs, status.
- The minimal task-scoped system prompt given to every run.

Functional requirements
- ``spawn`` never suspends and must be called from inside a running event loop.
- A failing run never aborts the pool or other runs.
- The deadline starts at admission; the first settlement of a run wins.

Non-functional requirements
- All pool state is touched from the event loop thread only.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from datetime import datetime
from functools import partial
from typing import Any, Final, Protocol

import structlog

from subagent_runtime.announce import AnnounceDispatcher
from subagent_runtime.config.settings import PoolConfig
from subagent_runtime.constants import ANNOUNCE_SKIP, DEFAULT_LABEL
from subagent_runtime.domain.ids import generate_run_id
from subagent_runtime.domain.models import (
    CleanupPolicy,
    PoolStatus,
    Run,
    RunState,
    RunStats,
    SpawnReceipt,
    SpawnRequest,
    utc_now,
)
from subagent_runtime.errors import QueueFullError, RunTimeoutError, SubagentRuntimeError
from subagent_runtime.observability.logging import correlation_scope
from subagent_runtime.observability.metrics import MetricsRegistry
from subagent_runtime.providers.base import ChatMessage, ChatOptions, ProviderReply
from subagent_runtime.registry import RunRegistry
from subagent_runtime.utils.concurrency import CancellationToken, run_with_timeout

CompletionHook = Callable[[Run], Awaitable[None] | None]

SUBAGENT_SYSTEM_PROMPT: Final[str] = f"""[Minimal prompt mode - Sub-Agent]

You are a sub-agent spawned to complete a specific task.
Focus ONLY on the task given. Be efficient and thorough.

Rules:
1. Complete the task to the best of your ability
2. Report results clearly and concisely
3. If you cannot complete the task, explain why
4. Do not ask clarifying questions - work with what you have

When finished, provide a clear summary of:
- What you found/did
- Key insights or results
- Any important notes

If there's nothing meaningful to report, respond with: {ANNOUNCE_SKIP}"""

_OUTCOME_COUNTERS: Final[dict[RunState, str]] = {
    RunState.COMPLETED: "subagent_completed_total",
    RunState.FAILED: "subagent_failed_total",
    RunState.TIMED_OUT: "subagent_timed_out_total",
}


class CompletionRouter(Protocol):
    """What the pool needs from a router: one completion with provider and usage."""

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ProviderReply: ...


class TaskPool:
    """Bounded-concurrency executor for sub-agent runs.

    ``spawn`` registers a ``queued`` run and schedules admission on the next
    loop iteration. Admission happens strictly in submission order whenever a
    slot is free. Each admitted run asks the router for one completion, races
    it against the run's timeout, records the terminal state, announces it,
    applies its cleanup policy and finally calls ``on_complete``.
    """

    def __init__(
        self,
        router: CompletionRouter,
        config: PoolConfig | None = None,
        *,
        dispatcher: AnnounceDispatcher | None = None,
        registry: RunRegistry | None = None,
        metrics: MetricsRegistry | None = None,
        on_complete: CompletionHook | None = None,
        clock: Callable[[], datetime] = utc_now,
        run_id_factory: Callable[[], str] = generate_run_id,
        logger: Any | None = None,
    ) -> None:
        self._router = router
        self._config = config if config is not None else PoolConfig()
        self._dispatcher = dispatcher if dispatcher is not None else AnnounceDispatcher()
        self._registry = (
            registry
            if registry is not None
            else RunRegistry(
                completed_retention=self._config.completed_retention,
                max_archived=self._config.max_archived,
                clock=clock,
            )
        )
        self._metrics = metrics if metrics is not None else MetricsRegistry()
        self._on_complete = on_complete
        self._clock = clock
        self._run_id_factory = run_id_factory
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

        self._queue: deque[str] = deque()
        self._running: dict[str, asyncio.Task[None]] = {}
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False

    @property
    def config(self) -> PoolConfig:
        return self._config

    @property
    def registry(self) -> RunRegistry:
        return self._registry

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    @property
    def queue_depth(self) -> int:
        return len(self._queue)

    @property
    def running_count(self) -> int:
        return len(self._running)

    @property
    def stats(self) -> RunStats:
        return RunStats(
            spawned=self._metrics.get_counter("subagent_spawned_total"),
            completed=self._metrics.get_counter("subagent_completed_total"),
            failed=self._metrics.get_counter("subagent_failed_total"),
            timed_out=self._metrics.get_counter("subagent_timed_out_total"),
            cancelled=self._metrics.get_counter("subagent_cancelled_total"),
        )

    def spawn(self, request: SpawnRequest | str, /, **fields: Any) -> SpawnReceipt:
        """Register a new run and return at once.

        Accepts a ``SpawnRequest`` or the instructions string plus keyword
        fields (``label``, ``model``, ``timeout_seconds``, ``cleanup``).
        Raises ``QueueFullError`` when ``max_queue_depth`` is set and reached.
        """
        if isinstance(request, SpawnRequest):
            if fields:
                raise TypeError("spawn() takes either a SpawnRequest or keyword fields, not both")
        else:
            request = SpawnRequest(instructions=request, **fields)

        loop = asyncio.get_running_loop()
        if self._closed:
            raise SubagentRuntimeError("task pool is shut down")

        limit = self._config.max_queue_depth
        backlog = self._backlog()
        if limit is not None and backlog >= limit:
            self._metrics.inc("subagent_rejected_total")
            self._logger.warning("subagent_queue_full", depth=backlog, limit=limit)
            raise QueueFullError(depth=backlog, limit=limit)

        run = Run(
            run_id=self._run_id_factory(),
            instructions=request.instructions,
            label=request.label or DEFAULT_LABEL,
            model=request.model or self._config.default_model,
            timeout_seconds=request.timeout_seconds or self._config.default_timeout_seconds,
            cleanup=CleanupPolicy(request.cleanup or CleanupPolicy.ARCHIVE),
            enqueued_at=self._clock(),
        )
        self._registry.add(run)
        self._queue.append(run.run_id)
        self._idle.clear()
        self._metrics.inc("subagent_spawned_total")
        self._update_gauges()
        self._logger.info(
            "subagent_spawned",
            run_id=run.run_id,
            label=run.label,
            model=run.model,
            queue_depth=len(self._queue),
        )
        loop.call_soon(self._pump)
        return SpawnReceipt(run_id=run.run_id, queue_depth=len(self._queue))

    def get_run(self, run_id: str) -> Run | None:
        return self._registry.get(run_id)

    def get_status(self) -> PoolStatus:
        listing = self._registry.list()
        return PoolStatus(
            active=listing.active,
            completed_recent=listing.completed,
            stats=self.stats,
            queue_depth=self.queue_depth,
            running=self.running_count,
            config=self._config.to_dict(),
        )

    def cancel(self, run_id: str) -> bool:
        """Cancel a queued run. Returns False for unknown, running or finished runs."""
        if not self._registry.cancel(run_id):
            return False
        with suppress(ValueError):
            self._queue.remove(run_id)
        self._after_cancel(run_id)
        return True

    def cancel_all(self) -> int:
        """Cancel every queued run and return how many were cancelled."""
        cancelled = self._registry.cancel_all_queued()
        for run in cancelled:
            with suppress(ValueError):
                self._queue.remove(run.run_id)
            self._after_cancel(run.run_id)
        return len(cancelled)

    def clear_completed(self) -> int:
        """Drop every terminal record from the registry."""
        removed = self._registry.clear_terminal()
        self._logger.info("subagent_records_cleared", removed=removed)
        return removed

    async def drain(self) -> None:
        """Wait until nothing is queued or running."""
        await self._idle.wait()

    async def shutdown(self) -> None:
        """Refuse new spawns, cancel queued runs and wait for running ones."""
        self._closed = True
        cancelled = self.cancel_all()
        self._logger.info(
            "subagent_pool_shutdown", cancelled=cancelled, running=len(self._running)
        )
        await self.drain()

    def _pump(self) -> None:
        while self._queue and len(self._running) < self._config.max_concurrency:
            run_id = self._queue.popleft()
            run = self._registry.get(run_id)
            if run is None or run.state is not RunState.QUEUED:
                continue
            self._admit(run)
        self._update_gauges()
        self._check_idle()

    def _admit(self, run: Run) -> None:
        run.mark_running(self._clock())
        task = asyncio.get_running_loop().create_task(
            self._execute(run), name=f"subagent-{run.run_id}"
        )
        self._running[run.run_id] = task
        task.add_done_callback(partial(self._on_task_done, run.run_id))

    def _on_task_done(self, run_id: str, task: asyncio.Task[None]) -> None:
        self._running.pop(run_id, None)
        if not task.cancelled() and task.exception() is not None:
            self._logger.error(
                "subagent_worker_crashed", run_id=run_id, error=str(task.exception())
            )
        self._pump()

    async def _execute(self, run: Run) -> None:
        with correlation_scope(run_id=run.run_id, label=run.label):
            self._logger.info("subagent_started", run_id=run.run_id, model=run.model)
            try:
                reply = await self._call_with_deadline(run)
            except RunTimeoutError as exc:
                run.mark_timed_out(str(exc), self._clock())
            except asyncio.CancelledError:
                run.mark_failed("run cancelled before it finished", self._clock())
                self._registry.record_finished(run)
                self._record_outcome(run)
                raise
            except Exception as exc:  # noqa: BLE001
                run.mark_failed(_error_text(exc), self._clock())
            else:
                run.mark_completed(
                    reply.text, self._clock(), provider=reply.provider, usage=reply.usage
                )

            self._registry.record_finished(run)
            self._record_outcome(run)
            await self._dispatcher.announce(run)
            if run.cleanup is CleanupPolicy.DELETE:
                self._registry.remove(run.run_id)
            await self._invoke_on_complete(run)

    async def _call_with_deadline(self, run: Run) -> ProviderReply:
        token = CancellationToken()
        messages = (ChatMessage(role="user", content=run.instructions),)
        options = ChatOptions(
            model=run.model,
            max_output_tokens=self._config.max_output_tokens,
            system_prompt=SUBAGENT_SYSTEM_PROMPT,
        )
        try:
            return await run_with_timeout(
                self._router.complete(messages, options, cancel_token=token),
                run.timeout_seconds,
                token,
            )
        except TimeoutError as exc:
            if token.reason != "deadline exceeded":
                raise
            raise RunTimeoutError(run_id=run.run_id, timeout_seconds=run.timeout_seconds) from exc

    def _record_outcome(self, run: Run) -> None:
        self._metrics.inc(_OUTCOME_COUNTERS[run.state])
        runtime = run.runtime_seconds
        if runtime is not None:
            self._metrics.observe("subagent_runtime_seconds", runtime)

        fields: dict[str, Any] = {
            "run_id": run.run_id,
            "label": run.label,
            "runtime_seconds": runtime,
        }
        if run.state is RunState.COMPLETED:
            self._logger.info(
                "subagent_completed",
                provider=run.provider,
                usage=run.usage.to_dict(),
                announce_skip=run.is_announce_skip,
                **fields,
            )
        elif run.state is RunState.TIMED_OUT:
            self._logger.warning("subagent_timed_out", error=run.error, **fields)
        else:
            self._logger.warning("subagent_failed", error=run.error, **fields)

    def _after_cancel(self, run_id: str) -> None:
        self._metrics.inc("subagent_cancelled_total")
        self._logger.info("subagent_cancelled", run_id=run_id)
        self._update_gauges()
        self._check_idle()

    async def _invoke_on_complete(self, run: Run) -> None:
        if self._on_complete is None:
            return
        try:
            outcome = self._on_complete(run)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "subagent_on_complete_failed",
                run_id=run.run_id,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )

    def _backlog(self) -> int:
        # Queued runs that the free slots will not absorb on the next pump.
        free_slots = max(0, self._config.max_concurrency - len(self._running))
        return max(0, len(self._queue) - free_slots)

    def _update_gauges(self) -> None:
        self._metrics.set_gauge("subagent_queue_depth", len(self._queue))
        self._metrics.set_gauge("subagent_running", len(self._running))

    def _check_idle(self) -> None:
        if not self._queue and not self._running:
            self._idle.set()


def _error_text(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or exc.__class__.__name__


__all__ = [
    "CompletionHook",
    "CompletionRouter",
    "SUBAGENT_SYSTEM_PROMPT",
    "TaskPool",
]
