"""
subagent-runtime — run announcements

File: src/subagent_runtime/announce.py
Last updated: 2026-10-18

Purpose
- Format one human-readable notification per finished run and deliver it to an
  injected sink.

Functional requirements
- ``announce`` never raises; sink failures are logged and not retried.
- Cancelled, non-terminal and ``ANNOUNCE_SKIP`` runs are never announced.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any, Final

import structlog

from subagent_runtime.domain.ids import session_tag
from subagent_runtime.domain.models import Run, RunState

AnnounceSink = Callable[[str], Awaitable[None] | None]

_STATUS_LABELS: Final[dict[RunState, tuple[str, str]]] = {
    RunState.COMPLETED: ("success", "✅"),
    RunState.FAILED: ("error", "❌"),
    RunState.TIMED_OUT: ("timeout", "⏰"),
}


def format_announcement(run: Run) -> str:
    """Render the announcement text for a completed, failed or timed-out run."""
    labels = _STATUS_LABELS.get(run.state)
    if labels is None:
        raise ValueError(f"run {run.run_id} in state {run.state.value} cannot be announced")
    status, icon = labels

    message = f"[Sub-Agent: {run.label}]\n\n{icon} Status: {status}\n\n"
    if run.state is RunState.COMPLETED and run.result:
        message += f"Result:\n{run.result}\n\n"
    elif run.error:
        message += f"Error: {run.error}\n\n"

    message += "---\n"
    message += f"Runtime: {round(run.runtime_seconds or 0.0)}s"
    if run.usage.is_known:
        message += f" | Tokens: {run.usage.input_tokens} in / {run.usage.output_tokens} out"
    message += f"\nSession: {session_tag(run.run_id)}"
    return message


class AnnounceDispatcher:
    """Delivers run announcements to a sync or async sink."""

    def __init__(self, sink: AnnounceSink | None = None, *, logger: Any | None = None) -> None:
        self._sink = sink
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._delivered = 0
        self._failed = 0

    @property
    def delivered(self) -> int:
        return self._delivered

    @property
    def failed(self) -> int:
        return self._failed

    async def announce(self, run: Run) -> bool:
        """Deliver ``run``'s announcement; True only when the sink received it."""
        if run.state not in _STATUS_LABELS:
            self._logger.warning(
                "announce_refused", run_id=run.run_id, state=run.state.value
            )
            return False
        if run.is_announce_skip:
            self._logger.info("announce_skipped", run_id=run.run_id, label=run.label)
            return False

        message = format_announcement(run)
        if self._sink is None:
            self._logger.info(
                "announce_without_sink", run_id=run.run_id, label=run.label, message=message
            )
            return False

        try:
            outcome = self._sink(message)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:  # noqa: BLE001
            self._failed += 1
            self._logger.warning(
                "announce_delivery_failed",
                run_id=run.run_id,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            return False

        self._delivered += 1
        self._logger.info("announce_delivered", run_id=run.run_id, state=run.state.value)
        return True


__all__ = ["AnnounceDispatcher", "AnnounceSink", "format_announcement"]
