"""In-memory run registry: lookup, listing, cancellation and bounded retention."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from subagent_runtime.constants import DEFAULT_COMPLETED_RETENTION, DEFAULT_MAX_ARCHIVED
from subagent_runtime.domain.models import Run, RunState, utc_now
from subagent_runtime.errors import RunNotFoundError


@dataclass(frozen=True, slots=True)
class RunListing:
    active: tuple[Run, ...]
    completed: tuple[Run, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "active": [run.summary() for run in self.active],
            "completed": [run.summary() for run in self.completed],
        }


class RunRegistry:
    """Tracks every run the pool knows about.

    Runs are kept in submission order. Terminal runs are additionally tracked
    in finish order so the oldest can be evicted once more than
    ``max_archived`` of them are held.
    """

    def __init__(
        self,
        *,
        completed_retention: int = DEFAULT_COMPLETED_RETENTION,
        max_archived: int = DEFAULT_MAX_ARCHIVED,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if completed_retention < 0:
            raise ValueError("completed_retention must be >= 0")
        if max_archived <= 0:
            raise ValueError("max_archived must be > 0")
        self._completed_retention = completed_retention
        self._max_archived = max_archived
        self._clock = clock
        self._runs: dict[str, Run] = {}
        self._finished: dict[str, None] = {}

    def __len__(self) -> int:
        return len(self._runs)

    def __contains__(self, run_id: object) -> bool:
        return run_id in self._runs

    def __iter__(self) -> Iterator[Run]:
        return iter(tuple(self._runs.values()))

    def add(self, run: Run) -> None:
        if run.run_id in self._runs:
            raise ValueError(f"run already registered: {run.run_id}")
        self._runs[run.run_id] = run
        if run.is_terminal:
            self.record_finished(run)

    def get(self, run_id: str) -> Run | None:
        return self._runs.get(run_id)

    def require(self, run_id: str) -> Run:
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def remove(self, run_id: str) -> Run | None:
        self._finished.pop(run_id, None)
        return self._runs.pop(run_id, None)

    def list(self) -> RunListing:
        """In-flight runs plus the most recent ``completed_retention`` terminal runs."""
        active = tuple(run for run in self._runs.values() if run.state.is_active)
        finished_ids = tuple(self._finished)
        recent_ids = finished_ids[-self._completed_retention :] if self._completed_retention else ()
        completed = tuple(self._runs[run_id] for run_id in recent_ids)
        return RunListing(active=active, completed=completed)

    def queued(self) -> tuple[Run, ...]:
        return tuple(run for run in self._runs.values() if run.state is RunState.QUEUED)

    def running(self) -> tuple[Run, ...]:
        return tuple(run for run in self._runs.values() if run.state is RunState.RUNNING)

    def cancel(self, run_id: str) -> bool:
        """Cancel a queued run. Running and terminal runs are left untouched."""
        run = self._runs.get(run_id)
        if run is None or run.state is not RunState.QUEUED:
            return False
        run.mark_cancelled(self._clock())
        self.record_finished(run)
        return True

    def cancel_all_queued(self) -> tuple[Run, ...]:
        return tuple(run for run in self.queued() if self.cancel(run.run_id))

    def clear_terminal(self) -> int:
        """Drop every terminal record and return how many were removed."""
        terminal_ids = [run_id for run_id, run in self._runs.items() if run.is_terminal]
        for run_id in terminal_ids:
            self.remove(run_id)
        return len(terminal_ids)

    def record_finished(self, run: Run) -> None:
        """Note that ``run`` reached a terminal state and enforce ``max_archived``."""
        if not run.is_terminal:
            raise ValueError(f"run {run.run_id} is not terminal (state={run.state.value})")
        if run.run_id not in self._runs:
            return
        self._finished.pop(run.run_id, None)
        self._finished[run.run_id] = None
        while len(self._finished) > self._max_archived:
            oldest = next(iter(self._finished))
            self.remove(oldest)


__all__ = ["RunListing", "RunRegistry"]
