"""Run lifecycle models with strict validation and JSON-safe serialization."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final, NoReturn

from subagent_runtime.constants import ANNOUNCE_SKIP
from subagent_runtime.domain import ids as domain_ids
from subagent_runtime.errors import InvalidTransitionError

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_LABEL = 200


class RunState(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES

    @property
    def is_active(self) -> bool:
        return self in (RunState.QUEUED, RunState.RUNNING)


class CleanupPolicy(StrEnum):
    ARCHIVE = "archive"
    DELETE = "delete"


_TERMINAL_STATES: Final[frozenset[RunState]] = frozenset(
    {RunState.COMPLETED, RunState.FAILED, RunState.TIMED_OUT, RunState.CANCELLED}
)

_ALLOWED_TRANSITIONS: Final[Mapping[RunState, frozenset[RunState]]] = {
    RunState.QUEUED: frozenset({RunState.RUNNING, RunState.CANCELLED}),
    RunState.RUNNING: frozenset({RunState.COMPLETED, RunState.FAILED, RunState.TIMED_OUT}),
    RunState.COMPLETED: frozenset(),
    RunState.FAILED: frozenset(),
    RunState.TIMED_OUT: frozenset(),
    RunState.CANCELLED: frozenset(),
}


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    def __post_init__(self) -> None:
        _validate_non_negative_int(self.input_tokens, "TokenUsage.input_tokens")
        _validate_non_negative_int(self.output_tokens, "TokenUsage.output_tokens")

    @property
    def is_known(self) -> bool:
        return self.input_tokens > 0 and self.output_tokens > 0

    def to_dict(self) -> dict[str, JSONValue]:
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


@dataclass(frozen=True, slots=True)
class SpawnRequest:
    """Validated input for one spawned run. ``None`` fields take pool defaults."""

    instructions: str
    label: str | None = None
    model: str | None = None
    timeout_seconds: float | None = None
    cleanup: CleanupPolicy | str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.instructions, str) or not self.instructions.strip():
            _fail("SpawnRequest.instructions", "must be a non-empty string")
        if self.label is not None:
            label = _as_text(self.label, "SpawnRequest.label")
            if len(label) > _MAX_LABEL:
                _fail("SpawnRequest.label", f"must be <= {_MAX_LABEL} characters")
            object.__setattr__(self, "label", label)
        if self.model is not None:
            object.__setattr__(self, "model", _as_text(self.model, "SpawnRequest.model"))
        if self.timeout_seconds is not None:
            object.__setattr__(
                self,
                "timeout_seconds",
                _as_positive_seconds(self.timeout_seconds, "SpawnRequest.timeout_seconds"),
            )
        if self.cleanup is not None:
            try:
                object.__setattr__(self, "cleanup", CleanupPolicy(self.cleanup))
            except ValueError:
                allowed = [item.value for item in CleanupPolicy]
                _fail("SpawnRequest.cleanup", f"must be one of {allowed}, got {self.cleanup!r}")


@dataclass(frozen=True, slots=True)
class SpawnReceipt:
    run_id: str
    queue_depth: int

    def to_dict(self) -> dict[str, JSONValue]:
        return {"status": "accepted", "run_id": self.run_id, "queue_depth": self.queue_depth}


@dataclass(slots=True)
class Run:
    """One spawned unit of work tracked from ``queued`` to a terminal state.

    State only moves along the lifecycle graph; every other move raises
    ``InvalidTransitionError``. Terminal states are final, so the first
    settlement of a running run wins.
    """

    run_id: str
    instructions: str
    label: str
    model: str
    timeout_seconds: float
    cleanup: CleanupPolicy = CleanupPolicy.ARCHIVE
    state: RunState = RunState.QUEUED
    enqueued_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: str | None = None
    error: str | None = None
    provider: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)

    def __post_init__(self) -> None:
        domain_ids.validate_run_id(self.run_id)
        if not isinstance(self.instructions, str) or not self.instructions.strip():
            _fail("Run.instructions", "must be a non-empty string")
        self.label = _as_text(self.label, "Run.label")
        self.model = _as_text(self.model, "Run.model")
        self.timeout_seconds = _as_positive_seconds(self.timeout_seconds, "Run.timeout_seconds")
        self.cleanup = CleanupPolicy(self.cleanup)
        self.state = RunState(self.state)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def runtime_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    @property
    def is_announce_skip(self) -> bool:
        return self.result is not None and self.result.strip() == ANNOUNCE_SKIP

    def mark_running(self, at: datetime) -> None:
        self._transition(RunState.RUNNING)
        self.started_at = at

    def mark_completed(
        self,
        result: str,
        at: datetime,
        *,
        provider: str | None = None,
        usage: TokenUsage | None = None,
    ) -> None:
        self._transition(RunState.COMPLETED)
        self.result = result
        self.provider = provider
        if usage is not None:
            self.usage = usage
        self.finished_at = at

    def mark_failed(self, error: str, at: datetime) -> None:
        self._transition(RunState.FAILED)
        self.error = error
        self.finished_at = at

    def mark_timed_out(self, error: str, at: datetime) -> None:
        self._transition(RunState.TIMED_OUT)
        self.error = error
        self.finished_at = at

    def mark_cancelled(self, at: datetime) -> None:
        self._transition(RunState.CANCELLED)
        self.finished_at = at

    def can_transition(self, target: RunState) -> bool:
        return target in _ALLOWED_TRANSITIONS[self.state]

    def _transition(self, target: RunState) -> None:
        if not self.can_transition(target):
            raise InvalidTransitionError(
                run_id=self.run_id, current=self.state.value, target=target.value
            )
        self.state = target

    def summary(self) -> dict[str, JSONValue]:
        """Compact view used by status listings."""
        payload: dict[str, JSONValue] = {
            "run_id": self.run_id,
            "label": self.label,
            "state": self.state.value,
        }
        if self.state.is_active:
            payload["enqueued_at"] = _iso(self.enqueued_at)
            payload["started_at"] = _iso(self.started_at)
        else:
            payload["runtime_seconds"] = self.runtime_seconds
        return payload

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "run_id": self.run_id,
            "label": self.label,
            "instructions": self.instructions,
            "model": self.model,
            "timeout_seconds": self.timeout_seconds,
            "cleanup": self.cleanup.value,
            "state": self.state.value,
            "enqueued_at": _iso(self.enqueued_at),
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "runtime_seconds": self.runtime_seconds,
            "result": self.result,
            "error": self.error,
            "provider": self.provider,
            "usage": self.usage.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class RunStats:
    spawned: int = 0
    completed: int = 0
    failed: int = 0
    timed_out: int = 0
    cancelled: int = 0

    def __post_init__(self) -> None:
        for name in ("spawned", "completed", "failed", "timed_out", "cancelled"):
            _validate_non_negative_int(getattr(self, name), f"RunStats.{name}")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "spawned": self.spawned,
            "completed": self.completed,
            "failed": self.failed,
            "timed_out": self.timed_out,
            "cancelled": self.cancelled,
        }


@dataclass(frozen=True, slots=True)
class PoolStatus:
    active: tuple[Run, ...]
    completed_recent: tuple[Run, ...]
    stats: RunStats
    queue_depth: int = 0
    running: int = 0
    config: Mapping[str, JSONValue] = field(default_factory=dict)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "config": dict(self.config),
            "queue": {"depth": self.queue_depth, "running": self.running},
            "active": [run.summary() for run in self.active],
            "completed": [run.summary() for run in self.completed_recent],
            "stats": self.stats.to_dict(),
        }


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


def _as_text(value: object, path: str) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        _fail(path, "must be a non-empty string")
    return normalized


def _as_positive_seconds(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, int | float):
        _fail(path, f"expected number, got {type(value).__name__}")
    seconds = float(value)
    if not math.isfinite(seconds) or seconds <= 0:
        _fail(path, "must be a finite number > 0")
    return seconds


def _validate_non_negative_int(value: object, path: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if value < 0:
        _fail(path, "must be >= 0")


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "CleanupPolicy",
    "JSONValue",
    "PoolStatus",
    "Run",
    "RunState",
    "RunStats",
    "SpawnReceipt",
    "SpawnRequest",
    "TokenUsage",
    "utc_now",
]
