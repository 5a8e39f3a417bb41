"""Runtime error taxonomy for the task pool and provider router."""

from __future__ import annotations

from collections.abc import Sequence


class SubagentRuntimeError(RuntimeError):
    """Base error for sub-agent runtime failures."""


class AllProvidersFailedError(SubagentRuntimeError):
    """Raised when every configured provider was skipped or failed."""

    def __init__(
        self,
        *,
        last_error: BaseException | None,
        attempted: Sequence[str] = (),
    ) -> None:
        self.last_error = last_error
        self.attempted = tuple(attempted)
        if last_error is None:
            message = "All providers failed. No provider is configured"
        else:
            message = f"All providers failed. Last error: {_error_message(last_error)}"
        super().__init__(message)


class QueueFullError(SubagentRuntimeError):
    """Raised by ``spawn`` when the queue depth limit is reached."""

    def __init__(self, *, depth: int, limit: int) -> None:
        self.depth = depth
        self.limit = limit
        super().__init__(f"task queue is full ({depth}/{limit} queued runs)")


class InvalidTransitionError(SubagentRuntimeError):
    """Raised when a run is moved to a state its lifecycle does not allow."""

    def __init__(self, *, run_id: str, current: str, target: str) -> None:
        self.run_id = run_id
        self.current = current
        self.target = target
        super().__init__(f"run {run_id}: illegal transition {current} -> {target}")


class RunNotFoundError(SubagentRuntimeError, KeyError):
    """Raised when a run id is not tracked by the registry."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"unknown run: {run_id}")

    def __str__(self) -> str:
        return f"unknown run: {self.run_id}"


class RunTimeoutError(SubagentRuntimeError, TimeoutError):
    """Raised when a run's provider call outlives its deadline."""

    def __init__(self, *, run_id: str, timeout_seconds: float) -> None:
        self.run_id = run_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"run {run_id} timed out after {timeout_seconds:g} seconds")


def _error_message(error: BaseException) -> str:
    detail = getattr(error, "detail", None)
    if isinstance(detail, str) and detail.strip():
        return detail
    text = str(error).strip()
    return text or error.__class__.__name__


__all__ = [
    "AllProvidersFailedError",
    "InvalidTransitionError",
    "QueueFullError",
    "RunNotFoundError",
    "RunTimeoutError",
    "SubagentRuntimeError",
]
