"""Utility exports for cancellation and timeout helpers."""

from subagent_runtime.utils.concurrency import (
    CancellationToken,
    race_cancellation,
    run_with_timeout,
)

__all__ = [
    "CancellationToken",
    "race_cancellation",
    "run_with_timeout",
]
