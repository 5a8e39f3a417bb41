"""Async cancellation and timeout primitives shared by the pool and providers."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError(self._reason or "operation cancelled")


async def race_cancellation(
    awaitable: Awaitable[T],
    cancel_token: CancellationToken | None,
) -> T:
    """Await ``awaitable`` unless ``cancel_token`` fires first.

    When the token wins, the in-flight task is cancelled and
    ``asyncio.CancelledError`` is raised.
    """
    if cancel_token is None:
        return await awaitable
    if cancel_token.is_cancelled:
        _close_unscheduled_coroutine(awaitable)
        cancel_token.raise_if_cancelled()

    task: asyncio.Task[T] = asyncio.create_task(_await_value(awaitable))
    cancel_wait_task = asyncio.create_task(cancel_token.wait())
    try:
        done, _ = await asyncio.wait(
            {task, cancel_wait_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
        if task in done:
            return task.result()
        await _cancel_and_discard(task)
        cancel_token.raise_if_cancelled()
        raise asyncio.CancelledError("operation cancelled")
    except asyncio.CancelledError:
        await _cancel_and_discard(task)
        raise
    finally:
        cancel_wait_task.cancel()
        with suppress(asyncio.CancelledError):
            await cancel_wait_task


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Run ``coroutine`` with a deadline and cooperative cancellation support.

    On expiry the token (when given) is cancelled, the task is cancelled and
    awaited, any late outcome is discarded, and ``TimeoutError`` is raised.
    """
    if timeout_seconds <= 0:
        _close_unscheduled_coroutine(coroutine)
        raise ValueError("timeout_seconds must be > 0")

    token = cancel_token or CancellationToken()
    if token.is_cancelled:
        _close_unscheduled_coroutine(coroutine)
        token.raise_if_cancelled()

    task: asyncio.Task[T] = asyncio.create_task(_await_value(coroutine))
    cancel_wait_task = asyncio.create_task(token.wait())

    try:
        done, _ = await asyncio.wait(
            {task, cancel_wait_task},
            timeout=timeout_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if task in done:
            return task.result()

        if cancel_wait_task in done:
            await _cancel_and_discard(task)
            token.raise_if_cancelled()

        token.cancel("deadline exceeded")
        await _cancel_and_discard(task)
        raise TimeoutError(f"operation timed out after {timeout_seconds:g} seconds")
    except asyncio.CancelledError:
        await _cancel_and_discard(task)
        raise
    finally:
        cancel_wait_task.cancel()
        with suppress(asyncio.CancelledError):
            await cancel_wait_task


async def _await_value(awaitable: Awaitable[T]) -> T:
    return await awaitable


async def _cancel_and_discard(task: asyncio.Task[T]) -> None:
    if task.done():
        if not task.cancelled():
            task.exception()
        return
    task.cancel()
    await asyncio.wait({task})
    if not task.cancelled():
        # Late settlement after cancellation; retrieve so asyncio does not warn.
        task.exception()


def _close_unscheduled_coroutine(awaitable: Awaitable[object]) -> None:
    # Close raw coroutine objects that never got scheduled so CPython does not
    # emit "coroutine was never awaited" at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "race_cancellation",
    "run_with_timeout",
]
