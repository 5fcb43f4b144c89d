"""Cooperative shutdown signal and the ticker every periodic loop runs on.

One ShutdownSignal exists per process. Every blocking wait in the sidecar
(initial delay, retry interval, health interval, in-flight probes) goes
through it so that a SIGTERM is observed within one scheduling tick.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable
from typing import Any, TypeVar

T = TypeVar("T")


class ShutdownSignal:
    """A one-shot event that remembers why it was set."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def trigger(self, reason: str = "shutdown requested") -> None:
        """Set the signal. The first reason wins."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep for ``seconds`` unless shutdown comes first.

        Returns True if the signal is set when the sleep ends.
        """
        if self._event.is_set():
            return True
        if seconds <= 0:
            await asyncio.sleep(0)
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def race(self, aw: Awaitable[T]) -> tuple[bool, T | None]:
        """Run ``aw`` until it finishes or shutdown is triggered.

        Returns ``(True, result)`` if the awaitable won and ``(False, None)``
        if shutdown won, in which case the awaitable has been cancelled.
        Shutdown wins ties.
        """
        task = asyncio.ensure_future(aw)
        if self._event.is_set():
            await _cancel(task)
            return False, None

        waiter = asyncio.create_task(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if self._event.is_set():
            await _cancel(task)
            return False, None
        return True, task.result()


async def _cancel(task: asyncio.Future[Any]) -> None:
    if task.done():
        # Retrieve the outcome so asyncio does not warn about it.
        if not task.cancelled():
            task.exception()
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


class Ticker:
    """Fixed-period ticks, in the manner of Go's time.Ticker.

    The first tick fires one interval after construction. Each following
    tick is scheduled one interval after the previous tick was delivered,
    so work done between ticks does not stretch the period and two ticks
    are never closer than ``interval``. Ticks missed while the consumer
    was busy are dropped, not delivered in a burst.
    """

    def __init__(self, interval: float, shutdown: ShutdownSignal) -> None:
        if interval <= 0:
            raise ValueError("ticker interval must be greater than zero")
        self.interval = interval
        self._shutdown = shutdown
        self._next = time.monotonic() + interval

    async def tick(self) -> bool:
        """Wait for the next tick. Returns False if shutdown came first."""
        if await self._shutdown.sleep(self._next - time.monotonic()):
            return False
        self._next = time.monotonic() + self.interval
        return True
