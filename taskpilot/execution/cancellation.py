#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Cooperative cancellation and pause primitives.

A ``CancellationToken`` is passed through every suspension point (model call,
tool call, backoff sleep). Child tokens fire when their parent does, which is
how a task-level cancel reaches a step, while a step timeout only cancels the
step's own child token.
"""

import asyncio
import weakref
from typing import Awaitable, Optional, TypeVar

from taskpilot.errors import OperationCancelled

T = TypeVar("T")

TASK_CANCELLED = "Task cancelled"
STEP_TIMEOUT = "Step timed out"


class CancellationToken:
    """A one-shot cancellation signal that can abort awaited work."""

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._children: "weakref.WeakSet[CancellationToken]" = weakref.WeakSet()
        self._timer: Optional[asyncio.TimerHandle] = None
        if parent is not None:
            parent._children.add(self)
            if parent.cancelled:
                self.cancel(parent.reason)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def cancel(self, reason: str = TASK_CANCELLED) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)

    def cancel_after(self, delay_seconds: float, reason: str) -> None:
        """Schedule ``cancel(reason)`` on the running loop."""
        self.clear_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay_seconds, self.cancel, reason)

    def clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelled(self._reason)

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
        """Await ``awaitable`` unless the token fires or ``timeout`` elapses first.

        Raises:
            OperationCancelled: the token fired before the work finished
            asyncio.TimeoutError: the timeout elapsed first
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except BaseException:
            work.cancel()
            waiter.cancel()
            raise

        if work in done:
            waiter.cancel()
            return work.result()

        work.cancel()
        waiter.cancel()
        await asyncio.gather(work, return_exceptions=True)
        if waiter in done:
            raise OperationCancelled(self._reason)
        raise asyncio.TimeoutError(f"Operation timed out after {timeout:.0f}s")

    async def sleep(self, seconds: float) -> None:
        await self.run(asyncio.sleep(seconds))


class PauseGate:
    """Pause/resume switch checked at loop-iteration boundaries."""

    def __init__(self):
        self._resumed = asyncio.Event()
        self._resumed.set()

    @property
    def is_paused(self) -> bool:
        return not self._resumed.is_set()

    def pause(self) -> None:
        self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    async def wait_if_paused(self, token: CancellationToken) -> None:
        """Block while paused; a cancellation still ends the wait right away."""
        token.raise_if_cancelled()
        if self.is_paused:
            await token.run(self._resumed.wait())
