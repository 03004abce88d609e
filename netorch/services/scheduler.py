"""Cancellable periodic tasks with bounded retries."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from netorch.metrics import observe_job

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation; cancelling a token cancels all of its children."""

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = asyncio.Event()
        self._children: list[CancellationToken] = []
        self._parent: CancellationToken | None = None
        if parent is not None:
            if parent.cancelled:
                self._event.set()
            else:
                self._parent = parent
                parent._children.append(self)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def child_count(self) -> int:
        return len(self._children)

    def cancel(self) -> None:
        self._event.set()
        children, self._children = self._children, []
        for child in children:
            child.cancel()
        # Detach from the parent
        if self._parent is not None:
            if self in self._parent._children:
                self._parent._children.remove(self)
            self._parent = None

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    async def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to ``timeout``; returns True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    backoff_sec: float = 2.0
    max_backoff_sec: float = 60.0

    def delay(self, attempt: int) -> float:
        """Delay after the given 1-based failed attempt."""
        return min(self.max_backoff_sec, self.backoff_sec * (2 ** (attempt - 1)))

    async def run(
        self,
        func: Callable[[], Awaitable],
        token: CancellationToken | None = None,
        name: str = "task",
    ):
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        for attempt in range(1, self.attempts + 1):
            try:
                return await func()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if attempt >= self.attempts:
                    raise
                delay = self.delay(attempt)
                logger.warning(
                    "%s attempt %d/%d failed: %s; retrying in %.1fs",
                    name,
                    attempt,
                    self.attempts,
                    exc,
                    delay,
                )
                if token is not None:
                    if await token.wait(delay):
                        raise asyncio.CancelledError(f"{name} cancelled during retry")
                else:
                    await asyncio.sleep(delay)


class PeriodicTask:
    """Runs ``func`` every ``interval_sec`` until stopped or its token is cancelled.

    Each cycle is retried according to ``retry``; a cycle that still fails is
    logged and the loop moves on to the next interval.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable],
        interval_sec: float,
        retry: RetryPolicy | None = None,
        run_immediately: bool = True,
    ):
        if interval_sec <= 0:
            raise ValueError("interval_sec must be positive")
        self.name = name
        self.func = func
        self.interval_sec = interval_sec
        self.retry = retry or RetryPolicy(attempts=1)
        self.run_immediately = run_immediately
        self.runs = 0
        self.failures = 0
        self._task: asyncio.Task | None = None
        self._token: CancellationToken | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, token: CancellationToken | None = None) -> None:
        if self.running:
            return
        self._token = token.child() if token is not None else CancellationToken()
        self._task = asyncio.create_task(self._run(self._token), name=self.name)

    async def stop(self) -> None:
        if self._token is not None:
            self._token.cancel()
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run_once(self, token: CancellationToken | None = None) -> bool:
        start = time.monotonic()
        status = "success"
        try:
            await self.retry.run(self.func, token=token, name=self.name)
            return True
        except asyncio.CancelledError:
            status = "cancelled"
            raise
        except Exception:
            status = "error"
            self.failures += 1
            logger.exception("Periodic task %s failed", self.name)
            return False
        finally:
            self.runs += 1
            observe_job(self.name, status, time.monotonic() - start)

    async def _run(self, token: CancellationToken) -> None:
        logger.info("Periodic task %s started (interval %.1fs)", self.name, self.interval_sec)
        if not self.run_immediately and await token.wait(self.interval_sec):
            return
        try:
            while not token.cancelled:
                started = time.monotonic()
                await self.run_once(token)
                elapsed = time.monotonic() - started
                if await token.wait(max(0.0, self.interval_sec - elapsed)):
                    break
        finally:
            token.cancel()
        logger.info("Periodic task %s stopped", self.name)
