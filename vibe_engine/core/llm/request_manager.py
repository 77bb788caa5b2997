"""Timeout and cancellation envelope around generation calls.

Every generation runs through :meth:`RequestManager.run`, which races the
operation against a timer and a :class:`CancellationToken`.  Whatever loses
the race is abandoned: the underlying task is cancelled and, should it still
produce a value, that value is logged and dropped rather than returned.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from vibe_engine.utils.exceptions import RequestCancelledError, RequestTimeoutError
from vibe_engine.utils.logging import get_logger

logger = get_logger("llm.requests")

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal handed to each operation."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RequestCancelledError(self.reason or "cancelled")


@dataclass
class RequestHandle:
    id: int
    label: str | None
    token: CancellationToken
    task: asyncio.Task[Any]
    started_at: float = field(default_factory=time.monotonic)


class RequestManager:
    """Tracks in-flight generation requests.

    Parameters
    ----------
    default_timeout:
        Seconds allowed when :meth:`run` is called without ``timeout``.
    """

    def __init__(self, default_timeout: float = 60.0):
        self.default_timeout = default_timeout
        self._active: dict[int, RequestHandle] = {}
        self._ids = itertools.count(1)
        self._epoch = 0

    @property
    def epoch(self) -> int:
        """Number of :meth:`cancel_all` sweeps so far.

        Only reported in logs.  Late results are rejected per task by the
        ``attempt`` check in :meth:`TaskGraph.transition`.
        """
        return self._epoch

    @property
    def active_count(self) -> int:
        return len(self._active)

    def is_active(self, label: str) -> bool:
        return any(h.label == label for h in self._active.values())

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        fn: Callable[[CancellationToken], Awaitable[T]],
        *,
        timeout: float | None = None,
        label: str | None = None,
    ) -> T:
        """Run ``fn(token)`` under a deadline.

        Raises
        ------
        RequestTimeoutError
            The deadline passed first.
        RequestCancelledError
            The request was cancelled through :meth:`cancel` or
            :meth:`cancel_all`.
        """
        limit = self.default_timeout if timeout is None else timeout
        token = CancellationToken()
        inner = asyncio.ensure_future(fn(token))
        handle = RequestHandle(
            id=next(self._ids),
            label=label,
            token=token,
            task=inner,
        )
        self._active[handle.id] = handle
        waiter = asyncio.create_task(token.wait())

        try:
            done, _ = await asyncio.wait(
                {inner, waiter},
                timeout=limit,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            token.cancel("caller cancelled")
            self._abandon(handle)
            raise
        finally:
            waiter.cancel()
            self._active.pop(handle.id, None)

        if token.cancelled:
            self._abandon(handle)
            logger.info("request_cancelled", request_id=handle.id, label=label, reason=token.reason)
            raise RequestCancelledError(token.reason or "cancelled")

        if inner in done:
            return inner.result()

        token.cancel("timeout")
        self._abandon(handle)
        logger.warning("request_timeout", request_id=handle.id, label=label, timeout=limit)
        raise RequestTimeoutError(limit, label)

    def cancel(self, label: str, reason: str = "cancelled") -> int:
        """Cancel every in-flight request carrying *label*.  Returns the count."""
        cancelled = 0
        for handle in list(self._active.values()):
            if handle.label == label and not handle.token.cancelled:
                handle.token.cancel(reason)
                cancelled += 1
        return cancelled

    def cancel_all(self, reason: str = "cancelled") -> int:
        """Cancel everything in flight and advance the epoch.  Safe to repeat."""
        self._epoch += 1
        cancelled = 0
        for handle in list(self._active.values()):
            if not handle.token.cancelled:
                handle.token.cancel(reason)
                cancelled += 1
        if cancelled:
            logger.info("requests_cancelled", count=cancelled, epoch=self._epoch)
        return cancelled

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _abandon(self, handle: RequestHandle) -> None:
        if handle.task.done():
            self._discard_late(handle, handle.task)
            return
        handle.task.cancel()
        handle.task.add_done_callback(lambda t: self._discard_late(handle, t))

    @staticmethod
    def _discard_late(handle: RequestHandle, task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            logger.info("late_result_discarded", request_id=handle.id, label=handle.label)
        else:
            logger.debug(
                "late_error_discarded",
                request_id=handle.id,
                label=handle.label,
                error=str(exc),
            )
