"""Periodic refresh loop owned by an executor."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from vibe_engine.utils.logging import get_logger

logger = get_logger("engine.ticker")


class RefreshTicker:
    """Calls *callback* every *interval* seconds until stopped.

    A failing cycle is logged and the loop carries on with the next one.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Awaitable[Any]],
        *,
        name: str = "refresh",
    ) -> None:
        self.interval = interval
        self.callback = callback
        self.name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.debug("ticker_started", ticker=self.name, interval=self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.debug("ticker_stopped", ticker=self.name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.callback()
            except Exception:
                logger.error("refresh_cycle_failed", ticker=self.name, exc_info=True)
