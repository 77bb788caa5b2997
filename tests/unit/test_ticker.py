"""Tests for the periodic refresh loop."""
import asyncio

import pytest

from vibe_engine.engine.ticker import RefreshTicker


@pytest.mark.asyncio
async def test_ticker_keeps_running_after_a_failed_cycle():
    calls = []

    async def cycle():
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("store offline")

    ticker = RefreshTicker(0.01, cycle, name="test")
    ticker.start()
    ticker.start()
    assert ticker.running
    while len(calls) < 3:
        await asyncio.sleep(0.01)
    await ticker.stop()
    assert not ticker.running


@pytest.mark.asyncio
async def test_stop_before_start_is_noop():
    async def cycle():
        pass

    await RefreshTicker(1.0, cycle).stop()
