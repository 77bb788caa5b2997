"""Execution engine -- drives boards of tasks through the provider layer.

Public API::

    from vibe_engine.engine import (
        BoardManager,
        FallbackNotice,
        RefreshTicker,
        StuckTask,
        TaskExecutor,
    )
"""

from vibe_engine.engine.board_manager import BoardManager
from vibe_engine.engine.executor import FallbackNotice, StuckTask, TaskExecutor
from vibe_engine.engine.ticker import RefreshTicker

__all__ = [
    "BoardManager",
    "FallbackNotice",
    "RefreshTicker",
    "StuckTask",
    "TaskExecutor",
]
