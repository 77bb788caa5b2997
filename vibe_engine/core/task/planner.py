"""Planner collaborator.

A planner turns a user goal into the initial tasks of a board.  The engine
consumes the protocol only, through ``BoardManager.create_board(planner=...)``;
boards posted with an explicit task list skip the planner entirely.
:class:`StaticPlanner` replays the same prebuilt tasks for any goal, for
callers that plan outside the engine.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from vibe_engine.core.task.models import Task


@runtime_checkable
class Planner(Protocol):
    async def create_tasks(self, goal: str) -> list[Task]:
        """Return the pending tasks that accomplish *goal*."""
        ...


class StaticPlanner:
    """Planner that returns a fixed, pre-built task list."""

    def __init__(self, tasks: list[Task]):
        self._tasks = tasks

    async def create_tasks(self, goal: str) -> list[Task]:
        return [t.model_copy(deep=True) for t in self._tasks]
