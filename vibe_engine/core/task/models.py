"""Task-related data models for the agent board.

Defines the unit of agent work (:class:`Task`), its lifecycle states, the
actor roles tasks are assigned to, and the :class:`TaskBoard` that owns a
session's tasks.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from vibe_engine.utils.exceptions import ErrorKind


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Lifecycle states for a single task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ActorType(str, Enum):
    """Roles a task can be assigned to."""

    PLANNER = "planner"
    RESEARCHER = "researcher"
    ANALYST = "analyst"
    CODER = "coder"
    COMPOSER = "composer"
    WRITER = "writer"
    CUSTOM = "custom"


class Task(BaseModel):
    """A single unit of agent work.

    Attributes:
        id: Stable unique identifier.
        title: Short human-readable title.
        description: What the actor should do.
        actor_type: The role responsible for execution.
        status: Current lifecycle state.
        dependencies: IDs of tasks in the same board that must complete first.
        result: Actor-specific payload, only set when ``completed``.
        error: Failure description, only set when ``failed``.
        error_kind: Taxonomy entry for *error*.
        attempt: Dispatch counter; results from older attempts are discarded.
        started_at: When the current attempt was dispatched.
        completed_at: When the current attempt finished (success or failure).
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    title: str
    description: str = ""
    actor_type: ActorType = ActorType.CUSTOM
    status: TaskStatus = TaskStatus.PENDING
    dependencies: list[str] = []
    result: dict[str, Any] | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    attempt: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None


class TaskBoard(BaseModel):
    """All tasks of one orchestration session.

    Attributes:
        id: Board identifier.
        title: Display title.
        goal: The request the planner decomposed into tasks.
        tasks: Every task owned by the board.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    title: str = ""
    goal: str = ""
    tasks: list[Task] = []
    created_at: datetime = Field(default_factory=utc_now)

    def get_task(self, task_id: str) -> Task | None:
        """Look up a task by its ID.  Returns ``None`` when not found."""
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def get_tasks_by_status(self, status: TaskStatus) -> list[Task]:
        """Return all tasks that currently have the given *status*."""
        return [t for t in self.tasks if t.status == status]


class TaskEvent(BaseModel):
    """Change notification published after every status mutation."""

    board_id: str
    task_id: str
    old_status: TaskStatus
    new_status: TaskStatus
    task: Task
