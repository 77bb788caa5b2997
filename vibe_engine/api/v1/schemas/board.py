"""Request/response schemas for boards and their tasks."""

from __future__ import annotations

from pydantic import BaseModel, Field

from vibe_engine.core.task.models import ActorType, Task
from vibe_engine.engine.executor import StuckTask


class TaskCreate(BaseModel):
    """One task in a board creation request.

    ``dependencies`` refer to other tasks in the same request by ``id``.
    """

    id: str | None = None
    title: str = Field(..., min_length=1)
    description: str = ""
    actor_type: ActorType = ActorType.CUSTOM
    dependencies: list[str] = []

    def to_task(self) -> Task:
        fields = self.model_dump(exclude_none=True)
        return Task(**fields)


class BoardCreateRequest(BaseModel):
    title: str = ""
    goal: str = ""
    tasks: list[TaskCreate] = Field(..., min_length=1)
    preferred_provider: str | None = None
    start: bool = False


class BoardResponse(BaseModel):
    """Serialised view of a board suitable for the API consumer."""

    id: str
    title: str
    goal: str
    running: bool
    status_counts: dict[str, int]
    failed_count: int
    has_stuck_tasks: bool
    stuck: list[StuckTask]
    tasks: list[Task]


class DispatchResponse(BaseModel):
    board_id: str
    dispatched: list[str]


class ResetResponse(BaseModel):
    board_id: str
    reset: list[str]


class TaskResetRequest(BaseModel):
    allow_completed: bool = False
