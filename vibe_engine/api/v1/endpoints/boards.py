"""Board lifecycle and execution endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from vibe_engine.api.v1.schemas.board import (
    BoardCreateRequest,
    BoardResponse,
    DispatchResponse,
    ResetResponse,
    TaskResetRequest,
)
from vibe_engine.api.v1.schemas.common import ErrorResponse
from vibe_engine.core.task.models import Task
from vibe_engine.dependencies import get_board_manager
from vibe_engine.engine.board_manager import BoardManager
from vibe_engine.engine.executor import TaskExecutor
from vibe_engine.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _board_response(executor: TaskExecutor) -> BoardResponse:
    graph = executor.graph
    stuck = executor.stuck_tasks()
    return BoardResponse(
        id=graph.board_id,
        title=graph.title,
        goal=graph.goal,
        running=executor.started,
        status_counts=graph.status_counts(),
        failed_count=graph.failed_count(),
        has_stuck_tasks=bool(stuck),
        stuck=stuck,
        tasks=graph.tasks(),
    )


@router.post(
    "/boards",
    response_model=BoardResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}},
    summary="Create a board",
    description="Create a board from an explicit task list; optionally start executing it.",
)
async def create_board(
    body: BoardCreateRequest,
    manager: BoardManager = Depends(get_board_manager),
) -> BoardResponse:
    executor = await manager.create_board(
        title=body.title,
        goal=body.goal,
        tasks=[t.to_task() for t in body.tasks],
        preferred_provider=body.preferred_provider,
    )
    if body.start:
        await executor.start()
    return _board_response(executor)


@router.get(
    "/boards/{board_id}",
    response_model=BoardResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get board status",
)
async def get_board(board_id: str, manager: BoardManager = Depends(get_board_manager)) -> BoardResponse:
    return _board_response(manager.get(board_id))


@router.delete(
    "/boards/{board_id}",
    status_code=204,
    responses={404: {"model": ErrorResponse}},
    summary="Delete a board",
)
async def delete_board(board_id: str, manager: BoardManager = Depends(get_board_manager)) -> None:
    await manager.delete_board(board_id)


@router.post(
    "/boards/{board_id}/execute",
    response_model=DispatchResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Start executing a board",
    description=(
        "Start the board's refresh loop and dispatch every ready task.  "
        "With ``wait=true`` the call returns once nothing is running or ready."
    ),
)
async def execute_board(
    board_id: str,
    wait: bool = Query(default=False),
    manager: BoardManager = Depends(get_board_manager),
) -> DispatchResponse:
    executor = manager.get(board_id)
    dispatched = await executor.start()
    if wait:
        await executor.run_until_settled()
    logger.info("board_execute_requested", board_id=board_id, dispatched=dispatched, wait=wait)
    return DispatchResponse(board_id=board_id, dispatched=dispatched)


@router.post(
    "/boards/{board_id}/stop",
    response_model=BoardResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Stop executing a board",
)
async def stop_board(board_id: str, manager: BoardManager = Depends(get_board_manager)) -> BoardResponse:
    executor = manager.get(board_id)
    await executor.stop()
    return _board_response(executor)


@router.post(
    "/boards/{board_id}/reset-stuck",
    response_model=ResetResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Reset stuck tasks",
    description="Return failed and orphaned/overdue in-progress tasks to pending and dispatch again.",
)
async def reset_stuck(board_id: str, manager: BoardManager = Depends(get_board_manager)) -> ResetResponse:
    executor = manager.get(board_id)
    reset = await executor.reset_stuck()
    return ResetResponse(board_id=board_id, reset=reset)


@router.post(
    "/boards/{board_id}/tasks/{task_id}/reset",
    response_model=Task,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Reset one task",
)
async def reset_task(
    board_id: str,
    task_id: str,
    body: TaskResetRequest | None = None,
    manager: BoardManager = Depends(get_board_manager),
) -> Task:
    executor = manager.get(board_id)
    allow_completed = body.allow_completed if body is not None else False
    return await executor.reset_task(task_id, allow_completed=allow_completed)
