"""Board and task persistence.

The executor writes every task transition through a :class:`TaskStore` and
reads it back on each refresh cycle.  Two implementations ship:

  - :class:`InMemoryTaskStore`: process-local, the default
  - :class:`JsonFileTaskStore`: one JSON document per board under a directory
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiofiles  # type: ignore[import-untyped]

from vibe_engine.core.task.models import Task, TaskBoard
from vibe_engine.utils.exceptions import BoardNotFoundError
from vibe_engine.utils.logging import get_logger

logger = get_logger("storage.task_store")


@runtime_checkable
class TaskStore(Protocol):
    async def save_board(self, board: TaskBoard) -> None: ...

    async def load_board(self, board_id: str) -> TaskBoard | None: ...

    async def delete_board(self, board_id: str) -> None: ...

    async def list_boards(self) -> list[str]: ...

    async def load_tasks(self, board_id: str) -> list[Task]: ...

    async def save_task(self, board_id: str, task: Task) -> None: ...


class InMemoryTaskStore:
    """Keeps boards in a dict keyed by board ID."""

    def __init__(self) -> None:
        self._boards: dict[str, TaskBoard] = {}

    async def save_board(self, board: TaskBoard) -> None:
        self._boards[board.id] = board.model_copy(deep=True)

    async def load_board(self, board_id: str) -> TaskBoard | None:
        board = self._boards.get(board_id)
        return board.model_copy(deep=True) if board is not None else None

    async def delete_board(self, board_id: str) -> None:
        self._boards.pop(board_id, None)

    async def list_boards(self) -> list[str]:
        return list(self._boards)

    async def load_tasks(self, board_id: str) -> list[Task]:
        board = self._boards.get(board_id)
        if board is None:
            return []
        return [t.model_copy(deep=True) for t in board.tasks]

    async def save_task(self, board_id: str, task: Task) -> None:
        board = self._boards.get(board_id)
        if board is None:
            raise BoardNotFoundError(board_id)
        _upsert(board, task)


class JsonFileTaskStore:
    """Stores each board as ``<directory>/<board_id>.json``.

    Writes go to a temporary file that then replaces the document, so a
    reader never sees a partial board.

    Parameters
    ----------
    directory:
        Root directory; created if it does not exist.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _path(self, board_id: str) -> Path:
        return self.directory / f"{board_id}.json"

    async def save_board(self, board: TaskBoard) -> None:
        async with self._lock:
            await self._write(board)

    async def load_board(self, board_id: str) -> TaskBoard | None:
        async with self._lock:
            return await self._read(board_id)

    async def delete_board(self, board_id: str) -> None:
        async with self._lock:
            path = self._path(board_id)
            if path.exists():
                path.unlink()
                logger.info("board_deleted", board_id=board_id, path=str(path))

    async def list_boards(self) -> list[str]:
        return sorted(p.stem for p in self.directory.glob("*.json"))

    async def load_tasks(self, board_id: str) -> list[Task]:
        board = await self.load_board(board_id)
        return board.tasks if board is not None else []

    async def save_task(self, board_id: str, task: Task) -> None:
        async with self._lock:
            board = await self._read(board_id)
            if board is None:
                raise BoardNotFoundError(board_id)
            _upsert(board, task)
            await self._write(board)

    async def _read(self, board_id: str) -> TaskBoard | None:
        path = self._path(board_id)
        if not path.exists():
            return None
        async with aiofiles.open(path, mode="r", encoding="utf-8") as fh:
            raw = await fh.read()
        return TaskBoard.model_validate_json(raw)

    async def _write(self, board: TaskBoard) -> None:
        path = self._path(board.id)
        tmp_path = path.with_suffix(".json.tmp")
        async with aiofiles.open(tmp_path, mode="w", encoding="utf-8") as fh:
            await fh.write(board.model_dump_json(indent=2))
        os.replace(tmp_path, path)
        logger.debug("board_written", board_id=board.id, tasks=len(board.tasks))


def _upsert(board: TaskBoard, task: Task) -> None:
    for index, existing in enumerate(board.tasks):
        if existing.id == task.id:
            board.tasks[index] = task.model_copy(deep=True)
            return
    board.tasks.append(task.model_copy(deep=True))


def create_task_store(store_dir: str) -> TaskStore:
    """Return a :class:`JsonFileTaskStore` for *store_dir*, or in-memory when empty."""
    if store_dir:
        return JsonFileTaskStore(store_dir)
    return InMemoryTaskStore()
