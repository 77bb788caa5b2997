"""Owns every open board and its executor."""

from __future__ import annotations

from vibe_engine.config import Settings
from vibe_engine.core.actors.config import ActorConfig
from vibe_engine.core.llm.service import ProviderService
from vibe_engine.core.task.graph import TaskGraph
from vibe_engine.core.task.models import ActorType, Task, TaskBoard
from vibe_engine.core.task.planner import Planner
from vibe_engine.engine.executor import TaskExecutor
from vibe_engine.storage.task_store import TaskStore
from vibe_engine.utils.exceptions import BoardNotFoundError, InvalidBoardError
from vibe_engine.utils.logging import get_logger

logger = get_logger("engine.boards")


class BoardManager:
    """Creates, looks up and deletes boards; one executor per board.

    Parameters
    ----------
    service:
        Shared provider layer.
    store:
        Persistence collaborator for boards and tasks.
    settings:
        Application settings forwarded to executors.
    actor_configs:
        Per-role settings applied to every board.
    """

    def __init__(
        self,
        service: ProviderService,
        store: TaskStore,
        settings: Settings,
        *,
        actor_configs: dict[ActorType, ActorConfig] | None = None,
    ) -> None:
        self.service = service
        self.store = store
        self.settings = settings
        self.actor_configs = actor_configs or {}
        self._executors: dict[str, TaskExecutor] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_board(
        self,
        *,
        title: str = "",
        goal: str = "",
        tasks: list[Task] | None = None,
        planner: Planner | None = None,
        preferred_provider: str | None = None,
    ) -> TaskExecutor:
        """Create a board from explicit *tasks* or from *planner* output.

        Raises :class:`InvalidBoardError` (or its subclass
        :class:`CyclicDependencyError`) for an invalid dependency relation.
        """
        if tasks is None:
            if planner is None:
                raise InvalidBoardError("A board needs either tasks or a planner")
            tasks = await planner.create_tasks(goal)

        board = TaskBoard(title=title, goal=goal, tasks=tasks)
        graph = TaskGraph(board)
        await self.store.save_board(graph.snapshot())
        executor = self._attach(graph, preferred_provider)
        logger.info("board_created", board_id=board.id, tasks=len(graph))
        return executor

    def get(self, board_id: str) -> TaskExecutor:
        executor = self._executors.get(board_id)
        if executor is None:
            raise BoardNotFoundError(board_id)
        return executor

    def list_boards(self) -> list[TaskExecutor]:
        return list(self._executors.values())

    async def delete_board(self, board_id: str) -> None:
        executor = self.get(board_id)
        await executor.close()
        del self._executors[board_id]
        await self.store.delete_board(board_id)
        logger.info("board_deleted", board_id=board_id)

    async def restore(self) -> list[str]:
        """Re-open every board found in the store.

        Tasks stored as ``in_progress`` have no execution behind them after
        a restart and surface as stuck until reset.
        """
        restored: list[str] = []
        for board_id in await self.store.list_boards():
            if board_id in self._executors:
                continue
            board = await self.store.load_board(board_id)
            if board is None:
                continue
            try:
                graph = TaskGraph(board)
            except InvalidBoardError as exc:
                logger.error("board_restore_failed", board_id=board_id, error=str(exc))
                continue
            self._attach(graph, None)
            restored.append(board_id)
        if restored:
            logger.info("boards_restored", board_ids=restored)
        return restored

    async def shutdown(self) -> None:
        for executor in list(self._executors.values()):
            await executor.close()
        self._executors.clear()

    def _attach(self, graph: TaskGraph, preferred_provider: str | None) -> TaskExecutor:
        executor = TaskExecutor(
            graph,
            self.service,
            self.store,
            self.settings,
            actor_configs=self.actor_configs,
            preferred_provider=preferred_provider,
        )
        self._executors[graph.board_id] = executor
        return executor
