"""Dependency-aware view over one board's tasks.

The :class:`TaskGraph` owns the dependency edges of a board, answers
readiness queries, and is the only place task status is mutated.  Every
mutation goes through :meth:`TaskGraph.transition` (or its thin wrappers
:meth:`~TaskGraph.dispatch` and :meth:`~TaskGraph.reset`), which enforces
the legal transition table::

    pending      --dispatch-->      in_progress
    in_progress  --success-->       completed
    in_progress  --failure-->       failed
    failed       --reset-->         pending
    in_progress  --reset (stuck)--> pending

Subscribers receive a :class:`~vibe_engine.core.task.models.TaskEvent`
after each applied mutation.
"""

from __future__ import annotations

import threading
from collections import defaultdict, deque
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from vibe_engine.core.task.models import (
    Task,
    TaskBoard,
    TaskEvent,
    TaskStatus,
    utc_now,
)
from vibe_engine.utils.exceptions import (
    ConcurrentTransitionError,
    CyclicDependencyError,
    ErrorKind,
    InvalidBoardError,
    InvalidTransitionError,
    StaleAttemptError,
    TaskNotFoundError,
)
from vibe_engine.utils.logging import get_logger

logger = get_logger("task.graph")

TaskListener = Callable[[TaskEvent], None]

_LEGAL_TRANSITIONS: frozenset[tuple[TaskStatus, TaskStatus]] = frozenset(
    {
        (TaskStatus.PENDING, TaskStatus.IN_PROGRESS),
        (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED),
        (TaskStatus.IN_PROGRESS, TaskStatus.FAILED),
        (TaskStatus.FAILED, TaskStatus.PENDING),
        (TaskStatus.IN_PROGRESS, TaskStatus.PENDING),
    }
)


class TaskGraph:
    """Authoritative view over a single :class:`TaskBoard`.

    Parameters
    ----------
    board:
        The board to wrap.  Tasks are copied; the graph is the system of
        record for status from then on.

    Raises
    ------
    CyclicDependencyError
        If a task depends on itself or the dependencies form a cycle.
    InvalidBoardError
        If two tasks share an ID.
    """

    def __init__(self, board: TaskBoard) -> None:
        self.board_id = board.id
        self.title = board.title
        self.goal = board.goal
        self._tasks: dict[str, Task] = {}
        self._dependents: dict[str, set[str]] = defaultdict(set)
        self._listeners: list[TaskListener] = []
        self._lock = threading.Lock()
        self._applying: set[str] = set()

        self._insert(board.tasks)

    # ------------------------------------------------------------------
    # Construction & validation
    # ------------------------------------------------------------------

    def add_tasks(self, tasks: Iterable[Task]) -> list[str]:
        """Add new tasks (e.g. appended by the planner) to the graph.

        Tasks whose ID already exists are ignored.  A task depending on an ID
        that is neither on the board nor in the batch is deferred, together
        with anything in the batch that depends on it; offering it again once
        the prerequisite exists adds it with its edges intact.  The whole
        batch is rejected if it would introduce a cycle.  Returns the added
        IDs.
        """
        new_tasks = [t for t in tasks if t.id not in self._tasks]
        deferred = self._unresolved(new_tasks)
        if deferred:
            logger.info("tasks_deferred", board_id=self.board_id, task_ids=sorted(deferred))
            new_tasks = [t for t in new_tasks if t.id not in deferred]
        if not new_tasks:
            return []
        previous = dict(self._tasks)
        try:
            self._insert(new_tasks)
        except InvalidBoardError:
            self._tasks = previous
            self._rebuild_dependents()
            raise
        return [t.id for t in new_tasks]

    def _unresolved(self, batch: list[Task]) -> set[str]:
        """IDs in *batch* whose dependencies cannot all be resolved yet."""
        known = set(self._tasks) | {t.id for t in batch}
        deferred: set[str] = set()
        changed = True
        while changed:
            changed = False
            for task in batch:
                if task.id in deferred:
                    continue
                if any(d not in known or d in deferred for d in task.dependencies):
                    deferred.add(task.id)
                    changed = True
        return deferred

    def _insert(self, tasks: Iterable[Task]) -> None:
        for task in tasks:
            if task.id in self._tasks:
                raise InvalidBoardError(f"Duplicate task id on board {self.board_id}: {task.id}")
            copy = task.model_copy(deep=True)
            # Dependencies have set semantics.
            copy.dependencies = list(dict.fromkeys(copy.dependencies))
            if copy.id in copy.dependencies:
                raise CyclicDependencyError(f"Task {copy.id} depends on itself")
            self._tasks[copy.id] = copy

        self._drop_unknown_dependencies()
        self._rebuild_dependents()
        self.execution_waves()

    def _drop_unknown_dependencies(self) -> None:
        """Remove references to tasks that are not on this board."""
        for task in self._tasks.values():
            unknown = [d for d in task.dependencies if d not in self._tasks]
            if unknown:
                logger.warning(
                    "unknown_dependency",
                    board_id=self.board_id,
                    task_id=task.id,
                    missing_deps=unknown,
                )
                task.dependencies = [d for d in task.dependencies if d in self._tasks]

    def _rebuild_dependents(self) -> None:
        self._dependents = defaultdict(set)
        for task in self._tasks.values():
            for dep_id in task.dependencies:
                self._dependents[dep_id].add(task.id)

    def execution_waves(self) -> list[list[str]]:
        """Return waves of task IDs via Kahn's algorithm.

        Tasks within a wave have no dependencies on each other.  Waves are
        returned in dependency order with IDs sorted for determinism.

        Raises :class:`CyclicDependencyError` if the graph has a cycle.
        """
        in_degree: dict[str, int] = {tid: len(t.dependencies) for tid, t in self._tasks.items()}
        current_wave: deque[str] = deque(tid for tid, deg in in_degree.items() if deg == 0)

        waves: list[list[str]] = []
        processed = 0

        while current_wave:
            wave = sorted(current_wave)
            waves.append(wave)
            next_wave: deque[str] = deque()
            for tid in wave:
                processed += 1
                for dependent_id in self._dependents.get(tid, ()):
                    in_degree[dependent_id] -= 1
                    if in_degree[dependent_id] == 0:
                        next_wave.append(dependent_id)
            current_wave = next_wave

        if processed != len(self._tasks):
            cyclic = sorted(tid for tid, deg in in_degree.items() if deg > 0)
            raise CyclicDependencyError(
                f"Cyclic dependency detected on board {self.board_id} "
                f"among tasks: {', '.join(cyclic)}"
            )
        return waves

    # ------------------------------------------------------------------
    # Readiness queries
    # ------------------------------------------------------------------

    def is_ready(self, task_id: str) -> bool:
        """``True`` iff the task is pending and every dependency completed."""
        task = self._require(task_id)
        return task.status == TaskStatus.PENDING and self._dependencies_completed(task)

    def ready_tasks(self) -> set[str]:
        """Return the IDs of every task satisfying :meth:`is_ready`."""
        return {tid for tid in self._tasks if self.is_ready(tid)}

    def dependents_of(self, task_id: str) -> set[str]:
        """Return the IDs of tasks that list *task_id* as a dependency."""
        self._require(task_id)
        return set(self._dependents.get(task_id, ()))

    def _dependencies_completed(self, task: Task) -> bool:
        return all(self._tasks[dep].status == TaskStatus.COMPLETED for dep in task.dependencies)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def dispatch(self, task_id: str) -> int:
        """Move a ready task to ``in_progress`` and return its new attempt number."""
        task = self.transition(task_id, TaskStatus.IN_PROGRESS)
        return task.attempt

    def reset(self, task_id: str, *, allow_completed: bool = False) -> Task:
        """Return a ``failed`` or ``in_progress`` task to ``pending``.

        ``completed`` tasks are only accepted with *allow_completed*, which is
        reserved for an explicit user reset.

        Clears result, error and timestamps.  Dependency edges are left
        untouched.  The attempt counter advances so results still in flight
        for the previous attempt are rejected as stale.
        """
        return self.transition(task_id, TaskStatus.PENDING, allow_completed=allow_completed)

    def transition(
        self,
        task_id: str,
        new_status: TaskStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        error_kind: ErrorKind | None = None,
        attempt: int | None = None,
        allow_completed: bool = False,
    ) -> Task:
        """Apply a status change, enforcing the legal transition table.

        Parameters
        ----------
        task_id:
            Task to mutate.
        new_status:
            Target status.
        result:
            Success payload (``completed`` only).
        error, error_kind:
            Failure description (``failed`` only).
        attempt:
            When given, the mutation only applies if it matches the task's
            current attempt; otherwise :class:`StaleAttemptError` is raised
            and nothing changes.
        allow_completed:
            Also accept ``completed -> pending`` (explicit user reset only).

        Returns a snapshot of the mutated task.

        Raises
        ------
        InvalidTransitionError
            For any move outside the table, or dispatching a task whose
            dependencies are not all completed.
        ConcurrentTransitionError
            If another transition on the same task is still being applied.
        """
        with self._applying_guard(task_id, new_status):
            task = self._require(task_id)
            old_status = task.status

            if attempt is not None and attempt != task.attempt:
                raise StaleAttemptError(task_id, attempt, task.attempt)

            explicit_reset = allow_completed and (old_status, new_status) == (
                TaskStatus.COMPLETED,
                TaskStatus.PENDING,
            )
            if (old_status, new_status) not in _LEGAL_TRANSITIONS and not explicit_reset:
                logger.error(
                    "invalid_transition",
                    board_id=self.board_id,
                    task_id=task_id,
                    old_status=old_status.value,
                    new_status=new_status.value,
                )
                raise InvalidTransitionError(task_id, old_status.value, new_status.value)

            if new_status == TaskStatus.IN_PROGRESS and not self._dependencies_completed(task):
                logger.error(
                    "invalid_transition",
                    board_id=self.board_id,
                    task_id=task_id,
                    reason="dependencies_not_completed",
                )
                raise InvalidTransitionError(
                    task_id,
                    old_status.value,
                    new_status.value,
                    "dependencies not completed",
                )

            self._apply(task, new_status, result=result, error=error, error_kind=error_kind)

            logger.debug(
                "task_transition",
                board_id=self.board_id,
                task_id=task_id,
                old_status=old_status.value,
                new_status=new_status.value,
                attempt=task.attempt,
            )
            snapshot = task.model_copy(deep=True)
            self._notify(
                TaskEvent(
                    board_id=self.board_id,
                    task_id=task_id,
                    old_status=old_status,
                    new_status=new_status,
                    task=snapshot,
                )
            )
            return snapshot

    @staticmethod
    def _apply(
        task: Task,
        new_status: TaskStatus,
        *,
        result: dict[str, Any] | None,
        error: str | None,
        error_kind: ErrorKind | None,
    ) -> None:
        now = utc_now()
        task.status = new_status

        if new_status == TaskStatus.IN_PROGRESS:
            task.attempt += 1
            task.started_at = now
            task.completed_at = None
            task.result = None
            task.error = None
            task.error_kind = None
        elif new_status == TaskStatus.COMPLETED:
            task.result = result if result is not None else {}
            task.error = None
            task.error_kind = None
            task.completed_at = now
        elif new_status == TaskStatus.FAILED:
            task.result = None
            task.error = error or "Unknown error"
            task.error_kind = error_kind or ErrorKind.UNKNOWN
            task.completed_at = now
        else:
            task.attempt += 1
            task.result = None
            task.error = None
            task.error_kind = None
            task.started_at = None
            task.completed_at = None

    @contextmanager
    def _applying_guard(self, task_id: str, new_status: TaskStatus) -> Iterator[None]:
        with self._lock:
            if task_id in self._applying:
                current = self._tasks[task_id].status.value if task_id in self._tasks else "unknown"
                logger.error(
                    "concurrent_transition",
                    board_id=self.board_id,
                    task_id=task_id,
                    new_status=new_status.value,
                )
                raise ConcurrentTransitionError(
                    task_id,
                    current,
                    new_status.value,
                    "another transition on this task is still being applied",
                )
            self._applying.add(task_id)
        try:
            yield
        finally:
            with self._lock:
                self._applying.discard(task_id)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, listener: TaskListener) -> Callable[[], None]:
        """Register *listener* for task events.  Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: TaskEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except InvalidTransitionError as exc:
                # The listener's own mutation was rejected; the applied one stands.
                logger.error(
                    "task_listener_invalid_transition",
                    board_id=self.board_id,
                    task_id=event.task_id,
                    error=str(exc),
                )
            except Exception:
                logger.warning(
                    "task_listener_error",
                    board_id=self.board_id,
                    task_id=event.task_id,
                    exc_info=True,
                )

    # ------------------------------------------------------------------
    # Read-only snapshots
    # ------------------------------------------------------------------

    def get(self, task_id: str) -> Task:
        """Return a snapshot of one task."""
        return self._require(task_id).model_copy(deep=True)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def task_ids(self) -> list[str]:
        return list(self._tasks)

    def tasks(self) -> list[Task]:
        """Return snapshots of every task in insertion order."""
        return [t.model_copy(deep=True) for t in self._tasks.values()]

    def tasks_with_status(self, status: TaskStatus) -> list[Task]:
        return [t.model_copy(deep=True) for t in self._tasks.values() if t.status == status]

    def status_counts(self) -> dict[str, int]:
        """Return ``{status: count}`` for every status, zeros included."""
        counts = {status.value: 0 for status in TaskStatus}
        for task in self._tasks.values():
            counts[task.status.value] += 1
        return counts

    def failed_count(self) -> int:
        return sum(1 for t in self._tasks.values() if t.status == TaskStatus.FAILED)

    def dependency_results(self, task_id: str) -> dict[str, dict[str, Any]]:
        """Return the results of *task_id*'s completed dependencies.

        Keys are dependency IDs; values carry the dependency's title, actor
        and result payload.
        """
        task = self._require(task_id)
        results: dict[str, dict[str, Any]] = {}
        for dep_id in task.dependencies:
            dep = self._tasks[dep_id]
            if dep.status == TaskStatus.COMPLETED:
                results[dep_id] = {
                    "title": dep.title,
                    "actor_type": dep.actor_type.value,
                    "result": dict(dep.result or {}),
                }
        return results

    def snapshot(self) -> TaskBoard:
        """Return the board as a detached :class:`TaskBoard`."""
        return TaskBoard(id=self.board_id, title=self.title, goal=self.goal, tasks=self.tasks())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task
