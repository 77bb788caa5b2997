"""Board executor -- drives a board's tasks to completion.

The :class:`TaskExecutor` is the only writer of its board's
:class:`~vibe_engine.core.task.graph.TaskGraph` apart from explicit user
resets.  Each refresh cycle it:

1. Reconciles the graph with the task store.
2. Observes stuck tasks.
3. Dispatches every ready task as its own asyncio task.

Per task it builds the actor's request, resolves a provider, runs the
generation inside the request envelope and records ``completed`` or
``failed``.  A completed task immediately dispatches its newly ready
dependents.  Nothing is retried automatically; :meth:`reset_stuck` is the
manual retry path.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from vibe_engine.config import Settings
from vibe_engine.core.actors.builder import build_request
from vibe_engine.core.actors.config import ActorConfig, default_actor_configs
from vibe_engine.core.actors.results import extract_result
from vibe_engine.core.llm.failure_classifier import classify_error, format_task_error
from vibe_engine.core.llm.selector import ProviderResolution
from vibe_engine.core.llm.service import ProviderService
from vibe_engine.core.task.graph import TaskGraph, TaskListener
from vibe_engine.core.task.models import ActorType, Task, TaskEvent, TaskStatus, utc_now
from vibe_engine.engine.ticker import RefreshTicker
from vibe_engine.storage.task_store import TaskStore
from vibe_engine.utils.exceptions import (
    InvalidBoardError,
    InvalidTransitionError,
    LLMError,
    RequestCancelledError,
    StaleAttemptError,
)
from vibe_engine.utils.logging import get_logger

logger = get_logger("engine.executor")


class FallbackNotice(BaseModel):
    """Published when a task ran on a substitute provider."""

    board_id: str
    task_id: str
    requested: str
    provider_id: str
    reason: str


class StuckTask(BaseModel):
    """A task needing operator attention.

    ``reason`` is ``failed``, ``orphaned`` (in progress with no execution
    behind it) or ``overdue`` (in progress past the stuck threshold).
    """

    task_id: str
    status: TaskStatus
    reason: str


FallbackListener = Callable[[FallbackNotice], None]


class TaskExecutor:
    """Poll-and-dispatch loop for one board.

    Parameters
    ----------
    graph:
        The board's task graph.
    service:
        Provider layer used for selection and generation.
    store:
        Persistence collaborator; every transition is written through it.
    settings:
        Supplies the refresh interval and stuck threshold.
    actor_configs:
        Per-role settings; roles without an entry use the defaults.
    preferred_provider:
        Provider requested for this board's tasks; ``None`` uses the
        configured preference.
    clock:
        Returns "now"; replaced in tests.
    """

    def __init__(
        self,
        graph: TaskGraph,
        service: ProviderService,
        store: TaskStore,
        settings: Settings,
        *,
        actor_configs: dict[ActorType, ActorConfig] | None = None,
        preferred_provider: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.graph = graph
        self.service = service
        self.store = store
        self.settings = settings
        self.actor_configs = default_actor_configs()
        self.actor_configs.update(actor_configs or {})
        self.preferred_provider = preferred_provider
        self.clock = clock

        self._ticker = RefreshTicker(
            settings.refresh_interval_seconds,
            self.tick,
            name=f"board:{graph.board_id}",
        )
        self._running: dict[str, asyncio.Task[None]] = {}
        self._failed_seen: set[str] = set()
        self._fatal: InvalidTransitionError | None = None
        self._stopping = False
        self._started = False
        self._dirty: dict[str, Task] = {}
        self._flush_task: asyncio.Task[None] | None = None
        self._fallback_listeners: list[FallbackListener] = []
        self._unsubscribe = graph.subscribe(self._on_task_event)

    @property
    def board_id(self) -> str:
        return self.graph.board_id

    @property
    def started(self) -> bool:
        return self._started

    def running_task_ids(self) -> set[str]:
        return set(self._running)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, listener: TaskListener) -> Callable[[], None]:
        """Register *listener* for this board's task events."""
        return self.graph.subscribe(listener)

    def on_fallback(self, listener: FallbackListener) -> Callable[[], None]:
        self._fallback_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._fallback_listeners:
                self._fallback_listeners.remove(listener)

        return unsubscribe

    def status_counts(self) -> dict[str, int]:
        return self.graph.status_counts()

    def failed_count(self) -> int:
        return self.graph.failed_count()

    def is_ready(self, task_id: str) -> bool:
        return self.graph.is_ready(task_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> list[str]:
        """Start the refresh loop and run one cycle immediately."""
        self._stopping = False
        if not self._started:
            self._started = True
            self._ticker.start()
            logger.info("executor_started", board_id=self.board_id, tasks=len(self.graph))
        return await self.tick()

    async def stop(self) -> None:
        """Stop the loop and interrupt running tasks.

        Interrupted tasks return to ``pending`` and are picked up again by
        the next :meth:`start` or :meth:`trigger`.
        """
        self._stopping = True
        try:
            await self._ticker.stop()
            interrupted = [tid for tid in list(self._running) if self._interrupt(tid, "stopped")]
            await self._drain()
            await self.flush()
        finally:
            self._stopping = False
            self._started = False
        logger.info("executor_stopped", board_id=self.board_id, interrupted=len(interrupted))

    async def close(self) -> None:
        """Stop and detach from the graph."""
        await self.stop()
        self._unsubscribe()

    async def trigger(self) -> list[str]:
        """Run one refresh cycle now."""
        return await self.tick()

    async def wait_idle(self) -> None:
        """Wait for every running task and pending store write.

        Re-raises a fatal :class:`InvalidTransitionError` hit by an
        execution since the last call.
        """
        await self._drain()
        await self.flush()
        if self._fatal is not None:
            fatal, self._fatal = self._fatal, None
            raise fatal

    async def run_until_settled(self) -> list[Task]:
        """Dispatch and wait until nothing is running and nothing is ready."""
        while True:
            await self.tick()
            await self.wait_idle()
            if not self._running and not self.graph.ready_tasks():
                return self.graph.tasks()

    # ------------------------------------------------------------------
    # Refresh cycle
    # ------------------------------------------------------------------

    async def tick(self) -> list[str]:
        """Reconcile, observe stuck state and dispatch ready tasks.

        Returns the IDs dispatched by this cycle.
        """
        await self._reconcile()
        self._observe()
        return self._dispatch_ready()

    async def _reconcile(self) -> None:
        try:
            stored = await self.store.load_tasks(self.board_id)
        except Exception:
            logger.warning("store_reconcile_failed", board_id=self.board_id, exc_info=True)
            return
        missing = [t for t in stored if t.id not in self.graph]
        if not missing:
            return
        try:
            added = self.graph.add_tasks(missing)
        except InvalidBoardError as exc:
            logger.error("store_tasks_rejected", board_id=self.board_id, error=str(exc))
            return
        logger.info("store_tasks_added", board_id=self.board_id, task_ids=added)

    def _observe(self) -> None:
        self._failed_seen = {t.id for t in self.graph.tasks_with_status(TaskStatus.FAILED)}
        stuck = self.stuck_tasks()
        if stuck:
            logger.info(
                "stuck_tasks_observed",
                board_id=self.board_id,
                tasks={s.task_id: s.reason for s in stuck},
            )

    def _dispatch_ready(self) -> list[str]:
        if self._stopping:
            return []
        dispatched = []
        for task_id in self.graph.task_ids():
            if self.graph.is_ready(task_id):
                self._dispatch(task_id)
                dispatched.append(task_id)
        return dispatched

    def _dispatch(self, task_id: str) -> None:
        attempt = self.graph.dispatch(task_id)
        logger.info("task_dispatched", board_id=self.board_id, task_id=task_id, attempt=attempt)
        execution = asyncio.create_task(
            self._execute(task_id, attempt),
            name=f"vibe:{self.board_id}:{task_id}:{attempt}",
        )
        self._running[task_id] = execution
        execution.add_done_callback(lambda t, tid=task_id: self._execution_finished(tid, t))

    def _execution_finished(self, task_id: str, execution: asyncio.Task[None]) -> None:
        if self._running.get(task_id) is execution:
            del self._running[task_id]
        if not execution.cancelled() and execution.exception() is not None:
            logger.error(
                "task_execution_crashed",
                board_id=self.board_id,
                task_id=task_id,
                error=str(execution.exception()),
            )

    # ------------------------------------------------------------------
    # Stuck tasks
    # ------------------------------------------------------------------

    def stuck_tasks(self) -> list[StuckTask]:
        """Tasks failed for at least one refresh cycle, or in progress but
        orphaned or running past ``stuck_after_seconds``."""
        now = self.clock()
        stuck: list[StuckTask] = []
        for task in self.graph.tasks():
            if task.status == TaskStatus.FAILED and task.id in self._failed_seen:
                stuck.append(StuckTask(task_id=task.id, status=task.status, reason="failed"))
            elif task.status == TaskStatus.IN_PROGRESS:
                reason = self._in_progress_stuck_reason(task, now)
                if reason:
                    stuck.append(StuckTask(task_id=task.id, status=task.status, reason=reason))
        return stuck

    def has_stuck_tasks(self) -> bool:
        return bool(self.stuck_tasks())

    def _in_progress_stuck_reason(self, task: Task, now: datetime) -> str | None:
        if task.id not in self._running:
            return "orphaned"
        if task.started_at is not None:
            elapsed = (now - task.started_at).total_seconds()
            if elapsed >= self.settings.stuck_after_seconds:
                return "overdue"
        return None

    async def reset_stuck(self) -> list[str]:
        """Reset every failed task and every orphaned or overdue in-progress
        task to ``pending``, then run one dispatch cycle.

        Returns the IDs that were reset.
        """
        now = self.clock()
        reset: list[str] = []
        for task in self.graph.tasks():
            if task.status == TaskStatus.FAILED:
                self.graph.reset(task.id)
                reset.append(task.id)
            elif task.status == TaskStatus.IN_PROGRESS and self._in_progress_stuck_reason(task, now):
                self._interrupt(task.id, "reset")
                reset.append(task.id)

        logger.info("stuck_tasks_reset", board_id=self.board_id, task_ids=reset)
        await self._drain(only=set(reset))
        await self.tick()
        return reset

    async def reset_task(self, task_id: str, *, allow_completed: bool = False) -> Task:
        """Explicit user reset of one task, followed by a dispatch cycle.

        ``completed`` tasks are only reset with *allow_completed*; a pending
        task cannot be reset.
        """
        task = self.graph.get(task_id)
        if task.status == TaskStatus.IN_PROGRESS:
            self._interrupt(task_id, "reset")
            await self._drain(only={task_id})
        else:
            self.graph.reset(task_id, allow_completed=allow_completed)
        logger.info("task_reset", board_id=self.board_id, task_id=task_id, old_status=task.status.value)
        await self.tick()
        return self.graph.get(task_id)

    def _interrupt(self, task_id: str, reason: str) -> bool:
        """Return an in-progress task to ``pending`` and cancel its execution."""
        task = self.graph.get(task_id)
        if task.status != TaskStatus.IN_PROGRESS:
            return False
        self.graph.reset(task_id)
        self.service.requests.cancel(self._label(task_id, task.attempt), reason)
        execution = self._running.get(task_id)
        if execution is not None:
            execution.cancel()
        logger.info("task_interrupted", board_id=self.board_id, task_id=task_id, reason=reason)
        return True

    async def _drain(self, only: set[str] | None = None) -> None:
        while True:
            pending = [t for tid, t in self._running.items() if only is None or tid in only]
            if not pending:
                return
            await asyncio.wait(pending)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _label(self, task_id: str, attempt: int) -> str:
        return f"{self.board_id}:{task_id}:{attempt}"

    async def _execute(self, task_id: str, attempt: int) -> None:
        task = self.graph.get(task_id)
        try:
            config = self.actor_configs.get(task.actor_type) or ActorConfig()
            request = build_request(task, config, self.graph.dependency_results(task_id))

            resolution = await self.service.selector.resolve(self.preferred_provider)
            if resolution.substituted:
                self._publish_fallback(task_id, resolution)
            if resolution.substituted or not request.model_id:
                request = request.model_copy(update={"model_id": resolution.model_id})

            provider_id = resolution.provider_id
            generation = await self.service.requests.run(
                lambda token: self.service.generate(provider_id, request, token),
                timeout=self.service.timeout_for(provider_id),
                label=self._label(task_id, attempt),
            )
            payload = extract_result(task.actor_type, generation)
        except asyncio.CancelledError:
            logger.info("task_execution_cancelled", board_id=self.board_id, task_id=task_id, attempt=attempt)
            raise
        except RequestCancelledError as exc:
            self._record_interrupted(task_id, attempt, exc)
            return
        except Exception as exc:
            self._record_failure(task_id, attempt, exc)
            return

        self._record_success(task_id, attempt, payload)

    def _record_success(self, task_id: str, attempt: int, payload: dict[str, Any]) -> None:
        if not self._apply(task_id, TaskStatus.COMPLETED, attempt, result=payload):
            return
        logger.info(
            "task_completed",
            board_id=self.board_id,
            task_id=task_id,
            attempt=attempt,
            provider=payload.get("provider"),
        )
        if self._stopping:
            return
        for dependent_id in sorted(self.graph.dependents_of(task_id)):
            if self.graph.is_ready(dependent_id):
                self._dispatch(dependent_id)

    def _record_failure(self, task_id: str, attempt: int, exc: Exception) -> None:
        classified = classify_error(exc)
        message = f"{exc.provider}: {exc.detail}" if isinstance(exc, LLMError) else classified.message
        error = format_task_error(classified.kind, message)
        if not self._apply(
            task_id,
            TaskStatus.FAILED,
            attempt,
            error=error,
            error_kind=classified.kind,
        ):
            return
        logger.warning(
            "task_failed",
            board_id=self.board_id,
            task_id=task_id,
            attempt=attempt,
            kind=classified.kind.value,
            matched_rule=classified.matched_rule,
            error=message,
        )

    def _record_interrupted(self, task_id: str, attempt: int, exc: RequestCancelledError) -> None:
        if self._apply(task_id, TaskStatus.PENDING, attempt):
            logger.info("task_requeued", board_id=self.board_id, task_id=task_id, reason=exc.reason)

    def _apply(self, task_id: str, status: TaskStatus, attempt: int, **fields: Any) -> bool:
        try:
            self.graph.transition(task_id, status, attempt=attempt, **fields)
        except StaleAttemptError as exc:
            logger.info(
                "stale_result_discarded",
                board_id=self.board_id,
                task_id=task_id,
                attempt=exc.attempt,
                current_attempt=exc.current_attempt,
            )
            return False
        except InvalidTransitionError as exc:
            self._fatal = exc
            logger.error("scheduler_fatal", board_id=self.board_id, task_id=task_id, error=str(exc))
            return False
        return True

    def _publish_fallback(self, task_id: str, resolution: ProviderResolution) -> None:
        notice = FallbackNotice(
            board_id=self.board_id,
            task_id=task_id,
            requested=resolution.requested,
            provider_id=resolution.provider_id,
            reason=resolution.reason,
        )
        for listener in list(self._fallback_listeners):
            try:
                listener(notice)
            except Exception:
                logger.warning("fallback_listener_error", board_id=self.board_id, exc_info=True)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _on_task_event(self, event: TaskEvent) -> None:
        if event.new_status != TaskStatus.FAILED:
            self._failed_seen.discard(event.task_id)
        self._dirty[event.task_id] = event.task
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._flush_task is not None and not self._flush_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._flush_task = loop.create_task(self._flush())

    async def _flush(self) -> None:
        while self._dirty:
            task_id = next(iter(self._dirty))
            task = self._dirty.pop(task_id)
            try:
                await self.store.save_task(self.board_id, task)
            except Exception:
                logger.warning("task_persist_failed", board_id=self.board_id, task_id=task_id, exc_info=True)

    async def flush(self) -> None:
        """Wait until every task change has been written to the store."""
        while True:
            current = self._flush_task
            if current is not None and not current.done():
                await current
                continue
            if not self._dirty:
                return
            self._flush_task = asyncio.create_task(self._flush())
