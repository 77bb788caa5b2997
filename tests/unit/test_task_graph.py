"""Tests for the task graph: readiness, transitions, resets and events."""
import pytest

from vibe_engine.core.task.graph import TaskGraph
from vibe_engine.core.task.models import Task, TaskBoard, TaskStatus
from vibe_engine.utils.exceptions import (
    ConcurrentTransitionError,
    CyclicDependencyError,
    ErrorKind,
    InvalidBoardError,
    InvalidTransitionError,
    StaleAttemptError,
    TaskNotFoundError,
)


def make_graph(*tasks: Task) -> TaskGraph:
    return TaskGraph(TaskBoard(id="board-1", title="Test", tasks=list(tasks)))


@pytest.fixture
def chain():
    """A -> B -> C"""
    return make_graph(
        Task(id="A", title="Research"),
        Task(id="B", title="Analyse", dependencies=["A"]),
        Task(id="C", title="Write", dependencies=["B"]),
    )


class TestConstruction:
    def test_self_dependency_rejected(self):
        with pytest.raises(CyclicDependencyError):
            make_graph(Task(id="A", title="a", dependencies=["A"]))

    def test_cycle_rejected(self):
        with pytest.raises(CyclicDependencyError, match="A, B"):
            make_graph(
                Task(id="A", title="a", dependencies=["B"]),
                Task(id="B", title="b", dependencies=["A"]),
            )

    def test_duplicate_ids_rejected(self):
        with pytest.raises(InvalidBoardError):
            make_graph(Task(id="A", title="a"), Task(id="A", title="again"))

    def test_unknown_dependency_dropped(self):
        graph = make_graph(Task(id="A", title="a", dependencies=["ghost"]))
        assert graph.get("A").dependencies == []
        assert graph.is_ready("A")

    def test_duplicate_dependencies_collapse(self):
        graph = make_graph(Task(id="A", title="a"), Task(id="B", title="b", dependencies=["A", "A"]))
        assert graph.get("B").dependencies == ["A"]

    def test_graph_copies_board_tasks(self):
        task = Task(id="A", title="a")
        graph = make_graph(task)
        graph.dispatch("A")
        assert task.status == TaskStatus.PENDING

    def test_execution_waves(self, chain):
        assert chain.execution_waves() == [["A"], ["B"], ["C"]]

    def test_add_tasks_rolls_back_on_cycle(self, chain):
        with pytest.raises(CyclicDependencyError):
            chain.add_tasks(
                [
                    Task(id="D", title="d", dependencies=["E"]),
                    Task(id="E", title="e", dependencies=["D"]),
                ]
            )
        assert "D" not in chain
        assert len(chain) == 3

    def test_add_tasks_defers_unknown_dependencies(self, chain):
        added = chain.add_tasks(
            [
                Task(id="D", title="d", dependencies=["E"]),
                Task(id="F", title="f", dependencies=["D"]),
                Task(id="G", title="g", dependencies=["C"]),
            ]
        )
        assert added == ["G"]
        assert "D" not in chain
        assert "F" not in chain

        added = chain.add_tasks([Task(id="E", title="e"), Task(id="D", title="d", dependencies=["E"])])
        assert added == ["E", "D"]
        assert chain.get("D").dependencies == ["E"]
        assert chain.dependents_of("E") == {"D"}
        assert not chain.is_ready("D")

    def test_add_tasks_ignores_existing_ids(self, chain):
        added = chain.add_tasks([Task(id="A", title="dup"), Task(id="D", title="d", dependencies=["C"])])
        assert added == ["D"]
        assert chain.dependents_of("C") == {"D"}


class TestReadiness:
    def test_only_roots_ready_initially(self, chain):
        assert chain.ready_tasks() == {"A"}
        assert not chain.is_ready("B")

    def test_completion_unlocks_dependent(self, chain):
        attempt = chain.dispatch("A")
        chain.transition("A", TaskStatus.COMPLETED, result={"content": "x"}, attempt=attempt)
        assert chain.ready_tasks() == {"B"}

    def test_dispatch_before_dependencies_complete_is_rejected(self, chain):
        with pytest.raises(InvalidTransitionError, match="dependencies not completed"):
            chain.dispatch("B")
        assert chain.get("B").status == TaskStatus.PENDING

    def test_completion_unlocks_every_dependent(self):
        graph = make_graph(
            Task(id="P", title="Plan"),
            Task(id="R", title="Research", dependencies=["P"]),
            Task(id="C", title="Code", dependencies=["P"]),
        )
        assert graph.dependents_of("P") == {"R", "C"}
        assert graph.ready_tasks() == {"P"}

        attempt = graph.dispatch("P")
        graph.transition("P", TaskStatus.COMPLETED, result={"content": "plan"}, attempt=attempt)

        assert graph.is_ready("R")
        assert graph.is_ready("C")
        assert graph.ready_tasks() == {"R", "C"}

    def test_dependents_of(self, chain):
        assert chain.dependents_of("A") == {"B"}
        assert chain.dependents_of("C") == set()

    def test_unknown_task(self, chain):
        with pytest.raises(TaskNotFoundError):
            chain.is_ready("nope")


class TestTransitions:
    def test_dispatch_stamps_start_and_bumps_attempt(self, chain):
        attempt = chain.dispatch("A")
        task = chain.get("A")
        assert attempt == 1
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.started_at is not None

    def test_failure_records_error_and_kind(self, chain):
        attempt = chain.dispatch("A")
        task = chain.transition(
            "A",
            TaskStatus.FAILED,
            error="[NETWORK] ollama: connection refused",
            error_kind=ErrorKind.NETWORK,
            attempt=attempt,
        )
        assert task.error == "[NETWORK] ollama: connection refused"
        assert task.error_kind == ErrorKind.NETWORK
        assert task.result is None
        assert chain.failed_count() == 1

    @pytest.mark.parametrize(
        "start, target",
        [
            (TaskStatus.PENDING, TaskStatus.COMPLETED),
            (TaskStatus.PENDING, TaskStatus.FAILED),
            (TaskStatus.PENDING, TaskStatus.PENDING),
        ],
    )
    def test_illegal_moves_from_pending(self, chain, start, target):
        assert chain.get("A").status == start
        with pytest.raises(InvalidTransitionError) as excinfo:
            chain.transition("A", target)
        assert excinfo.value.kind == ErrorKind.INVALID_TRANSITION

    def test_completed_is_terminal(self, chain):
        attempt = chain.dispatch("A")
        chain.transition("A", TaskStatus.COMPLETED, attempt=attempt)
        for target in (TaskStatus.FAILED, TaskStatus.IN_PROGRESS, TaskStatus.PENDING):
            with pytest.raises(InvalidTransitionError):
                chain.transition("A", target)

    def test_explicit_reset_of_completed_task(self, chain):
        attempt = chain.dispatch("A")
        chain.transition("A", TaskStatus.COMPLETED, result={"content": "x"}, attempt=attempt)
        task = chain.reset("A", allow_completed=True)
        assert task.status == TaskStatus.PENDING
        assert task.result is None

    def test_reset_from_failed_restores_readiness(self, chain):
        attempt = chain.dispatch("A")
        chain.transition("A", TaskStatus.FAILED, error="boom", attempt=attempt)
        task = chain.reset("A")
        assert task.status == TaskStatus.PENDING
        assert task.error is None
        assert task.error_kind is None
        assert task.started_at is None
        assert task.completed_at is None
        assert chain.is_ready("A")
        assert chain.get("B").dependencies == ["A"]

    def test_reset_from_in_progress(self, chain):
        chain.dispatch("A")
        assert chain.reset("A").status == TaskStatus.PENDING

    def test_stale_attempt_is_rejected_without_mutation(self, chain):
        first = chain.dispatch("A")
        chain.reset("A")
        second = chain.dispatch("A")
        assert second > first
        with pytest.raises(StaleAttemptError):
            chain.transition("A", TaskStatus.COMPLETED, result={"late": True}, attempt=first)
        assert chain.get("A").status == TaskStatus.IN_PROGRESS

    def test_late_success_never_overwrites_failure(self, chain):
        attempt = chain.dispatch("A")
        chain.transition("A", TaskStatus.FAILED, error="timeout", attempt=attempt)
        with pytest.raises(InvalidTransitionError):
            chain.transition("A", TaskStatus.COMPLETED, attempt=attempt)
        assert chain.get("A").status == TaskStatus.FAILED

    def test_exactly_one_status_in_counts(self, chain):
        chain.dispatch("A")
        counts = chain.status_counts()
        assert counts == {"pending": 2, "in_progress": 1, "completed": 0, "failed": 0}
        assert sum(counts.values()) == len(chain)


class TestObservation:
    def test_events_delivered_after_transition(self, chain):
        events = []
        chain.subscribe(events.append)
        chain.dispatch("A")
        assert len(events) == 1
        event = events[0]
        assert event.board_id == "board-1"
        assert (event.old_status, event.new_status) == (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
        assert event.task.status == TaskStatus.IN_PROGRESS

    def test_unsubscribe(self, chain):
        events = []
        unsubscribe = chain.subscribe(events.append)
        unsubscribe()
        chain.dispatch("A")
        assert events == []

    def test_listener_error_does_not_affect_graph(self, chain):
        def broken(event):
            raise RuntimeError("listener bug")

        chain.subscribe(broken)
        chain.dispatch("A")
        assert chain.get("A").status == TaskStatus.IN_PROGRESS

    def test_reentrant_transition_from_listener_is_rejected(self, chain):
        errors = []

        def meddle(event):
            try:
                chain.transition(event.task_id, TaskStatus.FAILED, error="from listener")
            except ConcurrentTransitionError as exc:
                errors.append(exc)

        chain.subscribe(meddle)
        chain.dispatch("A")
        assert len(errors) == 1
        assert chain.get("A").status == TaskStatus.IN_PROGRESS

    def test_dependency_results(self, chain):
        attempt = chain.dispatch("A")
        chain.transition("A", TaskStatus.COMPLETED, result={"content": "findings"}, attempt=attempt)
        results = chain.dependency_results("B")
        assert results == {"A": {"title": "Research", "actor_type": "custom", "result": {"content": "findings"}}}

    def test_snapshot_is_detached(self, chain):
        board = chain.snapshot()
        board.tasks[0].status = TaskStatus.FAILED
        assert chain.get("A").status == TaskStatus.PENDING
