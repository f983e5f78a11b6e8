from datetime import datetime, timedelta, timezone

from dagflow.core.models import TaskNode, TaskState
from dagflow.core.resolver import resolve

S = TaskState
NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_zero_dependency_task_is_ready():
    result = resolve([TaskNode("A", S.PENDING)], NOW)
    assert result.ready == ["A"]
    assert result.transitions == 0


def test_incomplete_dependency_is_not_ready():
    nodes = [
        TaskNode("A", S.RUNNING),
        TaskNode("B", S.BLOCKED, ("A",)),
        TaskNode("C", S.PENDING, ("A",)),
    ]
    result = resolve(nodes, NOW)
    assert result.ready == []
    assert result.promote == []
    assert result.block == []


def test_blocked_task_promoted_when_dependencies_complete():
    nodes = [
        TaskNode("A", S.COMPLETED),
        TaskNode("B", S.COMPLETED),
        TaskNode("C", S.BLOCKED, ("A", "B")),
    ]
    result = resolve(nodes, NOW)
    assert result.promote == ["C"]
    assert result.ready == ["C"]


def test_pending_task_with_failed_dependency_is_blocked():
    nodes = [TaskNode("A", S.FAILED), TaskNode("B", S.PENDING, ("A",))]
    result = resolve(nodes, NOW)
    assert result.ready == []
    assert result.block == ["B"]


def test_blocked_task_with_failed_dependency_stays_blocked():
    nodes = [TaskNode("A", S.FAILED), TaskNode("B", S.BLOCKED, ("A",))]
    result = resolve(nodes, NOW)
    assert result.ready == []
    assert result.promote == []


def test_retrying_task_waits_for_backoff():
    later = NOW + timedelta(seconds=10)
    nodes = [TaskNode("A", S.RETRYING, next_retry_at=later)]
    assert resolve(nodes, NOW).ready == []
    assert resolve(nodes, later).ready == ["A"]


def test_ready_order_follows_input_order():
    nodes = [TaskNode(name, S.PENDING) for name in ["c", "a", "b"]]
    assert resolve(nodes, NOW).ready == ["c", "a", "b"]


def test_terminal_and_running_tasks_never_ready():
    nodes = [TaskNode("A", S.COMPLETED), TaskNode("B", S.FAILED), TaskNode("C", S.RUNNING)]
    assert resolve(nodes, NOW).ready == []
