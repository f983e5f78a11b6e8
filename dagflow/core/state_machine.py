"""
Task and workflow state machines.

Task lifecycle:

    PENDING ──> RUNNING ──> COMPLETED
       │  ▲        │
       │  │        ├──> RETRYING ──> RUNNING
       ▼  │        │
    BLOCKED        └──> FAILED

Tasks with dependencies start BLOCKED and flip to PENDING once every
dependency is COMPLETED. A task whose dependency FAILED stays BLOCKED for
good. COMPLETED and FAILED are terminal.

The workflow status is never stored independently: it is always derived
from the task states with ``derive_workflow_status``.
"""

from collections.abc import Iterable

from dagflow.core.errors import InvalidTransitionError
from dagflow.core.models import TaskNode, TaskState, WorkflowState

VALID_TRANSITIONS: dict[TaskState, set[TaskState]] = {
    TaskState.PENDING: {TaskState.RUNNING, TaskState.BLOCKED},
    TaskState.BLOCKED: {TaskState.PENDING},
    TaskState.RETRYING: {TaskState.RUNNING},
    TaskState.RUNNING: {TaskState.COMPLETED, TaskState.RETRYING, TaskState.FAILED},
    TaskState.COMPLETED: set(),
    TaskState.FAILED: set(),
}

CLAIMABLE_STATES = (TaskState.PENDING, TaskState.RETRYING)

_ACTIVE_STATES = (TaskState.PENDING, TaskState.RUNNING, TaskState.RETRYING)


def can_transition(current: TaskState, target: TaskState) -> bool:
    return TaskState(target) in VALID_TRANSITIONS[TaskState(current)]


def check_transition(current: TaskState, target: TaskState) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(TaskState(current), TaskState(target))


def initial_state(has_dependencies: bool) -> TaskState:
    return TaskState.BLOCKED if has_dependencies else TaskState.PENDING


def derive_workflow_status(states: Iterable[TaskState]) -> WorkflowState:
    """Aggregate task states into a workflow status.

    Any task still able to run keeps the workflow RUNNING. Otherwise a
    single FAILED task fails the workflow. A workflow whose tasks are all
    COMPLETED or BLOCKED reports COMPLETED.
    """
    states = [TaskState(s) for s in states]
    if any(s in _ACTIVE_STATES for s in states):
        return WorkflowState.RUNNING
    if any(s == TaskState.FAILED for s in states):
        return WorkflowState.FAILED
    return WorkflowState.COMPLETED


def permanently_blocked(nodes: Iterable[TaskNode]) -> set[str]:
    """Keys of tasks that can never run because a dependency failed.

    Propagates transitively until nothing changes, so it terminates on
    cyclic input as well.
    """
    nodes = list(nodes)
    doomed = {n.key for n in nodes if n.state == TaskState.FAILED}
    blocked: set[str] = set()
    changed = True
    while changed:
        changed = False
        for node in nodes:
            if node.key in blocked or node.state.is_terminal:
                continue
            if any(dep in doomed or dep in blocked for dep in node.depends_on):
                blocked.add(node.key)
                changed = True
    return blocked
