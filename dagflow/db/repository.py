import json
import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy.orm import Session

from dagflow import config
from dagflow.core.dag import validate_graph
from dagflow.core.errors import ClaimConflictError, NotFoundError
from dagflow.core.models import (
    ReadyTask,
    TaskNode,
    TaskSpec,
    TaskState,
    WorkflowState,
    utcnow,
)
from dagflow.core.resolver import resolve
from dagflow.core.retry import RetryDecision, RetryPolicy
from dagflow.core.state_machine import (
    check_transition,
    derive_workflow_status,
    initial_state,
)
from dagflow.db.tables import (
    Task,
    TaskDependency,
    TaskExecution,
    Workflow,
    WorkflowExecution,
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _new_id() -> str:
    return str(uuid.uuid4())


# ── Workflow definitions ───────────────────────────────────────────────────


def create_workflow(
    db: Session,
    name: str,
    tasks: list[TaskSpec],
    dependencies: Iterable[tuple[str, str]] = (),
    description: str | None = None,
) -> Workflow:
    """Validate the graph, then persist workflow, tasks and edges together."""
    edges = [(t.name, dep) for t in tasks for dep in t.depends_on]
    edges.extend((src, dst) for src, dst in dependencies)
    edges = list(dict.fromkeys(edges))
    validate_graph([t.name for t in tasks], edges)

    now = utcnow().isoformat()
    workflow = Workflow(
        id=_new_id(),
        name=name,
        description=description,
        version=1,
        created_at=now,
        updated_at=now,
    )
    db.add(workflow)

    task_ids = {}
    for position, spec in enumerate(tasks):
        task = Task(
            id=_new_id(),
            workflow_id=workflow.id,
            name=spec.name,
            type=spec.type,
            config=json.dumps(spec.config),
            max_retries=spec.max_retries,
            position=position,
        )
        db.add(task)
        task_ids[spec.name] = task.id

    for src, dst in edges:
        db.add(
            TaskDependency(task_id=task_ids[src], depends_on_task_id=task_ids[dst])
        )

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(workflow)
    return workflow


def get_workflow(db: Session, workflow_id: str) -> Workflow | None:
    return db.query(Workflow).filter(Workflow.id == workflow_id).first()


def get_workflow_by_name(db: Session, name: str) -> Workflow | None:
    return db.query(Workflow).filter(Workflow.name == name).first()


def list_workflows(db: Session, limit: int = 20, offset: int = 0) -> list[Workflow]:
    return (
        db.query(Workflow)
        .order_by(Workflow.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_tasks(db: Session, workflow_id: str) -> list[Task]:
    return (
        db.query(Task)
        .filter(Task.workflow_id == workflow_id)
        .order_by(Task.position)
        .all()
    )


def get_dependency_map(db: Session, workflow_id: str) -> dict[str, list[str]]:
    """Task id -> ids of the tasks it depends on."""
    rows = (
        db.query(TaskDependency)
        .join(Task, Task.id == TaskDependency.task_id)
        .filter(Task.workflow_id == workflow_id)
        .all()
    )
    deps: dict[str, list[str]] = {}
    for row in rows:
        deps.setdefault(row.task_id, []).append(row.depends_on_task_id)
    return deps


# ── Executions ─────────────────────────────────────────────────────────────


def create_execution(
    db: Session, workflow_id: str, default_max_retries: int | None = None
) -> WorkflowExecution:
    """Create a RUNNING execution and one task execution per task, atomically."""
    workflow = get_workflow(db, workflow_id)
    if not workflow:
        raise NotFoundError(f"Workflow '{workflow_id}' not found")

    if default_max_retries is None:
        default_max_retries = config.MAX_RETRIES

    tasks = get_tasks(db, workflow_id)
    deps = get_dependency_map(db, workflow_id)
    now = utcnow().isoformat()

    execution = WorkflowExecution(
        id=_new_id(),
        workflow_id=workflow_id,
        status=WorkflowState.RUNNING.value,
        started_at=now,
    )
    db.add(execution)

    for task in tasks:
        max_retries = task.max_retries
        if max_retries is None:
            max_retries = default_max_retries
        db.add(
            TaskExecution(
                id=_new_id(),
                workflow_execution_id=execution.id,
                task_id=task.id,
                position=task.position,
                state=initial_state(bool(deps.get(task.id))).value,
                retry_count=0,
                max_retries=max_retries,
            )
        )

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(execution)
    return execution


def get_execution(db: Session, execution_id: str) -> WorkflowExecution | None:
    return (
        db.query(WorkflowExecution)
        .filter(WorkflowExecution.id == execution_id)
        .first()
    )


def get_task_executions(db: Session, execution_id: str) -> list[TaskExecution]:
    return (
        db.query(TaskExecution)
        .filter(TaskExecution.workflow_execution_id == execution_id)
        .order_by(TaskExecution.position)
        .all()
    )


def get_task_execution(db: Session, task_execution_id: str) -> TaskExecution | None:
    return (
        db.query(TaskExecution).filter(TaskExecution.id == task_execution_id).first()
    )


def _require_execution(db: Session, execution_id: str) -> WorkflowExecution:
    execution = get_execution(db, execution_id)
    if not execution:
        raise NotFoundError(f"Workflow execution '{execution_id}' not found")
    return execution


def get_execution_status(db: Session, execution_id: str) -> WorkflowState:
    return WorkflowState(_require_execution(db, execution_id).status)


def _require_task_execution(db: Session, task_execution_id: str) -> TaskExecution:
    te = get_task_execution(db, task_execution_id)
    if not te:
        raise NotFoundError(f"Task execution '{task_execution_id}' not found")
    return te


def _transition_if(
    db: Session,
    task_execution_id: str,
    expected: TaskState,
    target: TaskState,
    **values,
) -> bool:
    """Conditional update: only applies while the stored state is ``expected``."""
    check_transition(expected, target)
    values["state"] = target.value
    count = (
        db.query(TaskExecution)
        .filter(
            TaskExecution.id == task_execution_id,
            TaskExecution.state == expected.value,
        )
        .update(values, synchronize_session=False)
    )
    return count == 1


def _current_states(db: Session, execution_id: str) -> dict[str, TaskState]:
    rows = (
        db.query(TaskExecution.task_id, TaskExecution.state)
        .filter(TaskExecution.workflow_execution_id == execution_id)
        .all()
    )
    return {task_id: TaskState(state) for task_id, state in rows}


# ── Readiness and transitions ──────────────────────────────────────────────


def _apply_resolution(db: Session, execution: WorkflowExecution, now: datetime):
    """Persist the resolver's promotions and blocks for one execution.

    Returns the resolution, the task executions keyed by task id, and the
    task ids whose promotion lost a race. Nothing is committed here.
    """
    rows = get_task_executions(db, execution.id)
    deps = get_dependency_map(db, execution.workflow_id)
    nodes = [
        TaskNode(
            key=row.task_id,
            state=TaskState(row.state),
            depends_on=tuple(deps.get(row.task_id, ())),
            next_retry_at=_parse(row.next_retry_at),
        )
        for row in rows
    ]
    resolution = resolve(nodes, now)
    by_task = {row.task_id: row for row in rows}

    skipped = set()
    for key in resolution.promote:
        if not _transition_if(db, by_task[key].id, TaskState.BLOCKED, TaskState.PENDING):
            skipped.add(key)
    for key in resolution.block:
        _transition_if(db, by_task[key].id, TaskState.PENDING, TaskState.BLOCKED)
    return resolution, by_task, skipped


def get_ready_tasks(db: Session, execution_id: str, now: datetime) -> list[ReadyTask]:
    """Resolve which task executions may be dispatched now.

    BLOCKED tasks whose dependencies completed are promoted to PENDING and
    PENDING tasks with a failed or blocked dependency are marked BLOCKED, in
    the same transaction.
    """
    execution = _require_execution(db, execution_id)
    tasks = {t.id: t for t in get_tasks(db, execution.workflow_id)}
    resolution, by_task, skipped = _apply_resolution(db, execution, now)
    db.commit()

    promoted = set(resolution.promote)
    ready = []
    for key in resolution.ready:
        if key in skipped:
            continue
        row = by_task[key]
        task = tasks[key]
        ready.append(
            ReadyTask(
                task_execution_id=row.id,
                task_id=task.id,
                name=task.name,
                type=task.type,
                config=json.loads(task.config or "{}"),
                state=TaskState.PENDING if key in promoted else TaskState(row.state),
                retry_count=row.retry_count,
                max_retries=row.max_retries,
            )
        )
    return ready


def claim_task_execution(
    db: Session, task_execution_id: str, expected: TaskState, now: datetime
) -> None:
    """Atomically move a task to RUNNING if it is still in ``expected``.

    Raises ClaimConflictError when another executor got there first.
    """
    claimed = _transition_if(
        db,
        task_execution_id,
        TaskState(expected),
        TaskState.RUNNING,
        started_at=_iso(now),
        next_retry_at=None,
    )
    db.commit()
    if not claimed:
        _require_task_execution(db, task_execution_id)
        raise ClaimConflictError(task_execution_id, TaskState(expected))


def complete_task_execution(
    db: Session, task_execution_id: str, now: datetime
) -> list[str]:
    """Mark a RUNNING task COMPLETED and unblock dependents that became ready.

    Returns the ids of the promoted task executions.
    """
    te = _require_task_execution(db, task_execution_id)
    execution_id = te.workflow_execution_id
    done = _transition_if(
        db,
        task_execution_id,
        TaskState.RUNNING,
        TaskState.COMPLETED,
        completed_at=_iso(now),
    )
    if not done:
        db.rollback()
        raise ClaimConflictError(task_execution_id, TaskState.RUNNING)

    execution = _require_execution(db, execution_id)
    deps = get_dependency_map(db, execution.workflow_id)
    states = _current_states(db, execution_id)
    rows = {
        task_id: te_id
        for task_id, te_id in db.query(TaskExecution.task_id, TaskExecution.id)
        .filter(TaskExecution.workflow_execution_id == execution_id)
        .all()
    }

    promoted = []
    for task_id, task_deps in deps.items():
        if te.task_id not in task_deps or states.get(task_id) != TaskState.BLOCKED:
            continue
        if all(states.get(d) == TaskState.COMPLETED for d in task_deps):
            if _transition_if(db, rows[task_id], TaskState.BLOCKED, TaskState.PENDING):
                promoted.append(rows[task_id])
    db.commit()
    return promoted


def fail_task_execution(
    db: Session,
    task_execution_id: str,
    error: str,
    policy: RetryPolicy,
    now: datetime,
) -> RetryDecision:
    """Apply the retry policy to a failed RUNNING task."""
    te = _require_task_execution(db, task_execution_id)
    decision = policy.on_failure(te.retry_count, error, now, max_retries=te.max_retries)
    applied = _transition_if(
        db,
        task_execution_id,
        TaskState.RUNNING,
        decision.state,
        retry_count=decision.retry_count,
        error=decision.error,
        next_retry_at=_iso(decision.next_retry_at),
        completed_at=_iso(decision.completed_at),
    )
    db.commit()
    if not applied:
        raise ClaimConflictError(task_execution_id, TaskState.RUNNING)
    return decision


def reclaim_stale_running(
    db: Session,
    execution_id: str,
    older_than: datetime,
    policy: RetryPolicy,
    now: datetime,
) -> list[str]:
    """Treat tasks RUNNING since before ``older_than`` as failed attempts.

    Covers rows left RUNNING by an executor that died mid-task.
    """
    _require_execution(db, execution_id)
    reclaimed = []
    for te in get_task_executions(db, execution_id):
        if te.state != TaskState.RUNNING.value:
            continue
        started = _parse(te.started_at)
        if started is None or started >= older_than:
            continue
        decision = policy.on_failure(
            te.retry_count,
            "Task exceeded its running timeout and was reclaimed",
            now,
            max_retries=te.max_retries,
        )
        count = (
            db.query(TaskExecution)
            .filter(
                TaskExecution.id == te.id,
                TaskExecution.state == TaskState.RUNNING.value,
                TaskExecution.started_at == te.started_at,
            )
            .update(
                {
                    "state": decision.state.value,
                    "retry_count": decision.retry_count,
                    "error": decision.error,
                    "next_retry_at": _iso(decision.next_retry_at),
                    "completed_at": _iso(decision.completed_at),
                },
                synchronize_session=False,
            )
        )
        if count == 1:
            reclaimed.append(te.id)
    db.commit()
    return reclaimed


def refresh_execution_status(
    db: Session, execution_id: str, now: datetime
) -> WorkflowState:
    """Recompute the execution status from its task executions and store it.

    Pending promotions are applied first. A BLOCKED task whose dependencies
    all completed (a promotion lost between two executors) is runnable, not
    finished.
    """
    execution = _require_execution(db, execution_id)
    _apply_resolution(db, execution, now)
    states = list(_current_states(db, execution_id).values())
    if not states:
        raise NotFoundError(f"No tasks found for workflow execution '{execution_id}'")

    status = derive_workflow_status(states)
    execution.status = status.value
    if status.is_terminal and not execution.completed_at:
        execution.completed_at = _iso(now)
    db.commit()
    return status
