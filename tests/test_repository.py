from datetime import timedelta

import pytest

from dagflow.core.errors import ClaimConflictError, NotFoundError, ValidationError
from dagflow.core.models import TaskSpec, TaskState, WorkflowState, utcnow
from dagflow.core.retry import RetryPolicy
from dagflow.db import repository
from dagflow.db.tables import Task, TaskDependency, Workflow

from helpers import PIPELINE


def _states(db, execution_id):
    tasks = {t.id: t.name for t in db.query(Task).all()}
    return {
        tasks[te.task_id]: TaskState(te.state)
        for te in repository.get_task_executions(db, execution_id)
    }


def _te(db, execution_id, name):
    task = db.query(Task).filter(Task.name == name).one()
    return next(
        te
        for te in repository.get_task_executions(db, execution_id)
        if te.task_id == task.id
    )


@pytest.fixture()
def execution(db):
    wf = repository.create_workflow(db, name="ci", tasks=PIPELINE)
    return repository.create_execution(db, wf.id)


def test_create_workflow_persists_tasks_and_edges(db):
    wf = repository.create_workflow(
        db,
        name="ci",
        description="pipeline",
        tasks=[TaskSpec("build"), TaskSpec("test"), TaskSpec("deploy")],
        dependencies=[("test", "build"), ("deploy", "test")],
    )
    tasks = repository.get_tasks(db, wf.id)
    assert [t.name for t in tasks] == ["build", "test", "deploy"]
    ids = {t.name: t.id for t in tasks}
    assert repository.get_dependency_map(db, wf.id) == {
        ids["test"]: [ids["build"]],
        ids["deploy"]: [ids["test"]],
    }


def test_cyclic_workflow_persists_nothing(db):
    with pytest.raises(ValidationError):
        repository.create_workflow(
            db,
            name="loop",
            tasks=[TaskSpec("A"), TaskSpec("B"), TaskSpec("C")],
            dependencies=[("A", "B"), ("B", "C"), ("C", "A")],
        )
    assert db.query(Workflow).count() == 0
    assert db.query(Task).count() == 0
    assert db.query(TaskDependency).count() == 0


def test_create_execution_initial_states(db, execution):
    assert execution.status == WorkflowState.RUNNING
    assert _states(db, execution.id) == {
        "build": TaskState.PENDING,
        "test": TaskState.BLOCKED,
        "deploy": TaskState.BLOCKED,
    }
    assert all(te.max_retries == 3 for te in repository.get_task_executions(db, execution.id))


def test_create_execution_unknown_workflow(db):
    with pytest.raises(NotFoundError):
        repository.create_execution(db, "missing")


def test_get_ready_tasks_returns_only_roots(db, execution):
    ready = repository.get_ready_tasks(db, execution.id, utcnow())
    assert [t.name for t in ready] == ["build"]
    assert ready[0].state == TaskState.PENDING
    assert ready[0].type == "build"


def test_concurrent_claims_only_one_wins(db, session_factory, execution):
    ready = repository.get_ready_tasks(db, execution.id, utcnow())[0]

    other = session_factory()
    try:
        repository.claim_task_execution(db, ready.task_execution_id, ready.state, utcnow())
        with pytest.raises(ClaimConflictError):
            repository.claim_task_execution(
                other, ready.task_execution_id, ready.state, utcnow()
            )
    finally:
        other.close()

    assert _states(db, execution.id)["build"] == TaskState.RUNNING


def test_complete_promotes_dependents(db, execution):
    build = _te(db, execution.id, "build")
    repository.claim_task_execution(db, build.id, TaskState.PENDING, utcnow())
    promoted = repository.complete_task_execution(db, build.id, utcnow())

    assert promoted == [_te(db, execution.id, "test").id]
    assert _states(db, execution.id) == {
        "build": TaskState.COMPLETED,
        "test": TaskState.PENDING,
        "deploy": TaskState.BLOCKED,
    }
    assert repository.refresh_execution_status(db, execution.id, utcnow()) == WorkflowState.RUNNING


def test_complete_requires_running(db, execution):
    build = _te(db, execution.id, "build")
    with pytest.raises(ClaimConflictError):
        repository.complete_task_execution(db, build.id, utcnow())


def test_failure_schedules_retry_then_becomes_eligible(db, execution):
    policy = RetryPolicy(max_retries=3, retry_delay=10.0)
    build = _te(db, execution.id, "build")
    now = utcnow()

    repository.claim_task_execution(db, build.id, TaskState.PENDING, now)
    decision = repository.fail_task_execution(db, build.id, "boom", policy, now)

    assert decision.state == TaskState.RETRYING
    build = _te(db, execution.id, "build")
    assert build.state == TaskState.RETRYING
    assert build.retry_count == 1
    assert build.error == "boom"

    assert repository.get_ready_tasks(db, execution.id, now) == []
    later = repository.get_ready_tasks(db, execution.id, now + timedelta(seconds=11))
    assert [t.name for t in later] == ["build"]
    assert later[0].state == TaskState.RETRYING


def test_exhausted_retries_fail_and_block_dependents(db):
    wf = repository.create_workflow(db, name="ci", tasks=PIPELINE)
    execution = repository.create_execution(db, wf.id, default_max_retries=1)
    policy = RetryPolicy(retry_delay=0.0)
    build = _te(db, execution.id, "build")
    assert build.max_retries == 1
    now = utcnow()

    repository.claim_task_execution(db, build.id, TaskState.PENDING, now)
    repository.fail_task_execution(db, build.id, "boom", policy, now)
    repository.claim_task_execution(db, build.id, TaskState.RETRYING, now)
    decision = repository.fail_task_execution(db, build.id, "boom again", policy, now)

    assert decision.is_terminal
    assert repository.get_ready_tasks(db, execution.id, now + timedelta(seconds=1)) == []
    assert _states(db, execution.id) == {
        "build": TaskState.FAILED,
        "test": TaskState.BLOCKED,
        "deploy": TaskState.BLOCKED,
    }
    status = repository.refresh_execution_status(db, execution.id, now)
    assert status == WorkflowState.FAILED
    assert repository.get_execution(db, execution.id).completed_at is not None


def test_reclaim_stale_running(db, execution):
    policy = RetryPolicy(max_retries=3, retry_delay=0.0)
    build = _te(db, execution.id, "build")
    started = utcnow() - timedelta(minutes=10)
    repository.claim_task_execution(db, build.id, TaskState.PENDING, started)

    fresh = repository.reclaim_stale_running(
        db, execution.id, started - timedelta(seconds=1), policy, utcnow()
    )
    assert fresh == []

    reclaimed = repository.reclaim_stale_running(
        db, execution.id, utcnow() - timedelta(minutes=5), policy, utcnow()
    )
    assert reclaimed == [build.id]
    build = _te(db, execution.id, "build")
    assert build.state == TaskState.RETRYING
    assert build.retry_count == 1
    assert "running timeout" in build.error


def test_refresh_unknown_execution(db):
    with pytest.raises(NotFoundError):
        repository.refresh_execution_status(db, "missing", utcnow())


def test_refresh_promotes_dependents_left_blocked(db, execution):
    # build finished but its dependent was never promoted
    build = _te(db, execution.id, "build")
    build.state = TaskState.COMPLETED.value
    db.commit()

    status = repository.refresh_execution_status(db, execution.id, utcnow())

    assert status == WorkflowState.RUNNING
    assert _states(db, execution.id)["test"] == TaskState.PENDING
