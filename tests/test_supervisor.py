import pytest

from dagflow.core.models import WorkflowState
from dagflow.core.retry import RetryPolicy
from dagflow.db import repository
from dagflow.engine.supervisor import ExecutionSupervisor

from helpers import FAST_RETRIES, PIPELINE, RecordingRunner


@pytest.mark.asyncio
async def test_supervisor_runs_execution_to_completion(db, session_factory):
    wf = repository.create_workflow(db, name="ci", tasks=PIPELINE)
    execution = repository.create_execution(db, wf.id)
    runner = RecordingRunner()
    supervisor = ExecutionSupervisor(
        session_factory=session_factory,
        runner=runner,
        policy=FAST_RETRIES,
        poll_interval=0.001,
    )

    task = supervisor.start(execution.id)
    assert supervisor.start(execution.id) is task

    assert await task == WorkflowState.COMPLETED
    assert runner.calls == ["build", "test", "deploy"]
    assert supervisor.active == []


@pytest.mark.asyncio
async def test_supervisor_shutdown_stops_waiting_loops(db, session_factory):
    wf = repository.create_workflow(db, name="ci", tasks=PIPELINE)
    execution = repository.create_execution(db, wf.id)
    supervisor = ExecutionSupervisor(
        session_factory=session_factory,
        runner=RecordingRunner(fail={"build": None}),
        policy=RetryPolicy(retry_delay=3600.0),
        poll_interval=0.01,
    )

    task = supervisor.start(execution.id)
    await supervisor.shutdown(timeout=2.0)

    assert task.done()
    assert task.result() == WorkflowState.RUNNING
