"""
In-memory workflow execution, without persistence.

Runs the same resolver, state machine and retry policy as the persisted
executor, but keeps all task state in an ExecutionContext owned by a single
InMemoryExecutor. Graphs are not validated here, so this executor also
guards against graphs that never make progress: an iteration that changes no
task state while unfinished work remains raises DeadlockError.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from dagflow import config
from dagflow.core.errors import DeadlockError
from dagflow.core.models import (
    ReadyTask,
    TaskNode,
    TaskSpec,
    TaskState,
    WorkflowState,
    utcnow,
)
from dagflow.core.resolver import resolve
from dagflow.core.retry import RetryPolicy
from dagflow.core.state_machine import (
    check_transition,
    derive_workflow_status,
    initial_state,
    permanently_blocked,
)
from dagflow.runners.registry import TaskRunner, default_registry

logger = logging.getLogger(__name__)


@dataclass
class MemoryTask:
    id: str
    spec: TaskSpec
    state: TaskState
    max_retries: int
    retry_count: int = 0
    next_retry_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None


class ExecutionContext:
    """Task state for one in-memory workflow execution."""

    def __init__(self, tasks: list[TaskSpec], default_max_retries: int = 3):
        self.execution_id = str(uuid.uuid4())
        self.tasks: dict[str, MemoryTask] = {}
        self.transitions = 0
        for spec in tasks:
            max_retries = spec.max_retries
            if max_retries is None:
                max_retries = default_max_retries
            self.tasks[spec.name] = MemoryTask(
                id=str(uuid.uuid4()),
                spec=spec,
                state=initial_state(bool(spec.depends_on)),
                max_retries=max_retries,
            )

    def nodes(self) -> list[TaskNode]:
        return [
            TaskNode(
                key=name,
                state=task.state,
                depends_on=tuple(task.spec.depends_on),
                next_retry_at=task.next_retry_at,
            )
            for name, task in self.tasks.items()
        ]

    def transition(self, name: str, target: TaskState, **changes):
        task = self.tasks[name]
        check_transition(task.state, target)
        task.state = target
        for key, value in changes.items():
            setattr(task, key, value)
        self.transitions += 1

    def states(self) -> dict[str, TaskState]:
        return {name: task.state for name, task in self.tasks.items()}

    @property
    def status(self) -> WorkflowState:
        return derive_workflow_status(self.states().values())

    @property
    def settled(self) -> bool:
        """True when every task is terminal or can never run."""
        blocked = permanently_blocked(self.nodes())
        return all(
            task.state.is_terminal or name in blocked
            for name, task in self.tasks.items()
        )


class InMemoryExecutor:
    def __init__(
        self,
        tasks: list[TaskSpec],
        runner: TaskRunner | None = None,
        policy: RetryPolicy | None = None,
        poll_interval: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.policy = policy or RetryPolicy.from_config()
        self.context = ExecutionContext(tasks, self.policy.max_retries)
        self.runner = runner or default_registry()
        self.poll_interval = (
            config.POLL_INTERVAL if poll_interval is None else poll_interval
        )
        self.clock = clock

    async def run(self) -> ExecutionContext:
        ctx = self.context
        while True:
            before = ctx.transitions
            resolution = resolve(ctx.nodes(), self.clock())

            for name in resolution.block:
                ctx.transition(name, TaskState.BLOCKED)
                logger.info("Task %s blocked", name)
            for name in resolution.promote:
                ctx.transition(name, TaskState.PENDING)

            if resolution.ready:
                await asyncio.gather(*(self._dispatch(name) for name in resolution.ready))

            if ctx.settled:
                break

            if ctx.transitions == before:
                waiting = [
                    t.next_retry_at
                    for t in ctx.tasks.values()
                    if t.state == TaskState.RETRYING and t.next_retry_at is not None
                ]
                if not waiting:
                    stuck = sorted(
                        name
                        for name, task in ctx.tasks.items()
                        if not task.state.is_terminal
                    )
                    raise DeadlockError(
                        f"Deadlock detected: no progress possible for {stuck}"
                    )
                delay = (min(waiting) - self.clock()).total_seconds()
                await asyncio.sleep(max(0.0, min(delay, self.poll_interval)))

        logger.info(
            "Execution %s finished with status %s: %s",
            ctx.execution_id,
            ctx.status,
            {name: str(state) for name, state in ctx.states().items()},
        )
        return ctx

    async def _dispatch(self, name: str):
        ctx = self.context
        task = ctx.tasks[name]
        ready = ReadyTask(
            task_execution_id=task.id,
            task_id=name,
            name=name,
            type=task.spec.type,
            config=dict(task.spec.config),
            state=task.state,
            retry_count=task.retry_count,
            max_retries=task.max_retries,
        )
        ctx.transition(name, TaskState.RUNNING, started_at=self.clock(), next_retry_at=None)

        try:
            await self.runner(ready)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            decision = self.policy.on_failure(
                task.retry_count, error, self.clock(), max_retries=task.max_retries
            )
            ctx.transition(
                name,
                decision.state,
                retry_count=decision.retry_count,
                error=decision.error,
                next_retry_at=decision.next_retry_at,
                completed_at=decision.completed_at,
            )
            if decision.is_terminal:
                logger.error("Task %s failed after %d attempts", name, decision.retry_count)
            else:
                logger.warning(
                    "Task %s scheduled for retry %d/%d",
                    name,
                    decision.retry_count,
                    task.max_retries,
                )
        else:
            ctx.transition(name, TaskState.COMPLETED, completed_at=self.clock())
            logger.info("Task %s completed", name)


async def run_in_memory(tasks: list[TaskSpec], **kwargs) -> ExecutionContext:
    return await InMemoryExecutor(tasks, **kwargs).run()
