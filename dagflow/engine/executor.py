import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from dagflow import config
from dagflow.core.errors import ClaimConflictError
from dagflow.core.models import ReadyTask, WorkflowState, utcnow
from dagflow.core.retry import RetryPolicy
from dagflow.db import repository
from dagflow.db.database import SessionLocal, session_scope
from dagflow.runners.registry import TaskRunner, default_registry

logger = logging.getLogger(__name__)


class WorkflowExecutor:
    """Drives one workflow execution until it reaches a terminal status.

    Every iteration asks the resolver for eligible tasks, claims and runs
    them concurrently, and recomputes the execution status after each
    outcome. Task failures go through the retry policy and never stop the
    loop. Database failures propagate as InfrastructureError.
    """

    def __init__(
        self,
        execution_id: str,
        runner: TaskRunner | None = None,
        session_factory=SessionLocal,
        policy: RetryPolicy | None = None,
        poll_interval: float | None = None,
        running_timeout: float | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.execution_id = execution_id
        self.runner = runner or default_registry()
        self.session_factory = session_factory
        self.policy = policy or RetryPolicy.from_config()
        self.poll_interval = (
            config.POLL_INTERVAL if poll_interval is None else poll_interval
        )
        if running_timeout is None:
            running_timeout = config.RUNNING_TIMEOUT
        self.running_timeout = running_timeout or None
        self.clock = clock

    async def run(self, stop_event: asyncio.Event | None = None) -> WorkflowState:
        stop = stop_event or asyncio.Event()
        logger.info(
            "Executor started for workflow execution %s (poll interval: %ss)",
            self.execution_id,
            self.poll_interval,
        )

        status = self._refresh_status()
        while not status.is_terminal:
            self._reclaim_stale()

            ready = self._ready_tasks()
            if not ready:
                status = self._refresh_status()
                if status.is_terminal or await self._wait(stop):
                    break
                continue

            await asyncio.gather(*(self._dispatch(task) for task in ready))

            status = self._read_status()
            if status.is_terminal or await self._wait(stop):
                break

        if status.is_terminal:
            logger.info(
                "Workflow execution %s finished with status: %s",
                self.execution_id,
                status,
            )
        else:
            logger.info("Executor for %s stopped while %s", self.execution_id, status)
        return status

    async def _wait(self, stop: asyncio.Event) -> bool:
        """Sleep for one poll interval. Returns True if a stop was requested."""
        try:
            await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            return True
        except asyncio.TimeoutError:
            return False

    def _ready_tasks(self) -> list[ReadyTask]:
        with session_scope(self.session_factory) as db:
            return repository.get_ready_tasks(db, self.execution_id, self.clock())

    def _read_status(self) -> WorkflowState:
        with session_scope(self.session_factory) as db:
            return repository.get_execution_status(db, self.execution_id)

    def _refresh_status(self) -> WorkflowState:
        with session_scope(self.session_factory) as db:
            return repository.refresh_execution_status(
                db, self.execution_id, self.clock()
            )

    def _reclaim_stale(self):
        if not self.running_timeout:
            return
        now = self.clock()
        with session_scope(self.session_factory) as db:
            reclaimed = repository.reclaim_stale_running(
                db,
                self.execution_id,
                now - timedelta(seconds=self.running_timeout),
                self.policy,
                now,
            )
        for task_execution_id in reclaimed:
            logger.warning(
                "Reclaimed task execution %s stuck RUNNING for over %ss",
                task_execution_id,
                self.running_timeout,
            )

    async def _dispatch(self, task: ReadyTask):
        try:
            with session_scope(self.session_factory) as db:
                repository.claim_task_execution(
                    db, task.task_execution_id, task.state, self.clock()
                )
        except ClaimConflictError:
            logger.info("Task %s was claimed by another executor, skipping", task.name)
            return

        logger.info(
            "Running task: %s (%s, attempt %d)",
            task.name,
            task.task_id,
            task.retry_count + 1,
        )
        try:
            try:
                await self.runner(task)
            except Exception as e:
                self._record_failure(task, str(e) or e.__class__.__name__)
            else:
                with session_scope(self.session_factory) as db:
                    repository.complete_task_execution(
                        db, task.task_execution_id, self.clock()
                    )
                logger.info("Task completed: %s (%s)", task.name, task.task_id)
        except ClaimConflictError:
            logger.warning(
                "Task %s changed state while running, outcome discarded", task.name
            )
        finally:
            self._refresh_status()

    def _record_failure(self, task: ReadyTask, error: str):
        with session_scope(self.session_factory) as db:
            decision = repository.fail_task_execution(
                db, task.task_execution_id, error, self.policy, self.clock()
            )
        if decision.is_terminal:
            logger.error(
                "Task failed: %s (%s) after %d attempts | %s",
                task.name,
                task.task_id,
                decision.retry_count,
                error,
            )
        else:
            logger.warning(
                "Task failed: %s (%s) | %s; retry %d/%d at %s",
                task.name,
                task.task_id,
                error,
                decision.retry_count,
                task.max_retries,
                decision.next_retry_at.isoformat(),
            )


async def run_workflow(
    workflow_id: str,
    session_factory=SessionLocal,
    policy: RetryPolicy | None = None,
    **kwargs,
) -> tuple[str, WorkflowState]:
    """Create a new execution of ``workflow_id`` and drive it to the end."""
    policy = policy or RetryPolicy.from_config()
    with session_scope(session_factory) as db:
        execution = repository.create_execution(
            db, workflow_id, default_max_retries=policy.max_retries
        )
        execution_id = execution.id
    status = await WorkflowExecutor(
        execution_id, session_factory=session_factory, policy=policy, **kwargs
    ).run()
    return execution_id, status
