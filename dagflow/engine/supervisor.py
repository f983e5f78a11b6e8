import asyncio
import logging

from dagflow.core.retry import RetryPolicy
from dagflow.db.database import SessionLocal
from dagflow.engine.executor import WorkflowExecutor
from dagflow.runners.registry import TaskRunner, default_registry

logger = logging.getLogger(__name__)


class ExecutionSupervisor:
    """Runs one executor loop per workflow execution as a background task."""

    def __init__(
        self,
        session_factory=SessionLocal,
        runner: TaskRunner | None = None,
        policy: RetryPolicy | None = None,
        poll_interval: float | None = None,
        running_timeout: float | None = None,
    ):
        self.session_factory = session_factory
        self.runner = runner or default_registry()
        self.policy = policy or RetryPolicy.from_config()
        self.poll_interval = poll_interval
        self.running_timeout = running_timeout
        self._stop = asyncio.Event()
        self._loops: dict[str, asyncio.Task] = {}

    @property
    def active(self) -> list[str]:
        return [eid for eid, task in self._loops.items() if not task.done()]

    def start(self, execution_id: str) -> asyncio.Task:
        if execution_id in self._loops and not self._loops[execution_id].done():
            return self._loops[execution_id]

        executor = WorkflowExecutor(
            execution_id,
            runner=self.runner,
            session_factory=self.session_factory,
            policy=self.policy,
            poll_interval=self.poll_interval,
            running_timeout=self.running_timeout,
        )
        task = asyncio.create_task(
            executor.run(self._stop), name=f"dagflow-execution-{execution_id}"
        )
        task.add_done_callback(self._on_done)
        self._loops[execution_id] = task
        return task

    def _on_done(self, task: asyncio.Task):
        execution_id = task.get_name().removeprefix("dagflow-execution-")
        self._loops.pop(execution_id, None)
        if task.cancelled():
            logger.info("Executor for %s cancelled", execution_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Executor for %s crashed: %s",
                execution_id,
                exc,
                exc_info=exc,
            )

    async def shutdown(self, timeout: float = 5.0):
        """Ask every loop to stop at its next poll, cancelling stragglers."""
        self._stop.set()
        loops = list(self._loops.values())
        if not loops:
            return
        done, pending = await asyncio.wait(loops, timeout=timeout)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
