import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from dagflow.core.errors import TaskRunError
from dagflow.core.models import ReadyTask
from dagflow.runners.shell import run_shell_task
from dagflow.runners.webhook import run_http_task

TaskRunner = Callable[[ReadyTask], Awaitable[Any]]


async def run_noop_task(task: ReadyTask) -> None:
    await asyncio.sleep(float(task.config.get("duration", 0)))


class TaskRunnerRegistry:
    """Dispatches a task to the runner registered for its type tag.

    Task config is handed to the runner as-is. Types without a registered
    runner fall back to ``shell`` when the config has a ``command`` and to
    ``http`` when it has a ``url``.
    """

    def __init__(self):
        self._runners: dict[str, TaskRunner] = {}

    def register(self, task_type: str, runner: TaskRunner) -> None:
        self._runners[task_type] = runner

    def get(self, task: ReadyTask) -> TaskRunner:
        runner = self._runners.get(task.type)
        if runner is not None:
            return runner
        if "command" in task.config and "shell" in self._runners:
            return self._runners["shell"]
        if "url" in task.config and "http" in self._runners:
            return self._runners["http"]
        raise TaskRunError(f"No runner registered for task type '{task.type}'")

    async def __call__(self, task: ReadyTask) -> Any:
        return await self.get(task)(task)


def default_registry() -> TaskRunnerRegistry:
    registry = TaskRunnerRegistry()
    registry.register("shell", run_shell_task)
    registry.register("http", run_http_task)
    registry.register("noop", run_noop_task)
    return registry
