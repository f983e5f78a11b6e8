import asyncio
import logging
import subprocess

from dagflow import config
from dagflow.core.errors import TaskRunError
from dagflow.core.models import ReadyTask

logger = logging.getLogger(__name__)


def _combined_output(result: subprocess.CompletedProcess) -> str:
    parts = (result.stdout or "", result.stderr or "")
    return "\n".join(part.strip() for part in parts if part.strip())


async def run_shell_task(task: ReadyTask) -> str:
    """Run ``config["command"]`` in a worker thread and return its output.

    A non-zero exit, a timeout or a command that cannot be started raises
    TaskRunError.
    """
    command = task.config.get("command")
    if not command:
        raise TaskRunError(f"Task '{task.name}' has no 'command' in its config")

    timeout = int(task.config.get("timeout", config.SHELL_TIMEOUT))
    logger.debug("Task %s running command: %s", task.name, command)
    try:
        result = await asyncio.to_thread(
            subprocess.run,
            command,
            shell=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise TaskRunError(f"Command timed out after {timeout}s: {command}") from None
    except OSError as e:
        raise TaskRunError(f"Could not start command for task '{task.name}': {e}") from e

    output = _combined_output(result)
    if result.returncode != 0:
        raise TaskRunError(
            f"Command exited with status {result.returncode}: {output or command}"
        )
    return output
