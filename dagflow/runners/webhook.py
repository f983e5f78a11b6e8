import logging

import httpx

from dagflow import config
from dagflow.core.errors import TaskRunError
from dagflow.core.models import ReadyTask

logger = logging.getLogger(__name__)


async def run_http_task(task: ReadyTask) -> str:
    """Call ``config["url"]``. Transport errors and 4xx/5xx responses raise TaskRunError.

    Optional config keys: ``method`` (default POST), ``payload``, ``headers``,
    ``timeout``. Without a payload the task identity is sent as JSON.
    """
    url = task.config.get("url")
    if not url:
        raise TaskRunError(f"Task '{task.name}' has no 'url' in its config")

    method = str(task.config.get("method", "POST")).upper()
    payload = task.config.get(
        "payload",
        {"task": task.name, "task_execution_id": task.task_execution_id},
    )
    timeout = float(task.config.get("timeout", config.HTTP_TIMEOUT))

    try:
        async with httpx.AsyncClient() as client:
            resp = await client.request(
                method,
                url,
                json=None if method == "GET" else payload,
                headers=task.config.get("headers"),
                timeout=timeout,
            )
    except httpx.HTTPError as e:
        raise TaskRunError(f"Request to {url} failed: {e}") from e

    if resp.status_code >= 400:
        raise TaskRunError(
            f"{method} {url} returned {resp.status_code}: {resp.text[:500]}"
        )
    logger.debug("Task %s: %s %s -> %s", task.name, method, url, resp.status_code)
    return resp.text
