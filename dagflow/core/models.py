from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class TaskState(str, Enum):
    PENDING = "PENDING"
    BLOCKED = "BLOCKED"
    RUNNING = "RUNNING"
    RETRYING = "RETRYING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED)

    def __str__(self) -> str:
        return self.value


class WorkflowState(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowState.COMPLETED, WorkflowState.FAILED)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TaskSpec:
    """A task as declared by the user: name, type tag and opaque config."""

    name: str
    type: str = "noop"
    config: dict[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    max_retries: int | None = None


@dataclass(frozen=True)
class TaskNode:
    """Resolver view of one task execution."""

    key: str
    state: TaskState
    depends_on: tuple[str, ...] = ()
    next_retry_at: datetime | None = None


@dataclass(frozen=True)
class ReadyTask:
    """A task execution handed to the task runner."""

    task_execution_id: str
    task_id: str
    name: str
    type: str
    config: dict[str, Any]
    state: TaskState
    retry_count: int = 0
    max_retries: int = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
