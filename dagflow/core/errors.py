class DagflowError(Exception):
    """Base class for all dagflow errors."""


class ValidationError(DagflowError):
    """A workflow definition was rejected before anything was persisted."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class NotFoundError(DagflowError):
    pass


class TaskRunError(DagflowError):
    """Raised by task runners. Always recovered through the retry policy."""


class InfrastructureError(DagflowError):
    """Persistence is unreachable or a transaction failed."""


class DeadlockError(DagflowError):
    """An execution stopped making progress with unfinished tasks left."""


class InvalidTransitionError(DagflowError):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Illegal task transition {current} -> {target}")


class ClaimConflictError(DagflowError):
    """The stored state changed between resolve and claim."""

    def __init__(self, task_execution_id: str, expected):
        self.task_execution_id = task_execution_id
        self.expected = expected
        super().__init__(
            f"Task execution '{task_execution_id}' is no longer {expected}"
        )
