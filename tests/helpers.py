from dagflow.core.errors import TaskRunError
from dagflow.core.models import TaskSpec
from dagflow.core.retry import RetryPolicy

FAST_RETRIES = RetryPolicy(max_retries=3, retry_delay=0.0)

PIPELINE = [
    TaskSpec(name="build", type="build"),
    TaskSpec(name="test", type="test", depends_on=("build",)),
    TaskSpec(name="deploy", type="deploy", depends_on=("test",)),
]


class RecordingRunner:
    """Task runner double: records calls, fails the named tasks.

    ``fail`` maps task name -> number of failures before succeeding
    (None = always fail).
    """

    def __init__(self, fail=None):
        self.fail = dict(fail or {})
        self.calls = []

    async def __call__(self, task):
        self.calls.append(task.name)
        if task.name in self.fail:
            remaining = self.fail[task.name]
            if remaining is None:
                raise TaskRunError(f"{task.name} failed")
            if remaining > 0:
                self.fail[task.name] = remaining - 1
                raise TaskRunError(f"{task.name} failed")
        return None
