from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from dagflow.core.models import TaskNode, TaskState


@dataclass
class Resolution:
    ready: list[str] = field(default_factory=list)
    promote: list[str] = field(default_factory=list)
    block: list[str] = field(default_factory=list)

    @property
    def transitions(self) -> int:
        return len(self.promote) + len(self.block)


def resolve(nodes: Iterable[TaskNode], now: datetime) -> Resolution:
    """Work out which tasks may be dispatched at ``now``.

    Returns the keys that are ready, in input order, plus the BLOCKED tasks
    whose dependencies all completed (``promote``, also ready) and the
    PENDING tasks that can no longer run (``block``). The caller persists
    ``promote`` and ``block``.
    """
    nodes = list(nodes)
    states = {n.key: n.state for n in nodes}
    result = Resolution()

    for node in nodes:
        dep_states = [states.get(dep) for dep in node.depends_on]
        deps_completed = all(s == TaskState.COMPLETED for s in dep_states)

        if node.state == TaskState.PENDING:
            if any(s in (TaskState.FAILED, TaskState.BLOCKED) for s in dep_states):
                result.block.append(node.key)
            elif deps_completed:
                result.ready.append(node.key)
        elif node.state == TaskState.BLOCKED:
            if deps_completed:
                result.promote.append(node.key)
                result.ready.append(node.key)
        elif node.state == TaskState.RETRYING:
            if node.next_retry_at is not None and node.next_retry_at <= now:
                result.ready.append(node.key)

    return result
