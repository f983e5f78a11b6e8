from collections.abc import Iterable, Sequence

from dagflow.core.errors import ValidationError

Edge = tuple[str, str]


def find_graph_errors(task_names: Sequence[str], edges: Iterable[Edge]) -> list[str]:
    """Validate a task graph. Returns a list of errors (empty = valid).

    An edge ``(a, b)`` means task ``a`` depends on task ``b``.
    """
    errors = []
    edges = list(edges)

    if len(task_names) == 0:
        errors.append("Workflow must have at least one task")
        return errors

    seen = set()
    for name in task_names:
        if not name:
            errors.append("Each task must have a non-empty 'name'")
            continue
        if name in seen:
            errors.append(f"Duplicate task name: '{name}'")
        seen.add(name)

    for src, dst in edges:
        if src not in seen or dst not in seen:
            errors.append(f"Invalid dependency: '{src}' depends on '{dst}'")
        elif src == dst:
            errors.append(f"Task '{src}' cannot depend on itself")

    if not errors:
        cycle = find_cycle(task_names, edges)
        if cycle:
            errors.append(
                "Workflow contains cyclic dependencies: " + " -> ".join(cycle)
            )

    return errors


def validate_graph(task_names: Sequence[str], edges: Iterable[Edge]) -> None:
    errors = find_graph_errors(task_names, edges)
    if errors:
        raise ValidationError(errors)


def _adjacency(task_names: Sequence[str], edges: Iterable[Edge]) -> dict[str, list[str]]:
    adj: dict[str, list[str]] = {name: [] for name in task_names}
    for src, dst in edges:
        adj.setdefault(src, []).append(dst)
        adj.setdefault(dst, [])
    return adj


def find_cycle(task_names: Sequence[str], edges: Iterable[Edge]) -> list[str] | None:
    """Detect cycles using DFS with three-color marking.

    Uses an explicit stack so deep graphs do not hit the recursion limit.
    Returns the nodes on the cycle (first node repeated at the end), or
    None when the graph is acyclic.
    """
    adj = _adjacency(task_names, edges)
    WHITE, GRAY, BLACK = 0, 1, 2
    color = {node: WHITE for node in adj}

    for root in adj:
        if color[root] != WHITE:
            continue
        color[root] = GRAY
        path = [root]
        stack = [(root, iter(adj[root]))]
        while stack:
            node, neighbors = stack[-1]
            advanced = False
            for neighbor in neighbors:
                if color[neighbor] == GRAY:
                    return path[path.index(neighbor):] + [neighbor]
                if color[neighbor] == WHITE:
                    color[neighbor] = GRAY
                    path.append(neighbor)
                    stack.append((neighbor, iter(adj[neighbor])))
                    advanced = True
                    break
            if not advanced:
                color[node] = BLACK
                path.pop()
                stack.pop()
    return None


def topological_order(task_names: Sequence[str], edges: Iterable[Edge]) -> list[str]:
    """Order tasks so every task comes after its dependencies.

    Ties keep declaration order. Raises ValidationError on a cycle.
    """
    adj = _adjacency(task_names, edges)
    remaining = {node: len(set(deps)) for node, deps in adj.items()}
    dependents: dict[str, list[str]] = {node: [] for node in adj}
    for node, deps in adj.items():
        for dep in set(deps):
            dependents[dep].append(node)

    order = []
    ready = [node for node in adj if remaining[node] == 0]
    while ready:
        node = ready.pop(0)
        order.append(node)
        for dependent in dependents[node]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                ready.append(dependent)

    if len(order) != len(adj):
        raise ValidationError(["Workflow contains cyclic dependencies"])
    return order
