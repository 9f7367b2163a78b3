"""Workspace dependency graphs.

The dependency graph used for cascade detection maps each package to the
packages that depend on it (an edge A → B means "B depends on A"), so
releasing A must also release B.

Cycles are rejected up front: a cyclic workspace is a configuration error,
and cascade propagation over it would have no meaningful order.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping, Sequence

from .errors import DependencyCycleError

DependencyGraph = dict[str, list[str]]


def topo_sort(deps: Mapping[str, Sequence[str]]) -> list[str]:
    """Order packages so that every package follows its dependencies.

    Kahn's algorithm. The initial ready set is visited alphabetically and
    each node releases its dependents in alphabetical order, so the result
    is deterministic. Dependencies on names outside ``deps`` are ignored.

        topo_sort({"a": ["b"], "b": ["c"], "c": []}) → ["c", "b", "a"]

    Raises:
        DependencyCycleError: Naming the packages that could not be ordered.
    """
    pending = {name: len({d for d in names if d in deps}) for name, names in deps.items()}
    dependents: dict[str, set[str]] = {name: set() for name in deps}
    for name, names in deps.items():
        for dep in names:
            if dep in deps:
                dependents[dep].add(name)

    ready = deque(sorted(name for name, count in pending.items() if count == 0))
    order: list[str] = []
    while ready:
        node = ready.popleft()
        order.append(node)
        for dependent in sorted(dependents[node]):
            pending[dependent] -= 1
            if pending[dependent] == 0:
                ready.append(dependent)

    # leftovers are on a cycle or downstream of one
    if len(order) != len(deps):
        raise DependencyCycleError(list(set(deps) - set(order)))
    return order


def build_dependency_graph(deps: Mapping[str, Sequence[str]]) -> DependencyGraph:
    """Build the reverse (dependents) graph from a package → deps map.

    Every package in ``deps`` gets an entry, even with no dependents.
    Dependencies on names outside the workspace are ignored.

    Raises:
        DependencyCycleError: If the workspace dependencies form a cycle.
    """
    topo_sort(deps)
    graph: DependencyGraph = {name: [] for name in deps}
    for name, names in deps.items():
        for dep in names:
            if dep in graph and name not in graph[dep]:
                graph[dep].append(name)
    return {name: sorted(dependents) for name, dependents in graph.items()}


def ensure_acyclic(graph: Mapping[str, Sequence[str]]) -> None:
    """Reject a dependents graph that contains a cycle.

    Raises:
        DependencyCycleError: Naming the packages that are part of, or only
            reachable through, a cycle.
    """
    # Invert dependents back into dependencies and reuse the topological sort.
    deps: dict[str, list[str]] = {name: [] for name in graph}
    for name, dependents in graph.items():
        for dependent in dependents:
            deps.setdefault(dependent, []).append(name)
    topo_sort(deps)
