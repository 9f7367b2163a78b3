"""Cascade detection: release dependents of releasing packages.

If package A releases and B depends on A, B must release too so that it
picks up the new A. Cascades propagate transitively: when C depends on B
(but not on A), C cascades as well. Every cascade is a patch release whose
commit list holds synthetic commits naming the dependencies that triggered
it, so changelogs can explain why the package released.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Iterable, Mapping, Sequence
from datetime import datetime, timezone

from .graph import ensure_acyclic
from .models import Item, Package, ReleaseCommit, SingleClassification
from .versions import find_latest_stable_version

CASCADE_SHA = "0000000"
CASCADE_AUTHOR = "Release <release@local>"
CASCADE_FALLBACK_MESSAGE = "Cascade release"

# Builds the lifecycle-specific item for a cascading package, given the
# package and its current stable version (None on first release).
ItemBuilder = Callable[[Package, str | None], Item]


def find_cascade_names(
    releasing: Iterable[str],
    graph: Mapping[str, Sequence[str]],
    exclude: Collection[str] = (),
) -> list[str]:
    """Find every package that must cascade from ``releasing``.

    Breadth-first propagation over the dependents graph. Each package is
    visited at most once, and packages already releasing directly are never
    reported as cascades. Excluded packages are never entered, so nothing
    cascades through them.

    Args:
        releasing: Names of directly releasing packages.
        graph: Map of package name → names of packages that depend on it.
        exclude: Names that must not release.

    Returns:
        Cascading package names in discovery order.

    Raises:
        DependencyCycleError: If the graph contains a cycle.
    """
    ensure_acyclic(graph)

    queue = list(dict.fromkeys(releasing))
    visited = set(queue) | set(exclude)
    cascades: list[str] = []

    while queue:
        node = queue.pop(0)
        for dependent in graph.get(node, ()):
            if dependent in visited:
                continue
            visited.add(dependent)
            cascades.append(dependent)
            queue.append(dependent)

    return cascades


def direct_dependencies(name: str, graph: Mapping[str, Sequence[str]]) -> list[str]:
    """Names of packages ``name`` depends on directly, from the dependents graph."""
    return [dep for dep, dependents in graph.items() if name in dependents]


def make_cascade_commit(
    scope: str, message: str, date: datetime | None = None
) -> ReleaseCommit:
    """Create a synthetic ``chore(<scope>)`` commit explaining a cascade."""
    return ReleaseCommit(
        hash=CASCADE_SHA,
        author=CASCADE_AUTHOR,
        date=date or datetime.now(timezone.utc),
        classification=SingleClassification(
            type="chore", scopes=(scope,), breaking=False, message=message
        ),
    )


def detect_cascades(
    packages: Sequence[Package],
    releases: Sequence[Item],
    graph: Mapping[str, Sequence[str]],
    tags: Sequence[str],
    build: ItemBuilder,
    exclude: Collection[str] = (),
) -> list[Item]:
    """Build cascade items for every dependent of ``releases``.

    Items are created in two passes: first one item per cascading package
    (so every planned version is known), then each item gets its synthetic
    commits naming the releasing direct dependencies and their versions.
    Triggers may be direct releases or other cascades.

    Args:
        packages: All workspace packages.
        releases: Items for packages releasing because of their own commits.
        graph: Dependents graph (name → packages depending on it).
        tags: All repository tags.
        build: Lifecycle-specific item factory.
        exclude: Names that must not release or propagate a cascade.

    Returns:
        Cascade items in discovery order.
    """
    by_name = {p.name: p for p in packages}
    names = find_cascade_names([r.package.name for r in releases], graph, exclude)

    cascades: list[Item] = []
    for name in names:
        pkg = by_name.get(name)
        if pkg is None:
            continue
        cascades.append(build(pkg, find_latest_stable_version(name, tags)))

    planned = {item.package.name: item for item in (*releases, *cascades)}
    date = datetime.now(timezone.utc)

    result: list[Item] = []
    for item in cascades:
        pkg = item.package
        commits = [
            make_cascade_commit(
                pkg.scope, f"Depends on {dep}@{planned[dep].next_version}", date
            )
            for dep in direct_dependencies(pkg.name, graph)
            if dep in planned
        ]
        if not commits:
            commits.append(make_cascade_commit(pkg.scope, CASCADE_FALLBACK_MESSAGE, date))
        result.append(item.model_copy(update={"commits": tuple(commits)}))

    return result
