"""Release planning: analyzer → version calculator → cascade detector.

``plan()`` is pure: every input (packages, commits, tags, dependency graph)
is fetched by the caller, so planning never touches git or the network.
The lifecycle is chosen once per run and applies to every item:

- stable:  ``1.2.0``
- preview: ``1.2.0-next.3`` (one more than the highest tagged ``next.N``)
- pr:      ``0.0.0-pr.42.2.abc1234`` (iteration counts prior tags of the PR)

The resulting Plan is written to JSON by ``plan`` and read back by
``apply`` in a separate invocation.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timezone
from functools import partial
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .analyzer import analyze
from .cascade import ItemBuilder, detect_cascades
from .errors import PlanError
from .models import (
    Impact,
    Item,
    Lifecycle,
    Package,
    Plan,
    PreviewItem,
    PrItem,
    ReleaseCommit,
    StableItem,
)
from .versions import (
    calculate_next_version,
    find_latest_pr_iteration,
    find_latest_preview_number,
)


class PlanOptions(BaseModel):
    """Options for one planning run.

    Attributes:
        packages: Only release these packages (name or scope). Cascades of
                  the selected packages are still planned.
        exclude: Never release these packages (name or scope).
        pr_number: Pull request number, required for the pr lifecycle.
        head_sha: Commit being released, required for the pr lifecycle.
        timestamp: Override the plan timestamp (ISO-8601).
    """

    model_config = ConfigDict(frozen=True)

    packages: tuple[str, ...] | None = None
    exclude: tuple[str, ...] = ()
    pr_number: int | None = Field(default=None, ge=1)
    head_sha: str | None = None
    timestamp: str | None = None


def _matches(pkg: Package, names: Sequence[str]) -> bool:
    return pkg.name in names or pkg.scope in names


def _check_known(packages: Sequence[Package], names: Sequence[str]) -> None:
    unknown = [n for n in names if not any(_matches(p, [n]) for p in packages)]
    if unknown:
        raise PlanError(f"Unknown package(s): {', '.join(unknown)}")


def filter_impacts(
    impacts: Sequence[Impact], packages: Sequence[Package], options: PlanOptions
) -> list[Impact]:
    """Apply the include/exclude filters to analyzer output.

    Raises:
        PlanError: If the include filter names a package not in the workspace.
    """
    if options.packages is not None:
        _check_known(packages, options.packages)
    result: list[Impact] = []
    for impact in impacts:
        if _matches(impact.package, options.exclude):
            continue
        if options.packages is not None and not _matches(impact.package, options.packages):
            continue
        result.append(impact)
    return result


# ---------------------------------------------------------------------------
# Lifecycle item builders
# ---------------------------------------------------------------------------


def stable_item(impact: Impact) -> StableItem:
    return StableItem(
        package=impact.package,
        commits=impact.commits,
        bump=impact.bump,
        current_version=impact.current_version,
        next_version=calculate_next_version(impact.current_version, impact.bump),
    )


def preview_item(impact: Impact, tags: Sequence[str]) -> PreviewItem:
    """Preview of the next stable version, numbered after existing previews."""
    base = calculate_next_version(impact.current_version, impact.bump)
    return PreviewItem(
        package=impact.package,
        commits=impact.commits,
        bump=impact.bump,
        current_version=impact.current_version,
        base_version=base,
        iteration=find_latest_preview_number(impact.package.name, base, tags) + 1,
    )


def pr_item(impact: Impact, tags: Sequence[str], pr_number: int, sha: str) -> PrItem:
    return PrItem(
        package=impact.package,
        commits=impact.commits,
        pr_number=pr_number,
        iteration=find_latest_pr_iteration(impact.package.name, pr_number, tags) + 1,
        sha=sha,
    )


ImpactBuilder = Callable[[Impact], Item]


def impact_builder(
    lifecycle: Lifecycle, tags: Sequence[str], options: PlanOptions
) -> ImpactBuilder:
    """Select the item builder for ``lifecycle``.

    Raises:
        PlanError: If the pr lifecycle lacks a PR number or head sha.
    """
    match lifecycle:
        case "stable":
            return stable_item
        case "preview":
            return partial(preview_item, tags=tags)
        case "pr":
            if options.pr_number is None:
                raise PlanError(
                    "Could not detect PR number. Set PR_NUMBER or GITHUB_PR_NUMBER, "
                    "or pass --pr-number."
                )
            if not options.head_sha:
                raise PlanError("A head commit sha is required for PR releases")
            return partial(
                pr_item, tags=tags, pr_number=options.pr_number, sha=options.head_sha
            )
    raise PlanError(f"Unknown lifecycle: {lifecycle!r}")


def cascade_builder(build: ImpactBuilder) -> ItemBuilder:
    """Adapt an impact builder to cascades: a patch bump with no commits."""

    def build_cascade(pkg: Package, current_version: str | None) -> Item:
        return build(
            Impact(package=pkg, bump="patch", commits=(), current_version=current_version)
        )

    return build_cascade


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def plan(
    lifecycle: Lifecycle,
    packages: Sequence[Package],
    commits: Mapping[str, Sequence[ReleaseCommit]],
    tags: Sequence[str],
    graph: Mapping[str, Sequence[str]],
    options: PlanOptions | None = None,
) -> Plan:
    """Produce an immutable release Plan.

    Args:
        lifecycle: Release mode for every item.
        packages: All workspace packages.
        commits: Map of package name → ReleaseCommits since its last stable tag.
        tags: All repository tags.
        graph: Dependents graph (name → packages depending on it).
        options: Filters and PR parameters.

    Returns:
        Plan with direct releases (workspace order) and cascades (BFS order).

    Raises:
        PlanError: Unknown include filter, or missing PR number / head sha
            for the pr lifecycle.
        DependencyCycleError: If the dependency graph has a cycle.
    """
    options = options or PlanOptions()
    build = impact_builder(lifecycle, tags, options)

    impacts = filter_impacts(analyze(packages, commits, tags), packages, options)
    releases = [build(impact) for impact in impacts]

    excluded = {p.name for p in packages if _matches(p, options.exclude)}
    cascades = detect_cascades(
        packages, releases, graph, tags, cascade_builder(build), exclude=excluded
    )

    return Plan(
        lifecycle=lifecycle,
        timestamp=options.timestamp or datetime.now(timezone.utc).isoformat(),
        releases=tuple(releases),
        cascades=tuple(cascades),
    )


# ---------------------------------------------------------------------------
# Plan file
# ---------------------------------------------------------------------------


def write_plan(plan: Plan, path: Path) -> None:
    """Write ``plan`` as JSON, creating parent directories."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(plan.model_dump_json(indent=2) + "\n")
    except OSError as exc:
        raise PlanError(f"Cannot write plan to {path}: {exc}") from exc


def read_plan(path: Path) -> Plan:
    """Read a plan written by ``write_plan``.

    Raises:
        PlanError: If the file is missing or not a valid plan.
    """
    try:
        text = path.read_text()
    except OSError as exc:
        raise PlanError(f"Cannot read plan {path}: {exc}") from exc
    try:
        return Plan.model_validate_json(text)
    except ValidationError as exc:
        raise PlanError(f"Invalid plan file {path}:\n{exc}") from exc
