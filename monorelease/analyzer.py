"""Impact analysis: fold classified commits into one bump per package.

For each package the analyzer looks at the commits made since its last
stable release tag, projects every commit onto the package scope and keeps
the highest-priority bump (major > minor > patch). Commits that trigger no
bump (chore, refactor, ...) stay in the commit list for changelogs but do
not affect the fold. A package whose commits trigger no bump gets no Impact.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from .models import BumpType, Impact, Package, ReleaseCommit
from .versions import bump_for_type, find_latest_stable_version, max_bump, parse_tag


def commit_applies_to(commit: ReleaseCommit, scope: str, sole_package: bool) -> bool:
    """Whether a commit belongs to the package with ``scope``.

    Scopeless single commits cannot be attributed to a package, except in a
    workspace with exactly one package.
    """
    if commit.touches(scope):
        return True
    return sole_package and commit.is_scopeless


def fold_bump(commits: Iterable[ReleaseCommit], scope: str) -> BumpType | None:
    """Highest bump among ``commits`` for ``scope``, or None if none bump."""
    bump: BumpType | None = None
    for commit in commits:
        info = commit.for_scope(scope)
        bump = max_bump(bump, bump_for_type(info.type, info.breaking))
    return bump


def find_last_stable_tag(name: str, tags: Iterable[str]) -> str | None:
    """Return the tag of the highest stable release of ``name``, if any.

    Prerelease tags (previews, PR builds) never count as a release baseline.
    """
    best_tag: str | None = None
    best_version = None
    for tag in tags:
        parsed = parse_tag(tag)
        if parsed is None or parsed[0] != name or parsed[1].prerelease:
            continue
        if best_version is None or parsed[1] > best_version:
            best_tag, best_version = tag, parsed[1]
    return best_tag


def analyze(
    packages: Sequence[Package],
    commits: Mapping[str, Sequence[ReleaseCommit]],
    tags: Sequence[str],
) -> list[Impact]:
    """Compute one Impact per package that has at least one bumping commit.

    Args:
        packages: All workspace packages.
        commits: Map of package name → commits since that package's last
                 stable tag. Commits not touching the package are ignored.
        tags: All repository tags, used to find each package's current
              stable version.

    Returns:
        Impacts in workspace package order.
    """
    sole = len(packages) == 1
    impacts: list[Impact] = []

    for pkg in packages:
        seen: set[str] = set()
        relevant: list[ReleaseCommit] = []
        for commit in commits.get(pkg.name, ()):
            if commit.hash in seen or not commit_applies_to(commit, pkg.scope, sole):
                continue
            seen.add(commit.hash)
            relevant.append(commit)

        bump = fold_bump(relevant, pkg.scope)
        if bump is None:
            continue

        impacts.append(
            Impact(
                package=pkg,
                bump=bump,
                commits=tuple(relevant),
                current_version=find_latest_stable_version(pkg.name, tags),
            )
        )

    return impacts
