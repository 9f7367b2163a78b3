"""Monotonic version validation.

Versions must increase with commit order: a version assigned at commit X
must be greater than every version tagged on an ancestor of X and smaller
than every version tagged on a descendant of X. Tags on parallel branches
(neither ancestor nor descendant) impose no constraint.

Two modes:
- adjacent: checks a proposed version against the nearest ancestor and
  descendant releases; used before assigning a new version.
- audit: checks every pair of existing releases; used to verify that a
  repository's tag history is not already corrupt.

Violations are reported, never corrected.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Literal

import semver
from pydantic import BaseModel, ConfigDict

from .errors import MonotonicViolationError
from .versions import parse_tag, parse_version, short_sha, tagged_package_names

if TYPE_CHECKING:
    from .backends import VCS


class _Result(BaseModel):
    model_config = ConfigDict(frozen=True)


class TagInfo(_Result):
    """A stable release tag resolved to the commit it points at."""

    tag: str
    version: str
    sha: str

    @property
    def parsed(self) -> semver.Version:
        return parse_version(self.version)


class Violation(_Result):
    existing_version: str
    existing_sha: str
    relationship: Literal["ancestor", "descendant"]
    message: str


class ValidationResult(_Result):
    """Outcome of adjacent validation for one proposed version."""

    package: str
    version: str
    sha: str
    violations: tuple[Violation, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.violations

    def raise_for_violations(self) -> None:
        """Raise MonotonicViolationError if any violation was found."""
        if self.violations:
            raise MonotonicViolationError(
                self.package, self.version, [v.message for v in self.violations]
            )


class AuditViolation(_Result):
    earlier: TagInfo
    later: TagInfo
    message: str


class AuditResult(_Result):
    """Outcome of a full-history audit for one package."""

    package: str
    releases: tuple[TagInfo, ...] = ()
    violations: tuple[AuditViolation, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.violations


def get_package_tag_infos(vcs: VCS, package: str, tags: Iterable[str]) -> list[TagInfo]:
    """Resolve the stable release tags of ``package``, highest version first.

    Prerelease tags and tags that do not parse are ignored.
    """
    infos: list[TagInfo] = []
    for tag in tags:
        parsed = parse_tag(tag)
        if parsed is None or parsed[0] != package or parsed[1].prerelease:
            continue
        infos.append(TagInfo(tag=tag, version=str(parsed[1]), sha=vcs.get_tag_sha(tag)))
    infos.sort(key=lambda info: info.parsed, reverse=True)
    return infos


def validate_adjacent(
    vcs: VCS, sha: str, package: str, new_version: str, tags: Sequence[str]
) -> ValidationResult:
    """Check that ``new_version`` at ``sha`` fits between its neighbours.

    The highest version tagged on an ancestor commit must be lower than
    ``new_version``, and the lowest version tagged on a descendant commit
    must be higher.
    """
    version = parse_version(new_version)
    highest_ancestor: TagInfo | None = None
    lowest_descendant: TagInfo | None = None

    for info in get_package_tag_infos(vcs, package, tags):
        if vcs.is_ancestor(info.sha, sha):
            if highest_ancestor is None or info.parsed > highest_ancestor.parsed:
                highest_ancestor = info
        if vcs.is_ancestor(sha, info.sha):
            if lowest_descendant is None or info.parsed < lowest_descendant.parsed:
                lowest_descendant = info

    violations: list[Violation] = []
    if highest_ancestor is not None and highest_ancestor.parsed >= version:
        violations.append(
            Violation(
                existing_version=highest_ancestor.version,
                existing_sha=highest_ancestor.sha,
                relationship="ancestor",
                message=(
                    f"Version {highest_ancestor.version} at "
                    f"{short_sha(highest_ancestor.sha)} is on an EARLIER commit "
                    f"but has version >= {new_version}"
                ),
            )
        )
    if lowest_descendant is not None and lowest_descendant.parsed <= version:
        violations.append(
            Violation(
                existing_version=lowest_descendant.version,
                existing_sha=lowest_descendant.sha,
                relationship="descendant",
                message=(
                    f"Version {lowest_descendant.version} at "
                    f"{short_sha(lowest_descendant.sha)} is on a LATER commit "
                    f"but has version <= {new_version}"
                ),
            )
        )

    return ValidationResult(
        package=package, version=new_version, sha=sha, violations=tuple(violations)
    )


def _audit_pair(earlier: TagInfo, later: TagInfo) -> AuditViolation | None:
    if earlier.parsed < later.parsed:
        return None
    return AuditViolation(
        earlier=earlier,
        later=later,
        message=(
            f"{earlier.version} at {short_sha(earlier.sha)} comes BEFORE "
            f"{later.version} at {short_sha(later.sha)}, but has higher/equal version"
        ),
    )


def audit_package_history(vcs: VCS, package: str, tags: Sequence[str]) -> AuditResult:
    """Verify every pair of stable releases of ``package`` is ordered."""
    infos = get_package_tag_infos(vcs, package, tags)
    violations: list[AuditViolation] = []

    for i, a in enumerate(infos):
        for b in infos[i + 1 :]:
            if vcs.is_ancestor(a.sha, b.sha):
                violation = _audit_pair(a, b)
            elif vcs.is_ancestor(b.sha, a.sha):
                violation = _audit_pair(b, a)
            else:
                # Parallel branches
                violation = None
            if violation is not None:
                violations.append(violation)

    return AuditResult(package=package, releases=tuple(infos), violations=tuple(violations))


def audit_repository(
    vcs: VCS, tags: Sequence[str], packages: Iterable[str] | None = None
) -> list[AuditResult]:
    """Audit ``packages`` (default: every package that has tags)."""
    names = list(packages) if packages is not None else tagged_package_names(tags)
    return [audit_package_history(vcs, name, tags) for name in names]
