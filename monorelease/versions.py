"""Version parsing, tag parsing and bump arithmetic.

Release tags have the form ``<moniker>@<semver>``, e.g. ``pkg-alpha@1.2.0``
or ``@scope/pkg@0.3.0-next.2``. The moniker is everything before the last
``@``. Tags that do not parse are skipped, never treated as errors.

Three release lifecycles share one stable target version:
- stable:  ``1.2.0``
- preview: ``1.2.0-next.<n>``
- pr:      ``0.0.0-pr.<pr>.<iteration>.<sha>``
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING

import semver

from .errors import ParseError

if TYPE_CHECKING:
    from .models import BumpType

BUMP_PRIORITY: dict[str, int] = {"major": 3, "minor": 2, "patch": 1}

# Impact of the standard conventional commit types. None = no release.
STANDARD_IMPACT: dict[str, BumpType | None] = {
    "feat": "minor",
    "fix": "patch",
    "docs": "patch",
    "perf": "patch",
    "style": None,
    "refactor": None,
    "test": None,
    "build": None,
    "ci": None,
    "chore": None,
    "revert": None,
}

ZERO = "0.0.0"
SHORT_SHA_LENGTH = 7

_PREVIEW_RE = re.compile(r"^next\.(\d+)$")
_PR_RE = re.compile(r"^pr\.(\d+)\.(\d+)\.([a-f0-9]{7,40})$", re.IGNORECASE)


def parse_version(version_str: str) -> semver.Version:
    """Parse a strict semver string (``MAJOR.MINOR.PATCH[-pre][+build]``).

    Raises:
        ParseError: If the string is not valid semver.
    """
    try:
        return semver.Version.parse(version_str)
    except (ValueError, TypeError) as exc:
        raise ParseError(f"Invalid version {version_str!r}: {exc}") from exc


def strip_prerelease(version_str: str) -> str:
    """Drop prerelease and build metadata: ``1.2.0-next.3`` → ``1.2.0``."""
    return str(parse_version(version_str).finalize_version())


def format_tag(name: str, version: str) -> str:
    return f"{name}@{version}"


def parse_tag(tag: str) -> tuple[str, semver.Version] | None:
    """Split a ``<moniker>@<semver>`` tag.

    Returns:
        (moniker, version), or None if the tag does not follow the format.
    """
    name, sep, version_str = tag.rpartition("@")
    if not sep or not name or not version_str:
        return None
    try:
        return name, semver.Version.parse(version_str)
    except ValueError:
        return None


def package_versions(name: str, tags: Iterable[str]) -> Iterator[semver.Version]:
    """Yield the versions of every well-formed tag belonging to ``name``."""
    for tag in tags:
        parsed = parse_tag(tag)
        if parsed is not None and parsed[0] == name:
            yield parsed[1]


def tagged_package_names(tags: Iterable[str]) -> list[str]:
    """Return the sorted set of package monikers that appear in tags."""
    return sorted({parsed[0] for tag in tags if (parsed := parse_tag(tag))})


def find_latest_stable_version(name: str, tags: Iterable[str]) -> str | None:
    """Find the highest non-prerelease version tagged for a package."""
    stable = [v for v in package_versions(name, tags) if not v.prerelease]
    return str(max(stable)) if stable else None


# ---------------------------------------------------------------------------
# Bumps
# ---------------------------------------------------------------------------


def bump_for_type(commit_type: str, breaking: bool) -> BumpType | None:
    """Map a conventional commit type to the bump it triggers.

    Breaking changes are always major. Types outside the standard set count
    as patch so that custom types still produce a release.
    """
    if breaking:
        return "major"
    if commit_type not in STANDARD_IMPACT:
        return "patch"
    return STANDARD_IMPACT[commit_type]


def max_bump(a: BumpType | None, b: BumpType | None) -> BumpType | None:
    """Return the higher-priority bump (major > minor > patch > None)."""
    if a is None:
        return b
    if b is None:
        return a
    return a if BUMP_PRIORITY[a] >= BUMP_PRIORITY[b] else b


def map_bump_for_phase(version: semver.Version, bump: BumpType) -> BumpType:
    """Apply phase-aware bump mapping.

    - Initial development (``0.x.y``): major and minor both bump minor.
    - Public API (``>=1.0.0``): bumps are used as-is.
    """
    if version.major < 1 and bump == "major":
        return "minor"
    return bump


def increment(version: semver.Version, bump: BumpType) -> semver.Version:
    base = version.finalize_version()
    if bump == "major":
        return base.bump_major()
    if bump == "minor":
        return base.bump_minor()
    return base.bump_patch()


def calculate_next_version(current: str | None, bump: BumpType) -> str:
    """Calculate the next stable version.

    The first release always lands in the initial development phase:
    ``0.1.0`` for a major/minor change, ``0.0.1`` for a patch.

    Examples:
        (None, "minor")   → "0.1.0"
        ("0.3.1", "major") → "0.4.0"
        ("1.0.0", "major") → "2.0.0"
        ("1.2.3", "patch") → "1.2.4"
    """
    if current is None:
        return "0.0.1" if bump == "patch" else "0.1.0"
    version = parse_version(current)
    return str(increment(version, map_bump_for_phase(version, bump)))


# ---------------------------------------------------------------------------
# Prerelease identifiers
# ---------------------------------------------------------------------------


def short_sha(sha: str) -> str:
    return sha[:SHORT_SHA_LENGTH]


def format_preview_version(base_version: str, iteration: int) -> str:
    return f"{base_version}-next.{iteration}"


def format_pr_version(pr_number: int, iteration: int, sha: str) -> str:
    return f"{ZERO}-pr.{pr_number}.{iteration}.{short_sha(sha)}"


def parse_preview_prerelease(prerelease: str | None) -> int | None:
    """Return N from ``next.N``, or None if not a preview identifier."""
    m = _PREVIEW_RE.match(prerelease or "")
    return int(m.group(1)) if m else None


def parse_pr_prerelease(prerelease: str | None) -> tuple[int, int, str] | None:
    """Return (pr_number, iteration, sha) from ``pr.P.I.sha``."""
    m = _PR_RE.match(prerelease or "")
    if m is None:
        return None
    return int(m.group(1)), int(m.group(2)), m.group(3)


def find_latest_preview_number(name: str, base_version: str, tags: Iterable[str]) -> int:
    """Highest ``next.N`` already tagged for ``base_version``, or 0."""
    base = parse_version(base_version).finalize_version()
    highest = 0
    for version in package_versions(name, tags):
        if version.finalize_version() != base:
            continue
        n = parse_preview_prerelease(version.prerelease)
        if n is not None and n > highest:
            highest = n
    return highest


def find_latest_pr_iteration(name: str, pr_number: int, tags: Iterable[str]) -> int:
    """Highest iteration already tagged for ``pr_number``, or 0.

    The sha part of the identifier is ignored: a new head commit on the same
    PR still produces the next iteration.
    """
    zero = semver.Version.parse(ZERO)
    highest = 0
    for version in package_versions(name, tags):
        if version.finalize_version() != zero:
            continue
        parsed = parse_pr_prerelease(version.prerelease)
        if parsed is not None and parsed[0] == pr_number and parsed[1] > highest:
            highest = parsed[1]
    return highest


def to_pep440(version_str: str) -> str:
    """Convert a planned semver version into a PEP 440 version.

    Python packaging rejects arbitrary semver prerelease identifiers, so the
    lifecycle suffixes are mapped onto PEP 440 segments:

    - ``1.2.0``                    → ``1.2.0``
    - ``1.2.0-next.3``             → ``1.2.0rc3``
    - ``0.0.0-pr.42.2.abc1234``    → ``0.0.0a42.dev2``
    """
    version = parse_version(version_str)
    base = str(version.finalize_version())
    if not version.prerelease:
        return base
    preview = parse_preview_prerelease(version.prerelease)
    if preview is not None:
        return f"{base}rc{preview}"
    pr = parse_pr_prerelease(version.prerelease)
    if pr is not None:
        return f"{base}a{pr[0]}.dev{pr[1]}"
    raise ParseError(f"Cannot map prerelease {version.prerelease!r} to PEP 440")
