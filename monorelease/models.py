"""Data models for monorelease.

These Pydantic models represent the core data structures used throughout
the release pipeline: workspace packages, classified commits, per-package
impacts, planned release items and the Plan handed to the executor.

Closed variants (commit classification, release item lifecycle) are
discriminated unions keyed by a ``kind`` literal so that a Plan written to
JSON reads back into the same concrete types, and so that callers can
dispatch with ``match``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from .versions import format_pr_version, format_preview_version

BumpType = Literal["major", "minor", "patch"]
Lifecycle = Literal["stable", "preview", "pr"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class Package(_Frozen):
    """A package in the monorepo workspace.

    Attributes:
        name: Canonical package name (the moniker used in release tags).
        scope: Short name derived from the package directory. Conventional
               commit scopes refer to packages by this name.
        path: Absolute path to the package directory.
    """

    name: str
    scope: str
    path: str


# ---------------------------------------------------------------------------
# Commits
# ---------------------------------------------------------------------------


class SingleClassification(_Frozen):
    """``type(scope1,scope2)!: message`` - one type applied to every scope."""

    kind: Literal["single"] = "single"
    type: str
    scopes: tuple[str, ...] = ()
    breaking: bool = False
    message: str


class Target(_Frozen):
    type: str
    scope: str
    breaking: bool = False


class MultiClassification(_Frozen):
    """``feat(core!), fix(cli): message`` - independent type per scope.

    Attributes:
        targets: One entry per scope with its own type and breaking flag.
        message: Shared commit description.
        sections: Optional per-scope body text keyed by scope.
    """

    kind: Literal["multi"] = "multi"
    targets: tuple[Target, ...]
    message: str
    sections: dict[str, str] = Field(default_factory=dict)


Classification = Annotated[
    Union[SingleClassification, MultiClassification], Field(discriminator="kind")
]


class ScopedCommit(_Frozen):
    """A commit projected onto one package scope, ready for changelogs."""

    hash: str
    type: str
    description: str
    breaking: bool


class ReleaseCommit(_Frozen):
    """A git commit together with its conventional-commit classification."""

    hash: str
    author: str
    date: datetime
    classification: Classification

    def for_scope(self, scope: str) -> ScopedCommit:
        """Project this commit onto a single scope.

        Single commits ignore the scope. Multi commits use the target for the
        scope, falling back to a non-breaking ``chore`` when the scope is not
        among the targets.
        """
        match self.classification:
            case SingleClassification(type=type_, breaking=breaking, message=message):
                return ScopedCommit(
                    hash=self.hash, type=type_, description=message, breaking=breaking
                )
            case MultiClassification(targets=targets, message=message):
                target = next((t for t in targets if t.scope == scope), None)
                return ScopedCommit(
                    hash=self.hash,
                    type=target.type if target else "chore",
                    description=message,
                    breaking=target.breaking if target else False,
                )
        raise TypeError(f"unknown classification: {self.classification!r}")

    def touches(self, scope: str) -> bool:
        """Whether the commit explicitly names ``scope``."""
        match self.classification:
            case SingleClassification(scopes=scopes):
                return scope in scopes
            case MultiClassification(targets=targets):
                return any(t.scope == scope for t in targets)
        return False

    @property
    def is_scopeless(self) -> bool:
        return (
            isinstance(self.classification, SingleClassification)
            and not self.classification.scopes
        )


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


class Impact(_Frozen):
    """Aggregated effect of all commits on one package since its last release.

    Attributes:
        package: The impacted package.
        bump: Highest-priority bump among the commits.
        commits: Every commit touching the package, including ones that did
                 not contribute a bump (kept for changelogs).
        current_version: Latest stable version from tags, None on first release.
    """

    package: Package
    bump: BumpType
    commits: tuple[ReleaseCommit, ...]
    current_version: str | None = None


# ---------------------------------------------------------------------------
# Plan items
# ---------------------------------------------------------------------------


class StableItem(_Frozen):
    kind: Literal["stable"] = "stable"
    package: Package
    commits: tuple[ReleaseCommit, ...] = ()
    bump: BumpType
    current_version: str | None = None
    next_version: str


class PreviewItem(_Frozen):
    """A preview release: ``<base_version>-next.<iteration>``."""

    kind: Literal["preview"] = "preview"
    package: Package
    commits: tuple[ReleaseCommit, ...] = ()
    bump: BumpType
    current_version: str | None = None
    base_version: str
    iteration: int = Field(ge=1)

    @property
    def next_version(self) -> str:
        return format_preview_version(self.base_version, self.iteration)


class PrItem(_Frozen):
    """A pull-request release: ``0.0.0-pr.<pr_number>.<iteration>.<sha>``."""

    kind: Literal["pr"] = "pr"
    package: Package
    commits: tuple[ReleaseCommit, ...] = ()
    pr_number: int = Field(ge=1)
    iteration: int = Field(ge=1)
    sha: str

    @property
    def next_version(self) -> str:
        return format_pr_version(self.pr_number, self.iteration, self.sha)

    @property
    def current_version(self) -> None:
        return None

    @property
    def bump(self) -> None:
        return None


Item = Annotated[Union[StableItem, PreviewItem, PrItem], Field(discriminator="kind")]


class Plan(_Frozen):
    """An immutable release plan.

    Attributes:
        lifecycle: Release mode applied to every item in the plan.
        timestamp: ISO-8601 UTC time the plan was produced.
        releases: Packages released because of their own commits.
        cascades: Packages released only because a dependency released.
    """

    lifecycle: Lifecycle
    timestamp: str
    releases: tuple[Item, ...] = ()
    cascades: tuple[Item, ...] = ()

    @property
    def items(self) -> tuple[StableItem | PreviewItem | PrItem, ...]:
        return (*self.releases, *self.cascades)

    @property
    def is_empty(self) -> bool:
        return not self.releases and not self.cascades
