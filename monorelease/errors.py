"""Exception hierarchy for monorelease.

Every failure the release pipeline reports is a subclass of ReleaseError,
so the CLI can catch one type and print a clean message. Workflow node
errors (PublishError, TagError, ExternalReleaseError) are retried by the
executor before being recorded as failed nodes.
"""

from __future__ import annotations


class ReleaseError(Exception):
    """Base class for all monorelease errors."""


class ParseError(ReleaseError):
    """A tag, commit, version or plan file could not be parsed."""


class ConfigError(ReleaseError):
    """The workspace or [tool.monorelease] configuration is invalid."""


class DependencyCycleError(ConfigError):
    """The workspace dependency graph contains a cycle."""

    def __init__(self, packages: list[str]) -> None:
        self.packages = sorted(packages)
        super().__init__(
            f"Dependency cycle detected involving: {', '.join(self.packages)}"
        )


class PlanError(ReleaseError):
    """A release plan could not be produced, read or written."""


class PreflightError(ReleaseError):
    """A preflight check failed; nothing was published."""

    def __init__(self, check: str, detail: str) -> None:
        self.check = check
        self.detail = detail
        super().__init__(f"Preflight check failed ({check}): {detail}")


class PublishError(ReleaseError):
    def __init__(self, package: str, detail: str) -> None:
        self.package = package
        self.detail = detail
        super().__init__(f"Failed to publish {package}: {detail}")


class TagError(ReleaseError):
    def __init__(self, tag: str, detail: str) -> None:
        self.tag = tag
        self.detail = detail
        super().__init__(f"Failed to create/push tag {tag}: {detail}")


class ExternalReleaseError(ReleaseError):
    def __init__(self, tag: str, detail: str) -> None:
        self.tag = tag
        self.detail = detail
        super().__init__(f"Failed to create release for {tag}: {detail}")


class MonotonicViolationError(ReleaseError):
    """A proposed version breaks commit-order-implies-version-order."""

    def __init__(self, package: str, version: str, messages: list[str]) -> None:
        self.package = package
        self.version = version
        self.messages = messages
        super().__init__(
            f"{package}@{version} violates monotonic versioning:\n"
            + "\n".join(f"  - {m}" for m in messages)
        )
