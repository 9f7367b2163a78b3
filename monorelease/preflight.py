"""Preflight checks, run once before any side-effecting workflow node.

Checks (the id is reported as PreflightError.check):
- env.git-clean: the working tree has no uncommitted changes
- env.git-remote: the release remote answers
- env.publish-token: UV_PUBLISH_TOKEN is set, unless publishing is skipped
  or the token requirement is disabled (trusted publishing)
- plan.tags-unique: none of the planned tags exists yet
"""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from typing import Protocol

from .backends import VCS
from .errors import PreflightError
from .models import StableItem, PreviewItem, PrItem
from .versions import format_tag

PUBLISH_TOKEN_VAR = "UV_PUBLISH_TOKEN"


class Preflight(Protocol):
    def run(self, items: Sequence[StableItem | PreviewItem | PrItem]) -> None:
        """Validate the environment for releasing ``items``.

        Raises:
            PreflightError: On the first failing check.
        """
        ...


class GitPreflight:
    """Default preflight: repository state, remote and publish credentials."""

    def __init__(
        self,
        vcs: VCS,
        remote: str = "origin",
        require_publish_token: bool = True,
        skip_publish: bool = False,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.vcs = vcs
        self.remote = remote
        self.require_publish_token = require_publish_token
        self.skip_publish = skip_publish
        self.env = os.environ if env is None else env

    def run(self, items: Sequence[StableItem | PreviewItem | PrItem]) -> None:
        print("  Running preflight checks...")

        if not self.vcs.is_clean():
            raise PreflightError("env.git-clean", "Working tree has uncommitted changes")

        if not self.vcs.remote_reachable(self.remote):
            raise PreflightError("env.git-remote", f"Remote {self.remote!r} is not reachable")

        if self.require_publish_token and not self.skip_publish:
            if not self.env.get(PUBLISH_TOKEN_VAR):
                raise PreflightError(
                    "env.publish-token", f"{PUBLISH_TOKEN_VAR} is not set"
                )

        existing = set(self.vcs.get_tags())
        clashes = [
            tag
            for tag in (format_tag(i.package.name, i.next_version) for i in items)
            if tag in existing
        ]
        if clashes:
            raise PreflightError(
                "plan.tags-unique", f"Tags already exist: {', '.join(clashes)}"
            )

        print("  All preflight checks passed")
