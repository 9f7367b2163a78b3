"""Collaborator interfaces and their live implementations.

The planner and executor never call git, gh or uv directly. They receive
objects satisfying the protocols below, which keeps them testable with the
in-memory doubles used by the test suite:

- VCS: tags, ancestry queries, commit log, tag creation and push
  (live: GitCli over the ``git`` CLI)
- ReleaseHost: release records (live: GhReleaseHost over the ``gh`` CLI)
- Publisher: publish one package version (live: UvPublisher, ``uv build``
  then ``uv publish``)
- CommitClassifier: turn a raw commit message into a Classification
"""

from __future__ import annotations

import json
import shutil
import subprocess
import tempfile
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from .deps import rewrite_pyproject
from .errors import ConfigError, ExternalReleaseError, ParseError, PublishError, TagError
from .models import Classification, Package
from .shell import gh, git, git_ok, run
from .versions import to_pep440

# Unit and record separators keep multi-line commit bodies intact in git log.
_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
_LOG_FORMAT = f"%H{_FIELD_SEP}%an <%ae>{_FIELD_SEP}%aI{_FIELD_SEP}%B{_RECORD_SEP}"


class RawCommit(BaseModel):
    """An unclassified commit from the version control log."""

    model_config = ConfigDict(frozen=True)

    hash: str
    author: str
    date: datetime
    message: str


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class VCS(Protocol):
    def get_tags(self) -> list[str]: ...

    def get_tag_sha(self, tag: str) -> str: ...

    def is_ancestor(self, ancestor: str, descendant: str) -> bool: ...

    def get_head_sha(self) -> str: ...

    def get_current_branch(self) -> str: ...

    def get_commits_since(self, tag: str | None) -> list[RawCommit]: ...

    def create_tag(self, name: str, message: str) -> None: ...

    def push_tag(self, name: str, remote: str, is_preview: bool) -> None: ...

    def is_clean(self) -> bool: ...

    def remote_reachable(self, remote: str) -> bool: ...


@runtime_checkable
class ReleaseHost(Protocol):
    def release_exists(self, tag: str) -> bool: ...

    def create_release(
        self, tag: str, title: str, body: str, prerelease: bool = False
    ) -> None: ...

    def update_release(self, tag: str, body: str) -> None: ...


@runtime_checkable
class Publisher(Protocol):
    def publish(
        self,
        package: Package,
        version: str,
        dist_tag: str | None = None,
        registry: str | None = None,
        pins: Mapping[str, str] | None = None,
    ) -> None:
        """Publish ``package`` at ``version``; atomic and safe to retry."""
        ...


class CommitClassifier(Protocol):
    def __call__(self, message: str) -> Classification | None:
        """Classify a raw commit message, None if not a conventional commit.

        Raises:
            ParseError: If the message looks conventional but is malformed.
        """
        ...


# ---------------------------------------------------------------------------
# git
# ---------------------------------------------------------------------------


def _detail(exc: subprocess.CalledProcessError) -> str:
    stderr = exc.stderr.strip() if isinstance(exc.stderr, str) else ""
    return stderr or str(exc)


class GitCli:
    """VCS over the ``git`` command line, rooted at ``root``."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = root

    def get_tags(self) -> list[str]:
        return git("tag", "--list", cwd=self.root).splitlines()

    def get_tag_sha(self, tag: str) -> str:
        # rev-list dereferences annotated tags to the tagged commit
        return git("rev-list", "-n", "1", tag, cwd=self.root)

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return git_ok("merge-base", "--is-ancestor", ancestor, descendant, cwd=self.root)

    def get_head_sha(self) -> str:
        return git("rev-parse", "HEAD", cwd=self.root)

    def get_current_branch(self) -> str:
        return git("rev-parse", "--abbrev-ref", "HEAD", cwd=self.root)

    def get_commits_since(self, tag: str | None) -> list[RawCommit]:
        """Commits reachable from HEAD but not from ``tag``, newest first."""
        rev_range = f"{tag}..HEAD" if tag else "HEAD"
        output = git("log", f"--format={_LOG_FORMAT}", rev_range, cwd=self.root)
        return parse_log(output)

    def create_tag(self, name: str, message: str) -> None:
        try:
            git("tag", "-a", name, "-m", message, cwd=self.root)
        except subprocess.CalledProcessError as exc:
            raise TagError(name, _detail(exc)) from exc

    def push_tag(self, name: str, remote: str, is_preview: bool) -> None:
        args = ["push", remote, f"refs/tags/{name}"]
        if is_preview:
            args.insert(1, "--force")
        try:
            git(*args, cwd=self.root)
        except subprocess.CalledProcessError as exc:
            raise TagError(name, _detail(exc)) from exc

    def is_clean(self) -> bool:
        return git("status", "--porcelain", "--untracked-files=no", cwd=self.root) == ""

    def remote_reachable(self, remote: str) -> bool:
        return git_ok("ls-remote", "--exit-code", "--heads", remote, cwd=self.root)


def parse_log(output: str) -> list[RawCommit]:
    """Parse ``git log`` output produced with the internal record format.

    Raises:
        ParseError: If a record does not have the expected fields.
    """
    commits: list[RawCommit] = []
    for record in output.split(_RECORD_SEP):
        record = record.strip("\n")
        if not record.strip():
            continue
        fields = record.split(_FIELD_SEP)
        if len(fields) != 4:
            raise ParseError(f"Unexpected git log record: {record[:80]!r}")
        sha, author, date, message = fields
        try:
            parsed_date = datetime.fromisoformat(date)
        except ValueError as exc:
            raise ParseError(f"Bad commit date {date!r} for {sha}") from exc
        commits.append(
            RawCommit(hash=sha, author=author, date=parsed_date, message=message.strip())
        )
    return commits


# ---------------------------------------------------------------------------
# GitHub releases
# ---------------------------------------------------------------------------


class GhReleaseHost:
    """Release records on GitHub, via the ``gh`` CLI."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = root

    def release_exists(self, tag: str) -> bool:
        output = gh("release", "view", tag, "--json", "tagName", check=False, cwd=self.root)
        if not output:
            return False
        try:
            return json.loads(output).get("tagName") == tag
        except json.JSONDecodeError:
            return False

    def create_release(self, tag: str, title: str, body: str, prerelease: bool = False) -> None:
        args = ["release", "create", tag, "--verify-tag", "--title", title, "--notes", body]
        if prerelease:
            args.append("--prerelease")
        try:
            gh(*args, cwd=self.root)
        except subprocess.CalledProcessError as exc:
            raise ExternalReleaseError(tag, _detail(exc)) from exc

    def update_release(self, tag: str, body: str) -> None:
        try:
            gh("release", "edit", tag, "--notes", body, cwd=self.root)
        except subprocess.CalledProcessError as exc:
            raise ExternalReleaseError(tag, _detail(exc)) from exc


# ---------------------------------------------------------------------------
# uv publishing
# ---------------------------------------------------------------------------


class UvPublisher:
    """Build and upload one workspace package with uv.

    The package's pyproject.toml is rewritten for the build (PEP 440 form
    of the planned version, internal dependencies pinned to the versions
    released with it) and always restored afterwards. Uploads use uv's
    trusted publishing or UV_PUBLISH_TOKEN. ``dist_tag`` is ignored:
    package indexes have no distribution channels.
    """

    def publish(
        self,
        package: Package,
        version: str,
        dist_tag: str | None = None,
        registry: str | None = None,
        pins: Mapping[str, str] | None = None,
    ) -> None:
        path = Path(package.path)
        pyproject = path / "pyproject.toml"
        pep440 = to_pep440(version)
        pep440_pins = {name: to_pep440(v) for name, v in (pins or {}).items()}
        out_dir = Path(tempfile.mkdtemp(prefix="monorelease-"))

        try:
            original = rewrite_pyproject(pyproject, pep440, pep440_pins)
        except (OSError, ConfigError) as exc:
            shutil.rmtree(out_dir, ignore_errors=True)
            raise PublishError(package.name, str(exc)) from exc

        try:
            run("uv", "build", str(path), "--out-dir", str(out_dir))
            upload = ["uv", "publish"]
            if registry:
                upload += ["--publish-url", registry]
            run(*upload, *(str(p) for p in sorted(out_dir.iterdir())))
        except (subprocess.CalledProcessError, OSError) as exc:
            raise PublishError(package.name, str(exc)) from exc
        finally:
            pyproject.write_text(original)
            shutil.rmtree(out_dir, ignore_errors=True)
