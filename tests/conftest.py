"""Shared test fixtures and in-memory collaborators."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import tomlkit

from monorelease.backends import RawCommit
from monorelease.errors import ExternalReleaseError, PreflightError, PublishError, TagError
from monorelease.models import (
    MultiClassification,
    Package,
    ReleaseCommit,
    SingleClassification,
    Target,
)

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)

_HEADER_RE = re.compile(r"^(?P<type>\w+)(?:\((?P<scopes>[^)]*)\))?(?P<bang>!)?: (?P<msg>.+)$")


def classify(message: str) -> SingleClassification | None:
    """Minimal ``type(scope,scope)!: message`` classifier for tests."""
    match = _HEADER_RE.match(message.splitlines()[0] if message else "")
    if match is None:
        return None
    scopes = tuple(s.strip() for s in (match["scopes"] or "").split(",") if s.strip())
    return SingleClassification(
        type=match["type"],
        scopes=scopes,
        breaking=bool(match["bang"]),
        message=match["msg"],
    )


class MemoryVCS:
    """Git double over an explicit commit DAG.

    ``commit()`` appends to the current head unless parents are given, so
    branches are modelled by committing with explicit parents.
    """

    def __init__(self) -> None:
        self.parents: dict[str, list[str]] = {}
        self.log: dict[str, RawCommit] = {}
        self.order: list[str] = []
        self.tags: dict[str, str] = {}
        self.head: str | None = None
        self.branch = "main"
        self.clean = True
        self.reachable = True
        self.created_tags: list[tuple[str, str]] = []
        self.pushed_tags: list[tuple[str, str, bool]] = []
        self.push_failures: dict[str, int] = {}

    def commit(self, message: str, parents: list[str] | None = None) -> str:
        n = len(self.order)
        sha = hashlib.sha1(f"commit-{n}".encode()).hexdigest()
        self.parents[sha] = parents if parents is not None else ([self.head] if self.head else [])
        self.log[sha] = RawCommit(
            hash=sha,
            author="Dev <dev@example.com>",
            date=EPOCH + timedelta(minutes=n),
            message=message,
        )
        self.order.append(sha)
        self.head = sha
        return sha

    def tag(self, name: str, sha: str | None = None) -> None:
        self.tags[name] = sha or self.head or ""

    def _reachable(self, sha: str | None) -> set[str]:
        seen: set[str] = set()
        stack = [sha] if sha else []
        while stack:
            node = stack.pop()
            if node in seen:
                continue
            seen.add(node)
            stack.extend(self.parents.get(node, []))
        return seen

    # VCS protocol

    def get_tags(self) -> list[str]:
        return list(self.tags)

    def get_tag_sha(self, tag: str) -> str:
        return self.tags[tag]

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return ancestor in self._reachable(descendant)

    def get_head_sha(self) -> str:
        return self.head or ""

    def get_current_branch(self) -> str:
        return self.branch

    def get_commits_since(self, tag: str | None) -> list[RawCommit]:
        exclude = self._reachable(self.tags[tag]) if tag else set()
        include = self._reachable(self.head) - exclude
        return [self.log[sha] for sha in reversed(self.order) if sha in include]

    def create_tag(self, name: str, message: str) -> None:
        if name in self.tags:
            raise TagError(name, "already exists")
        self.tags[name] = self.head or ""
        self.created_tags.append((name, message))

    def push_tag(self, name: str, remote: str, is_preview: bool) -> None:
        remaining = self.push_failures.get(name, 0)
        if remaining:
            self.push_failures[name] = remaining - 1
            raise TagError(name, "remote rejected")
        self.pushed_tags.append((name, remote, is_preview))

    def is_clean(self) -> bool:
        return self.clean

    def remote_reachable(self, remote: str) -> bool:
        return self.reachable


class MemoryReleaseHost:
    def __init__(self) -> None:
        self.releases: dict[str, dict] = {}
        self.created: list[str] = []
        self.updated: list[str] = []
        self.failures: dict[str, int] = {}

    def release_exists(self, tag: str) -> bool:
        return tag in self.releases

    def create_release(self, tag: str, title: str, body: str, prerelease: bool = False) -> None:
        remaining = self.failures.get(tag, 0)
        if remaining:
            self.failures[tag] = remaining - 1
            raise ExternalReleaseError(tag, "service unavailable")
        self.releases[tag] = {"title": title, "body": body, "prerelease": prerelease}
        self.created.append(tag)

    def update_release(self, tag: str, body: str) -> None:
        self.releases[tag]["body"] = body
        self.updated.append(tag)


class MemoryPublisher:
    def __init__(self) -> None:
        self.published: list[dict] = []
        self.failures: dict[str, int] = {}

    def publish(
        self,
        package: Package,
        version: str,
        dist_tag: str | None = None,
        registry: str | None = None,
        pins: Mapping[str, str] | None = None,
    ) -> None:
        remaining = self.failures.get(package.name, 0)
        if remaining:
            self.failures[package.name] = remaining - 1
            raise PublishError(package.name, "upload failed")
        self.published.append(
            {
                "package": package.name,
                "version": version,
                "dist_tag": dist_tag,
                "registry": registry,
                "pins": dict(pins or {}),
            }
        )

    @property
    def names(self) -> list[str]:
        return [p["package"] for p in self.published]


class StubPreflight:
    def __init__(self, error: PreflightError | None = None) -> None:
        self.error = error
        self.calls: list[list[str]] = []

    def run(self, items: Sequence) -> None:
        self.calls.append([i.package.name for i in items])
        if self.error is not None:
            raise self.error


@pytest.fixture
def classifier() -> Callable[[str], SingleClassification | None]:
    return classify


@pytest.fixture
def vcs() -> MemoryVCS:
    return MemoryVCS()


@pytest.fixture
def host() -> MemoryReleaseHost:
    return MemoryReleaseHost()


@pytest.fixture
def publisher() -> MemoryPublisher:
    return MemoryPublisher()


@pytest.fixture
def preflight() -> StubPreflight:
    return StubPreflight()


@pytest.fixture
def make_package() -> Callable[..., Package]:
    """Factory: make_package("pkg-a") → Package with scope "a"."""

    def factory(name: str, scope: str | None = None) -> Package:
        return Package(
            name=name,
            scope=scope or name.removeprefix("pkg-"),
            path=f"/repo/packages/{scope or name.removeprefix('pkg-')}",
        )

    return factory


@pytest.fixture
def make_commit() -> Callable[..., ReleaseCommit]:
    """Factory for classified commits.

    make_commit("feat", "a")               single, scope a
    make_commit("fix")                     single, scopeless
    make_commit(targets=[("feat", "a", True), ("fix", "b", False)])  multi
    """
    counter = iter(range(1_000_000))

    def factory(
        type_: str = "fix",
        *scopes: str,
        breaking: bool = False,
        message: str = "change",
        targets: list[tuple[str, str, bool]] | None = None,
        sha: str | None = None,
    ) -> ReleaseCommit:
        n = next(counter)
        if targets is not None:
            classification = MultiClassification(
                targets=tuple(Target(type=t, scope=s, breaking=b) for t, s, b in targets),
                message=message,
            )
        else:
            classification = SingleClassification(
                type=type_, scopes=scopes, breaking=breaking, message=message
            )
        return ReleaseCommit(
            hash=sha or hashlib.sha1(f"mk-{n}".encode()).hexdigest(),
            author="Dev <dev@example.com>",
            date=EPOCH + timedelta(minutes=n),
            classification=classification,
        )

    return factory


@pytest.fixture
def workspace_root(tmp_path: Path) -> Path:
    """A uv workspace: a ← b ← c chain plus an independent d.

    pkg-b depends on pkg-a, pkg-c depends on pkg-b (via a dependency group),
    pkg-d depends on nothing internal.
    """
    (tmp_path / "pyproject.toml").write_text(
        """\
[project]
name = "workspace-root"
version = "0.0.0"

[tool.uv.workspace]
members = ["packages/*"]

[tool.monorelease]
trunk = "main"
skip-publish = true
"""
    )
    members = {
        "a": ('name = "pkg-a"', '["requests>=2.0"]', ""),
        "b": ('name = "pkg_b"', '["pkg-a>=0.1", "pydantic>=2.0"]', ""),
        "c": ('name = "pkg-c"', "[]", '[dependency-groups]\ntest = ["pkg-b", "pytest"]\n'),
        "d": ('name = "pkg-d"', "[]", ""),
    }
    for directory, (name, deps, extra) in members.items():
        pkg_dir = tmp_path / "packages" / directory
        pkg_dir.mkdir(parents=True)
        (pkg_dir / "pyproject.toml").write_text(
            f'[project]\n{name}\nversion = "0.0.0"\ndependencies = {deps}\n\n{extra}'
        )
    return tmp_path


@pytest.fixture
def tmp_pyproject(tmp_path: Path) -> Path:
    """A package pyproject.toml with internal deps in every location."""
    content = """\
[project]
name = "test-package"
version = "0.0.0"
dependencies = [
    "requests>=2.0",
    "internal-dep>=1.0",
]

[project.optional-dependencies]
dev = ["pytest>=8.0", "another-internal[extra]>=0.5"]

[dependency-groups]
test = ["pytest>=8.0", "group-internal>=0.1"]
"""
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text(content)
    return pyproject


@pytest.fixture
def sample_toml_doc() -> tomlkit.TOMLDocument:
    """A parsed root pyproject.toml."""
    content = """\
[project]
name = "my-package"
version = "2.0.0"
dependencies = ["click>=8.0", "pydantic>=2.0"]

[project.optional-dependencies]
dev = ["pytest>=8.0"]

[dependency-groups]
test = ["hypothesis>=6.0", {include-group = "dev"}]

[tool.uv.workspace]
members = ["packages/*", "libs/*"]

[tool.monorelease]
dist-tag = "stable"
"""
    return tomlkit.parse(content)
