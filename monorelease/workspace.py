"""Workspace discovery.

Reads [tool.uv.workspace].members from the root pyproject.toml, expands the
member globs and loads every member's pyproject.toml to find its canonical
name and internal dependencies.
"""

from __future__ import annotations

import glob
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from .deps import internal_dependencies
from .errors import ConfigError
from .graph import DependencyGraph, build_dependency_graph
from .models import Package
from .toml import (
    get_all_dependency_strings,
    get_project_name,
    get_workspace_member_globs,
    load_pyproject,
)


class Workspace(BaseModel):
    """Packages of a uv workspace and their internal dependencies.

    Attributes:
        root: Absolute path of the workspace root.
        packages: Members in discovery order (sorted per member glob).
        deps: Map of package name → internal dependency names.
    """

    model_config = ConfigDict(frozen=True)

    root: str
    packages: tuple[Package, ...]
    deps: dict[str, list[str]]

    def graph(self) -> DependencyGraph:
        """Dependents graph for cascade detection."""
        return build_dependency_graph(self.deps)

    def find(self, name_or_scope: str) -> Package | None:
        for pkg in self.packages:
            if name_or_scope in (pkg.name, pkg.scope):
                return pkg
        return None


def find_member_dirs(root: Path, member_globs: list[str]) -> list[Path]:
    """Expand member globs into directories containing a pyproject.toml."""
    member_dirs: list[Path] = []
    for pattern in member_globs:
        for match in sorted(glob.glob(str(root / pattern))):
            p = Path(match)
            if (p / "pyproject.toml").exists() and p not in member_dirs:
                member_dirs.append(p)
    return member_dirs


def discover_packages(root: Path) -> Workspace:
    """Scan the workspace rooted at ``root``.

    Each member becomes a Package whose scope is its directory name, the
    name conventional commit scopes use to refer to it.

    Raises:
        ConfigError: If no members are defined or found, or two members
            share a name or scope.
    """
    root = root.resolve()
    member_globs = get_workspace_member_globs(load_pyproject(root / "pyproject.toml"))
    member_dirs = find_member_dirs(root, member_globs)
    if not member_dirs:
        raise ConfigError("No packages found matching workspace members")

    packages: list[Package] = []
    raw_deps: dict[str, list[str]] = {}
    for d in member_dirs:
        doc = load_pyproject(d / "pyproject.toml")
        pkg = Package(name=get_project_name(doc, d.name), scope=d.name, path=str(d))
        for other in packages:
            if pkg.name == other.name or pkg.scope == other.scope:
                raise ConfigError(
                    f"Workspace members {other.path} and {pkg.path} share a name or scope"
                )
        packages.append(pkg)
        raw_deps[pkg.name] = get_all_dependency_strings(doc)

    names = [p.name for p in packages]
    deps = {
        name: [d for d in internal_dependencies(dep_strings, names) if d != name]
        for name, dep_strings in raw_deps.items()
    }
    return Workspace(root=str(root), packages=tuple(packages), deps=deps)
