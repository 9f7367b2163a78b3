"""Internal dependency discovery and build-time pinning.

A workspace package depends on another when any of its PEP 508
requirements names it. At publish time the member's pyproject.toml is
rewritten: the planned version replaces [project].version and every
requirement on a package released alongside it becomes an exact pin.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any, cast

from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name

from .errors import ConfigError
from .toml import load_pyproject, save_pyproject


def dep_canonical_name(dep_str: str) -> str:
    """PEP 503 name of the distribution a requirement refers to.

    ``"My_Package[extra]~=1.0"`` gives ``"my-package"``.

    Raises:
        ConfigError: If the string is not a valid requirement.
    """
    try:
        req = Requirement(dep_str)
    except InvalidRequirement as exc:
        raise ConfigError(f"Invalid dependency {dep_str!r}: {exc}") from exc
    return canonicalize_name(req.name)


def internal_dependencies(dep_strings: Iterable[str], workspace: Iterable[str]) -> list[str]:
    """Workspace names among ``dep_strings``, each once, in first-seen order."""
    members = set(workspace)
    found: dict[str, None] = {}
    for dep_str in dep_strings:
        name = dep_canonical_name(dep_str)
        if name in members:
            found.setdefault(name)
    return list(found)


def pin_dep(dep_str: str, version: str) -> str:
    """Replace the specifier of ``dep_str`` with ``==version``.

    Extras (sorted) and environment markers survive:
    ``pin_dep("pkg[b,a]~=1.0; python_version<'3.12'", "1.5.0")`` gives
    ``'pkg[a,b]==1.5.0; python_version < "3.12"'``.
    """
    req = Requirement(dep_str)
    pinned = req.name
    if req.extras:
        pinned += "[" + ",".join(sorted(req.extras)) + "]"
    pinned += f"=={version}"
    if req.marker:
        pinned += f"; {req.marker}"
    return pinned


def _requirement_lists(doc: Any) -> Iterator[list]:
    project = doc["project"]
    yield project.get("dependencies")
    yield from (project.get("optional-dependencies") or {}).values()
    yield from (doc.get("dependency-groups") or {}).values()


def rewrite_pyproject(
    pyproject_path: Path,
    new_version: str,
    internal_dep_versions: Mapping[str, str],
) -> str:
    """Write ``new_version`` and exact internal pins into a member's pyproject.toml.

    A ``dynamic = ["version"]`` declaration is dropped in favour of the
    static version. Returns the file's previous text so the caller can
    restore it once the build is done.
    """
    original = pyproject_path.read_text()
    doc = load_pyproject(pyproject_path)
    project = cast(dict[str, Any], doc["project"])
    project["version"] = new_version

    dynamic = project.get("dynamic")
    if isinstance(dynamic, list) and "version" in dynamic:
        dynamic.remove("version")
        if not dynamic:
            del project["dynamic"]

    for requirements in _requirement_lists(doc):
        if not isinstance(requirements, list):
            continue
        for index, entry in enumerate(requirements):
            # {include-group = "..."} tables are not requirements
            if not isinstance(entry, str):
                continue
            name = dep_canonical_name(entry)
            if name in internal_dep_versions:
                requirements[index] = pin_dep(entry, internal_dep_versions[name])

    save_pyproject(pyproject_path, doc)
    return original
