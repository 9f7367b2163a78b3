"""pyproject.toml access for the workspace root and its members.

Documents are handled as tomlkit documents so that a member's pyproject.toml
can be rewritten for a build and written back byte-for-byte afterwards.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import tomlkit
from packaging.utils import canonicalize_name
from tomlkit.exceptions import TOMLKitError

from .errors import ConfigError


def load_pyproject(path: Path) -> tomlkit.TOMLDocument:
    """Parse ``path`` into a format-preserving document.

    Raises:
        ConfigError: If the file is missing or is not valid TOML.
    """
    try:
        text = path.read_text()
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc
    try:
        return tomlkit.parse(text)
    except TOMLKitError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc


def save_pyproject(path: Path, doc: tomlkit.TOMLDocument) -> None:
    path.write_text(tomlkit.dumps(doc))


def get_project_name(doc: tomlkit.TOMLDocument, fallback: str) -> str:
    """PEP 503 name of the project, or of ``fallback`` when [project].name is unset.

    Tags and dependency lookups always use this canonical form, so
    ``My_Pkg`` and ``my-pkg`` refer to the same package.
    """
    name = doc.get("project", {}).get("name") or fallback
    return canonicalize_name(str(name))


def get_all_dependency_strings(doc: tomlkit.TOMLDocument) -> list[str]:
    """Every PEP 508 requirement the document declares.

    Runtime dependencies come first, then each optional-dependency extra,
    then each dependency group. ``{include-group = ...}`` entries are not
    requirements and are left out.
    """
    project = doc.get("project", {})
    requirements = [str(r) for r in project.get("dependencies", [])]
    sections = [
        *project.get("optional-dependencies", {}).values(),
        *doc.get("dependency-groups", {}).values(),
    ]
    for section in sections:
        requirements.extend(str(r) for r in section if isinstance(r, str))
    return requirements


def get_workspace_member_globs(doc: tomlkit.TOMLDocument) -> list[str]:
    """The ``members`` globs of the root's [tool.uv.workspace] table.

    Raises:
        ConfigError: If the table is missing or lists no members.
    """
    workspace = doc.get("tool", {}).get("uv", {}).get("workspace", {})
    globs = [str(g) for g in workspace.get("members", [])]
    if not globs:
        raise ConfigError("No [tool.uv.workspace] members defined in root pyproject.toml")
    return globs


def get_tool_table(doc: tomlkit.TOMLDocument, name: str) -> dict[str, Any]:
    """Return the [tool.<name>] table as plain Python values (empty if absent)."""
    table = doc.get("tool", {}).get(name)
    if table is None:
        return {}
    return table.unwrap() if hasattr(table, "unwrap") else dict(table)
