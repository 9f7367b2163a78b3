"""Configuration: the [tool.monorelease] table and CI environment.

Example root pyproject.toml::

    [tool.uv.workspace]
    members = ["packages/*"]

    [tool.monorelease]
    trunk = "main"
    classifier = "myrepo.release:classify"
    skip-publish = false

Keys may be written with hyphens or underscores.
"""

from __future__ import annotations

import os
import pkgutil
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import ConfigError
from .toml import get_tool_table, load_pyproject

TOOL_NAME = "monorelease"

_PULL_URL_RE = re.compile(r"/pull/(\d+)")


class ReleaseConfig(BaseModel):
    """Validated [tool.monorelease] settings.

    Attributes:
        trunk: Branch stable releases are cut from.
        remote: Git remote tags are pushed to.
        dist_tag: Distribution channel for stable releases.
        preview_tag: Channel name for preview releases, also used in the
                     title of the rolling preview release record.
        registry: Package index upload URL (uv's default when unset).
        skip_publish: Only tag and create release records.
        classifier: ``module:attr`` of the commit classifier.
        plan_path: Plan file, relative to the workspace root.
        db_path: Workflow state database, relative to the workspace root.
        require_publish_token: Preflight requires UV_PUBLISH_TOKEN.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    trunk: str = "main"
    remote: str = "origin"
    dist_tag: str = "latest"
    preview_tag: str = "next"
    registry: str | None = None
    skip_publish: bool = False
    classifier: str | None = None
    plan_path: str = ".release/plan.json"
    db_path: str = ".release/workflow.db"
    require_publish_token: bool = True


def parse_config(table: Mapping[str, Any]) -> ReleaseConfig:
    """Validate a raw [tool.monorelease] table.

    Raises:
        ConfigError: On unknown keys or values of the wrong type.
    """
    normalized = {key.replace("-", "_"): value for key, value in table.items()}
    try:
        return ReleaseConfig.model_validate(normalized)
    except ValidationError as exc:
        raise ConfigError(f"Invalid [tool.{TOOL_NAME}] configuration:\n{exc}") from exc


def override_config(config: ReleaseConfig, overrides: Mapping[str, Any]) -> ReleaseConfig:
    """Apply command-line values over ``config``; ``None`` leaves a field alone.

    Raises:
        ConfigError: On unknown fields or values of the wrong type.
    """
    changed = {key: value for key, value in overrides.items() if value is not None}
    if not changed:
        return config
    try:
        return ReleaseConfig.model_validate({**config.model_dump(), **changed})
    except ValidationError as exc:
        raise ConfigError(f"Invalid command-line override:\n{exc}") from exc


def load_config(root: Path) -> ReleaseConfig:
    """Load configuration from ``root/pyproject.toml`` (defaults if absent)."""
    path = root / "pyproject.toml"
    if not path.exists():
        return ReleaseConfig()
    return parse_config(get_tool_table(load_pyproject(path), TOOL_NAME))


def resolve_classifier(target: str | None):
    """Import the commit classifier named by ``module:attr``.

    Raises:
        ConfigError: If no classifier is configured or it cannot be imported.
    """
    if not target:
        raise ConfigError(
            f"No commit classifier configured; set [tool.{TOOL_NAME}].classifier "
            "to a 'module:attr' callable"
        )
    try:
        classifier = pkgutil.resolve_name(target)
    except (ImportError, AttributeError, ValueError) as exc:
        raise ConfigError(f"Cannot import classifier {target!r}: {exc}") from exc
    if not callable(classifier):
        raise ConfigError(f"Classifier {target!r} is not callable")
    return classifier


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def detect_pr_number(env: Mapping[str, str] | None = None) -> int | None:
    """Detect the pull request number from CI environment variables.

    Checked in order:
    - GITHUB_PR_NUMBER
    - PR_NUMBER (generic CI)
    - CI_PULL_REQUEST (a pull request URL ending in /pull/<n>)
    """
    env = os.environ if env is None else env

    for var in ("GITHUB_PR_NUMBER", "PR_NUMBER"):
        number = _parse_int(env.get(var))
        if number is not None:
            return number

    url = env.get("CI_PULL_REQUEST")
    if url:
        match = _PULL_URL_RE.search(url)
        if match:
            return int(match.group(1))
    return None
