"""Release pipeline: discover → collect → plan → validate → execute.

This module wires the pure planning core to its collaborators:
1. Discover all packages in the uv workspace
2. Collect and classify commits since each package's last stable tag
3. Plan the release (analysis, versions, cascades)
4. Validate stable versions against tag history (monotonic versioning)
5. Execute the plan as a resumable workflow

Collaborators are carried by a ReleaseContext instead of module globals, so
tests can swap in in-memory doubles.
"""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .analyzer import commit_applies_to, find_last_stable_tag
from .backends import (
    VCS,
    CommitClassifier,
    GhReleaseHost,
    GitCli,
    Publisher,
    RawCommit,
    ReleaseHost,
    UvPublisher,
)
from .cascade import find_cascade_names
from .config import (
    ReleaseConfig,
    detect_pr_number,
    load_config,
    override_config,
    resolve_classifier,
)
from .errors import PlanError
from .models import Lifecycle, Package, Plan, ReleaseCommit
from .monotonic import AuditResult, ValidationResult, audit_repository, validate_adjacent
from .planner import PlanOptions, plan as build_plan
from .preflight import GitPreflight
from .shell import step
from .store import MemoryNodeStore, SqliteNodeStore
from .versions import format_tag
from .workflow import ExecuteOptions, ExecutionResult, execute
from .workspace import Workspace, discover_packages


@dataclass
class ReleaseContext:
    """Collaborators and settings for one command invocation."""

    root: Path
    config: ReleaseConfig
    vcs: VCS
    host: ReleaseHost
    publisher: Publisher
    classifier: CommitClassifier | None = None
    env: Mapping[str, str] = field(default_factory=lambda: os.environ)

    @classmethod
    def live(cls, root: Path) -> ReleaseContext:
        """Context backed by git, gh and uv for the workspace at ``root``."""
        config = load_config(root)
        return cls(
            root=root,
            config=config,
            vcs=GitCli(root),
            host=GhReleaseHost(root),
            publisher=UvPublisher(),
            classifier=resolve_classifier(config.classifier) if config.classifier else None,
        )

    @property
    def plan_path(self) -> Path:
        return self.root / self.config.plan_path

    @property
    def db_path(self) -> Path:
        return self.root / self.config.db_path


def discover(ctx: ReleaseContext) -> Workspace:
    """Scan the workspace and print what was found."""
    step("Discovering workspace packages")
    workspace = discover_packages(ctx.root)
    for pkg in workspace.packages:
        deps = workspace.deps.get(pkg.name, [])
        arrow = f" → [{', '.join(deps)}]" if deps else ""
        print(f"  {pkg.name} ({pkg.scope}){arrow}")
    return workspace


def collect_commits(
    vcs: VCS,
    classify: CommitClassifier,
    packages: Sequence[Package],
    tags: Sequence[str],
) -> dict[str, list[ReleaseCommit]]:
    """Collect classified commits per package since its last stable tag.

    Each commit message is classified once even when it is reachable from
    several packages' ranges. Messages the classifier rejects (None) are
    skipped; a ParseError it raises propagates.

    Returns:
        Map of package name → commits touching that package, newest first.
    """
    sole = len(packages) == 1
    logs: dict[str | None, list[RawCommit]] = {}
    classified: dict[str, ReleaseCommit | None] = {}
    result: dict[str, list[ReleaseCommit]] = {}

    for pkg in packages:
        since = find_last_stable_tag(pkg.name, tags)
        if since not in logs:
            logs[since] = vcs.get_commits_since(since)

        commits: list[ReleaseCommit] = []
        for raw in logs[since]:
            if raw.hash not in classified:
                classification = classify(raw.message)
                classified[raw.hash] = (
                    None
                    if classification is None
                    else ReleaseCommit(
                        hash=raw.hash,
                        author=raw.author,
                        date=raw.date,
                        classification=classification,
                    )
                )
            commit = classified[raw.hash]
            if commit is not None and commit_applies_to(commit, pkg.scope, sole):
                commits.append(commit)

        result[pkg.name] = commits
        print(f"  {pkg.name}: {len(commits)} commits since {since or '<first release>'}")

    return result


def print_plan(plan: Plan) -> None:
    if plan.is_empty:
        print("  Nothing to release")
        return
    for title, items in (("Releases", plan.releases), ("Cascades", plan.cascades)):
        if not items:
            continue
        print(f"  {title}:")
        for item in items:
            current = item.current_version or "<none>"
            bump = f" ({item.bump})" if item.bump else ""
            print(f"    {item.package.name} {current} → {item.next_version}{bump}")


def create_plan(
    ctx: ReleaseContext,
    lifecycle: Lifecycle,
    options: PlanOptions | None = None,
) -> tuple[Plan, list[ValidationResult]]:
    """Plan a release of the workspace at ``ctx.root``.

    Stable plans are validated against tag history at HEAD. The caller
    decides whether violations are fatal.

    Raises:
        ConfigError: If no commit classifier is configured.
        PlanError: If the plan cannot be produced.
    """
    options = options or PlanOptions()
    classify = ctx.classifier or resolve_classifier(ctx.config.classifier)

    workspace = discover(ctx)

    step("Collecting commits")
    tags = ctx.vcs.get_tags()
    commits = collect_commits(ctx.vcs, classify, workspace.packages, tags)

    head = ctx.vcs.get_head_sha()
    if lifecycle == "stable":
        branch = ctx.vcs.get_current_branch()
        if branch != ctx.config.trunk:
            print(f"  Warning: planning a stable release on {branch}, not {ctx.config.trunk}")
    if lifecycle == "pr":
        options = options.model_copy(
            update={
                "pr_number": options.pr_number or detect_pr_number(ctx.env),
                "head_sha": options.head_sha or head,
            }
        )

    step(f"Planning {lifecycle} release")
    plan = build_plan(lifecycle, workspace.packages, commits, tags, workspace.graph(), options)
    print_plan(plan)

    validations: list[ValidationResult] = []
    if lifecycle == "stable" and not plan.is_empty:
        step("Validating monotonic versions")
        for item in plan.items:
            validation = validate_adjacent(
                ctx.vcs, head, item.package.name, item.next_version, tags
            )
            validations.append(validation)
            mark = "✓" if validation.valid else "✗"
            print(f"  {mark} {format_tag(item.package.name, item.next_version)}")
            for violation in validation.violations:
                print(f"      {violation.message}")

    return plan, validations


def status(
    ctx: ReleaseContext, packages: Sequence[str] | None = None
) -> tuple[Plan, dict[str, list[str]]]:
    """Show unreleased changes without writing a plan or validating.

    For each named package (name or scope), also report the packages that
    would cascade if it released.

    Returns:
        The stable plan for the current commits, and a map of each named
        package → its cascade names.

    Raises:
        ConfigError: If no commit classifier is configured.
        PlanError: If a named package is not in the workspace.
    """
    classify = ctx.classifier or resolve_classifier(ctx.config.classifier)
    workspace = discover(ctx)

    step("Collecting commits")
    tags = ctx.vcs.get_tags()
    commits = collect_commits(ctx.vcs, classify, workspace.packages, tags)
    graph = workspace.graph()

    step("Pending changes")
    plan = build_plan("stable", workspace.packages, commits, tags, graph)
    print_plan(plan)

    requested: dict[str, list[str]] = {}
    if packages:
        unknown = [name for name in packages if workspace.find(name) is None]
        if unknown:
            raise PlanError(f"Unknown package(s): {', '.join(unknown)}")
        step("Cascades from requested packages")
        for name in packages:
            pkg = workspace.find(name)
            cascades = find_cascade_names([pkg.name], graph)
            requested[pkg.name] = cascades
            print(f"  {pkg.name} → {', '.join(cascades) if cascades else '<none>'}")

    return plan, requested


def execute_options(config: ReleaseConfig, dry_run: bool) -> ExecuteOptions:
    return ExecuteOptions(
        dry_run=dry_run,
        remote=config.remote,
        dist_tag=config.dist_tag,
        preview_tag=config.preview_tag,
        registry=config.registry,
        skip_publish=config.skip_publish,
    )


def apply_plan(
    ctx: ReleaseContext,
    plan: Plan,
    dry_run: bool = False,
    overrides: Mapping[str, object] | None = None,
) -> ExecutionResult:
    """Execute ``plan``; resumes a previous run of the same plan.

    ``overrides`` replace configuration fields for this run only. Options
    that reach the workflow change its id, so a different remote or
    channel starts a fresh workflow.

    Raises:
        PreflightError: If a preflight check fails.
        ConfigError: If an override is not a valid configuration value.
    """
    step(f"Executing {plan.lifecycle} release" + (" (dry run)" if dry_run else ""))
    config = override_config(ctx.config, overrides or {})
    options = execute_options(config, dry_run)
    preflight = GitPreflight(
        ctx.vcs,
        remote=config.remote,
        require_publish_token=config.require_publish_token,
        skip_publish=config.skip_publish,
        env=ctx.env,
    )
    services = dict(
        vcs=ctx.vcs, host=ctx.host, publisher=ctx.publisher, preflight=preflight, options=options
    )

    if dry_run:
        return execute(plan, store=MemoryNodeStore(), **services)
    with SqliteNodeStore(ctx.db_path) as store:
        return execute(plan, store=store, **services)


def audit(ctx: ReleaseContext, packages: Sequence[str] | None = None) -> list[AuditResult]:
    """Audit the stable tag history of ``packages`` (default: all tagged)."""
    step("Auditing release history")
    results = audit_repository(ctx.vcs, ctx.vcs.get_tags(), packages or None)
    for result in results:
        mark = "✓" if result.valid else "✗"
        print(f"  {mark} {result.package} ({len(result.releases)} releases)")
        for violation in result.violations:
            print(f"      {violation.message}")
    return results
