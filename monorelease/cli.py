"""CLI entry point for monorelease."""

from __future__ import annotations

import argparse
from importlib.metadata import version as pkg_version
from pathlib import Path

from .errors import ReleaseError
from .pipeline import ReleaseContext, apply_plan, audit, create_plan, status
from .planner import PlanOptions, read_plan, write_plan
from .shell import fatal

__version__ = pkg_version("monorelease")


def _context() -> ReleaseContext:
    return ReleaseContext.live(Path.cwd())


def cmd_plan(args: argparse.Namespace) -> None:
    """Plan a release and write the plan file."""
    ctx = _context()
    options = PlanOptions(
        packages=tuple(args.packages) if args.packages else None,
        exclude=tuple(args.exclude or ()),
        pr_number=args.pr_number,
    )
    plan, validations = create_plan(ctx, args.lifecycle, options)

    invalid = [v for v in validations if not v.valid]
    if invalid and not args.allow_non_monotonic:
        for validation in invalid:
            validation.raise_for_violations()

    path = Path(args.plan) if args.plan else ctx.plan_path
    write_plan(plan, path)
    print(f"\n✓ Wrote plan to {path}")
    if not plan.is_empty:
        print("  Run `monorelease apply` to execute it.")


def cmd_apply(args: argparse.Namespace) -> None:
    """Execute a previously written plan."""
    ctx = _context()
    plan = read_plan(Path(args.plan) if args.plan else ctx.plan_path)
    if plan.is_empty:
        print("Nothing to release")
        return

    overrides = {
        "remote": args.remote,
        "dist_tag": args.dist_tag,
        "preview_tag": args.preview_tag,
        "registry": args.registry,
        "skip_publish": args.skip_publish,
    }
    result = apply_plan(ctx, plan, dry_run=args.dry_run, overrides=overrides)
    if not result.ok:
        problems = [f"{node}: {error}" for node, error in result.failed.items()]
        problems += [f"{node}: blocked by a failed dependency" for node in result.blocked]
        fatal(
            "Release incomplete:\n"
            + "\n".join(f"  - {p}" for p in problems)
            + "\n\nFix the cause and re-run `monorelease apply` to resume."
        )

    print(f"\n✓ Released {len(result.released_packages)} packages")
    for tag in result.created_tags:
        print(f"  {tag}")
    if result.created_releases:
        print(f"  {len(result.created_releases)} release records published")


def cmd_status(args: argparse.Namespace) -> None:
    """Show unreleased changes and, for named packages, their cascades."""
    plan, _ = status(_context(), args.packages)
    if not plan.is_empty:
        print("\n  Run `monorelease plan` to write a release plan.")


def cmd_audit(args: argparse.Namespace) -> None:
    """Audit the full tag history for version ordering violations."""
    results = audit(_context(), args.packages)
    bad = [r for r in results if not r.valid]
    if bad:
        fatal(f"Monotonic violations in: {', '.join(r.package for r in bad)}")
    print("\n✓ Release history is monotonic")


def cli(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="monorelease",
        description="Commit-driven versioning and releases for uv workspaces.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # plan subcommand
    plan_parser = subparsers.add_parser(
        "plan", help="Compute next versions and cascades, write the plan file."
    )
    plan_parser.add_argument(
        "--lifecycle",
        choices=["stable", "preview", "pr"],
        default="stable",
        help="Release lifecycle. (default: %(default)s)",
    )
    plan_parser.add_argument(
        "--pr-number",
        type=int,
        default=None,
        help="PR number for pr releases. Detected from CI environment if omitted.",
    )
    plan_parser.add_argument(
        "-p",
        "--package",
        dest="packages",
        action="append",
        metavar="NAME",
        help="Only release this package, by name or scope (repeatable).",
    )
    plan_parser.add_argument(
        "-x",
        "--exclude",
        action="append",
        metavar="NAME",
        help="Never release this package, by name or scope (repeatable).",
    )
    plan_parser.add_argument(
        "--allow-non-monotonic",
        action="store_true",
        help="Write the plan even if a version breaks tag history ordering.",
    )
    plan_parser.add_argument(
        "--plan", default=None, help="Plan file path. (default: from config)"
    )
    plan_parser.set_defaults(func=cmd_plan)

    # apply subcommand
    apply_parser = subparsers.add_parser(
        "apply", help="Execute the plan: publish, tag, push, create releases."
    )
    apply_parser.add_argument(
        "--dry-run", action="store_true", help="Print what would happen."
    )
    apply_parser.add_argument(
        "--plan", default=None, help="Plan file path. (default: from config)"
    )
    apply_parser.add_argument(
        "--remote", default=None, help="Git remote to push tags to. (default: from config)"
    )
    apply_parser.add_argument(
        "--dist-tag",
        default=None,
        help="Distribution channel for stable releases. (default: from config)",
    )
    apply_parser.add_argument(
        "--preview-tag",
        default=None,
        help="Channel name for preview releases. (default: from config)",
    )
    apply_parser.add_argument(
        "--registry", default=None, help="Package index upload URL. (default: from config)"
    )
    apply_parser.add_argument(
        "--skip-publish",
        action="store_true",
        default=None,
        help="Only create tags and release records.",
    )
    apply_parser.set_defaults(func=cmd_apply)

    # status subcommand
    status_parser = subparsers.add_parser(
        "status", help="Show unreleased changes without writing a plan."
    )
    status_parser.add_argument(
        "packages",
        nargs="*",
        metavar="NAME",
        help="Also show what would cascade from these packages.",
    )
    status_parser.set_defaults(func=cmd_status)

    # audit subcommand
    audit_parser = subparsers.add_parser(
        "audit", help="Verify existing release tags increase with commit order."
    )
    audit_parser.add_argument(
        "packages", nargs="*", metavar="NAME", help="Packages to audit (default: all)."
    )
    audit_parser.set_defaults(func=cmd_audit)

    args = parser.parse_args(argv)
    try:
        args.func(args)
    except ReleaseError as exc:
        fatal(str(exc))
