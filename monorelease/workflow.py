"""Release workflow: a dependency-ordered, retryable, resumable node graph.

Graph structure for a plan with items A, B, C::

    Preflight --> Publish:A --> CreateTag:A@1.1.0 --> PushTag:A@1.1.0 --> CreateGHRelease:A@1.1.0
             |--> Publish:B --> CreateTag:B@0.2.0 --> ...
             `--> Publish:C --> ...

Nodes run as soon as their dependencies succeed, so the per-item chains run
concurrently while each chain is strictly sequential. A node whose
dependency failed is reported as blocked and never runs.

Every node outcome is recorded in a NodeStore under the workflow id (a hash
of the plan and execution options). Executing the same plan again resumes:
nodes recorded as completed are skipped, so a package is never published or
tagged twice.

Dry runs print what each node would do and touch neither collaborators nor
the store.
"""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .backends import VCS, Publisher, ReleaseHost
from .cascade import CASCADE_SHA
from .errors import (
    ExternalReleaseError,
    PlanError,
    PreflightError,
    PublishError,
    ReleaseError,
    TagError,
)
from .models import Plan, PreviewItem, PrItem, StableItem
from .preflight import Preflight
from .store import NodeStore
from .versions import format_tag, short_sha

PREFLIGHT = "Preflight"

AnyItem = StableItem | PreviewItem | PrItem


class RetryPolicy(BaseModel):
    """How many extra attempts a node gets after its first failure."""

    model_config = ConfigDict(frozen=True)

    times: int = Field(default=0, ge=0)

    @property
    def attempts(self) -> int:
        return self.times + 1


NO_RETRY = RetryPolicy()
RETRY_TWICE = RetryPolicy(times=2)


@dataclass(frozen=True)
class Node:
    """One unit of work in the workflow graph.

    Attributes:
        name: Unique node id, also the key of its persisted state.
        action: Human-readable description, used for dry-run output.
        operation: Blocking callable performing the side effect.
        dependencies: Names of nodes that must succeed first.
        retry: Retry policy applied when ``operation`` raises.
    """

    name: str
    action: str
    operation: Callable[[], None]
    dependencies: tuple[str, ...] = ()
    retry: RetryPolicy = NO_RETRY


@dataclass(frozen=True)
class WorkflowGraph:
    """Immutable node graph; ``add`` returns a new graph.

    Nodes are kept in insertion order, and a node can only depend on nodes
    added before it, so insertion order is always a valid execution order.
    """

    nodes: tuple[Node, ...] = ()
    _index: dict[str, Node] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_index", {n.name: n for n in self.nodes})

    def add(self, node: Node) -> WorkflowGraph:
        if node.name in self._index:
            raise PlanError(f"Duplicate workflow node: {node.name}")
        missing = [d for d in node.dependencies if d not in self._index]
        if missing:
            raise PlanError(f"Node {node.name} depends on unknown nodes: {', '.join(missing)}")
        return WorkflowGraph(nodes=(*self.nodes, node))

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, name: str) -> Node:
        return self._index[name]

    def layers(self) -> list[list[str]]:
        """Group node names by depth: every node's dependencies are in
        earlier layers."""
        depth: dict[str, int] = {}
        for node in self.nodes:
            depth[node.name] = 1 + max((depth[d] for d in node.dependencies), default=-1)
        layers: list[list[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for node in self.nodes:
            layers[depth[node.name]].append(node.name)
        return layers


class ExecuteOptions(BaseModel):
    """Execution options; all but ``dry_run`` are part of the workflow id."""

    model_config = ConfigDict(frozen=True)

    dry_run: bool = False
    remote: str = "origin"
    dist_tag: str = "latest"
    preview_tag: str = "next"
    registry: str | None = None
    skip_publish: bool = False


NodeOutcome = Literal["completed", "resumed", "failed", "blocked"]


class ExecutionResult(BaseModel):
    """Outcome of one workflow execution.

    Node name lists follow graph order.
    """

    workflow_id: str
    dry_run: bool = False
    completed: list[str] = Field(default_factory=list)
    resumed: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
    blocked: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.blocked

    def _done(self, prefix: str) -> list[str]:
        return [
            name.removeprefix(prefix)
            for name in (*self.completed, *self.resumed)
            if name.startswith(prefix)
        ]

    @property
    def released_packages(self) -> list[str]:
        return self._done("Publish:")

    @property
    def created_tags(self) -> list[str]:
        return self._done("CreateTag:")

    @property
    def created_releases(self) -> list[str]:
        return self._done("CreateGHRelease:")


def workflow_id(plan: Plan, options: ExecuteOptions) -> str:
    """Stable id for executing ``plan`` with ``options``."""
    payload = plan.model_dump_json() + options.model_dump_json(exclude={"dry_run"})
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Release notes
# ---------------------------------------------------------------------------


def render_release_body(item: AnyItem) -> str:
    """Render markdown release notes for one item.

    Commits are projected onto the item's package scope and grouped into
    Breaking Changes, Features, Bug Fixes and Other Changes.
    """
    scoped = [c.for_scope(item.package.scope) for c in item.commits]
    breaking = [c for c in scoped if c.breaking]
    features = [c for c in scoped if c.type == "feat" and not c.breaking]
    fixes = [c for c in scoped if c.type == "fix" and not c.breaking]
    other = [c for c in scoped if not c.breaking and c.type not in ("feat", "fix")]

    lines = [f"## {item.package.name} v{item.next_version}", ""]
    for title, commits in (
        ("Breaking Changes", breaking),
        ("Features", features),
        ("Bug Fixes", fixes),
        ("Other Changes", other),
    ):
        if not commits:
            continue
        lines += [f"### {title}", ""]
        for c in commits:
            ref = "" if c.hash == CASCADE_SHA else f" ({short_sha(c.hash)})"
            lines.append(f"- {c.description}{ref}")
        lines.append("")
    return "\n".join(lines)


def release_title(item: AnyItem, preview_tag: str = "next") -> str:
    if isinstance(item, PreviewItem):
        return f"{item.package.name} @{preview_tag}"
    return f"{item.package.name} v{item.next_version}"


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------


def _guarded(operation: Callable[[], None], wrap: Callable[[str], ReleaseError]):
    """Wrap foreign exceptions raised by ``operation`` into a typed error."""

    def run() -> None:
        try:
            operation()
        except ReleaseError:
            raise
        except Exception as exc:
            raise wrap(str(exc)) from exc

    return run


def _dist_tag(item: AnyItem, options: ExecuteOptions) -> str:
    match item:
        case PreviewItem():
            return options.preview_tag
        case PrItem(pr_number=pr_number):
            return f"pr-{pr_number}"
    return options.dist_tag


def build_release_graph(
    plan: Plan,
    *,
    vcs: VCS,
    host: ReleaseHost,
    publisher: Publisher,
    preflight: Preflight | None,
    options: ExecuteOptions,
) -> WorkflowGraph:
    """Build the node graph for ``plan``.

    The Preflight node is omitted for dry runs or when ``preflight`` is None.
    """
    items: Sequence[AnyItem] = plan.items
    pins = {item.package.name: item.next_version for item in items}
    is_preview = plan.lifecycle == "preview"
    graph = WorkflowGraph()

    gate: tuple[str, ...] = ()
    if preflight is not None and not options.dry_run:

        def run_preflight() -> None:
            preflight.run(items)

        graph = graph.add(
            Node(
                name=PREFLIGHT,
                action="run preflight checks",
                operation=_guarded(run_preflight, lambda d: PreflightError("preflight", d)),
            )
        )
        gate = (PREFLIGHT,)

    for item in items:
        pkg = item.package
        version = item.next_version
        tag = format_tag(pkg.name, version)
        item_pins = {name: v for name, v in pins.items() if name != pkg.name}
        dist_tag = _dist_tag(item, options)

        def publish(item=item, version=version, item_pins=item_pins, dist_tag=dist_tag) -> None:
            if options.skip_publish:
                print(f"  Skipping publish of {item.package.name} {version}")
                return
            print(f"  Publishing {item.package.name} {version}...")
            publisher.publish(
                item.package,
                version,
                dist_tag=dist_tag,
                registry=options.registry,
                pins=item_pins,
            )

        def create_tag(tag=tag) -> None:
            if tag in vcs.get_tags():
                print(f"  Tag {tag} already exists locally")
                return
            print(f"  Creating tag: {tag}")
            vcs.create_tag(tag, f"Release {tag}")

        def push_tag(tag=tag) -> None:
            print(f"  Pushing tag: {tag}")
            vcs.push_tag(tag, options.remote, is_preview)

        def create_release(item=item, tag=tag) -> None:
            body = render_release_body(item)
            if is_preview and host.release_exists(tag):
                print(f"  Updating existing preview release: {tag}")
                host.update_release(tag, body)
                return
            print(f"  Creating release: {tag}")
            host.create_release(
                tag,
                release_title(item, options.preview_tag),
                body,
                prerelease=plan.lifecycle != "stable",
            )

        publish_node = f"Publish:{pkg.name}"
        tag_node = f"CreateTag:{tag}"
        push_node = f"PushTag:{tag}"
        graph = (
            graph.add(
                Node(
                    name=publish_node,
                    action=f"publish {tag}",
                    operation=_guarded(publish, lambda d, n=pkg.name: PublishError(n, d)),
                    dependencies=gate,
                    retry=RETRY_TWICE,
                )
            )
            .add(
                Node(
                    name=tag_node,
                    action=f"create tag: {tag}",
                    operation=_guarded(create_tag, lambda d, t=tag: TagError(t, d)),
                    dependencies=(publish_node,),
                )
            )
            .add(
                Node(
                    name=push_node,
                    action=f"push tag: {tag}",
                    operation=_guarded(push_tag, lambda d, t=tag: TagError(t, d)),
                    dependencies=(tag_node,),
                    retry=RETRY_TWICE,
                )
            )
            .add(
                Node(
                    name=f"CreateGHRelease:{tag}",
                    action=f"create release: {tag}",
                    operation=_guarded(
                        create_release, lambda d, t=tag: ExternalReleaseError(t, d)
                    ),
                    dependencies=(push_node,),
                    retry=RETRY_TWICE,
                )
            )
        )

    return graph


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class _Run:
    """State of one execution; outcomes are keyed by node name."""

    def __init__(self, graph: WorkflowGraph, store: NodeStore, wid: str, dry_run: bool) -> None:
        self.graph = graph
        self.store = store
        self.wid = wid
        self.dry_run = dry_run
        self.outcomes: dict[str, NodeOutcome] = {}
        self.errors: dict[str, ReleaseError] = {}

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        done: dict[str, asyncio.Future[bool]] = {n.name: loop.create_future() for n in self.graph}

        async def schedule(node: Node) -> None:
            deps_ok = True
            for dep in node.dependencies:
                deps_ok = await done[dep] and deps_ok
            if not deps_ok:
                self.outcomes[node.name] = "blocked"
                done[node.name].set_result(False)
                return
            done[node.name].set_result(await self.run_node(node))

        await asyncio.gather(*(schedule(node) for node in self.graph))

    async def run_node(self, node: Node) -> bool:
        if self.dry_run:
            print(f"[dry-run] Would {node.action}")
            self.outcomes[node.name] = "completed"
            return True

        record = self.store.get(self.wid, node.name)
        if record is not None and record.status == "completed":
            print(f"↷ Resumed: {node.name}")
            self.outcomes[node.name] = "resumed"
            return True

        attempts = node.retry.attempts
        error: ReleaseError | None = None
        for attempt in range(1, attempts + 1):
            if attempt == 1:
                print(f"  Starting: {node.name}")
            else:
                print(f"  Retrying: {node.name} (attempt {attempt}/{attempts})")
            try:
                await asyncio.to_thread(node.operation)
            except ReleaseError as exc:
                error = exc
                continue
            self.store.put(self.wid, node.name, "completed")
            print(f"✓ Completed: {node.name}")
            self.outcomes[node.name] = "completed"
            return True

        self.store.put(self.wid, node.name, "failed", str(error))
        print(f"✗ Failed: {node.name} - {error}")
        self.outcomes[node.name] = "failed"
        self.errors[node.name] = error
        return False

    def result(self) -> ExecutionResult:
        def named(outcome: NodeOutcome) -> list[str]:
            return [n.name for n in self.graph if self.outcomes.get(n.name) == outcome]

        return ExecutionResult(
            workflow_id=self.wid,
            dry_run=self.dry_run,
            completed=named("completed"),
            resumed=named("resumed"),
            failed={name: str(self.errors[name]) for name in named("failed")},
            blocked=named("blocked"),
        )


async def execute_async(
    plan: Plan,
    *,
    vcs: VCS,
    host: ReleaseHost,
    publisher: Publisher,
    store: NodeStore,
    preflight: Preflight | None = None,
    options: ExecuteOptions | None = None,
) -> ExecutionResult:
    """Execute ``plan`` on the running event loop.

    Raises:
        PreflightError: If preflight fails; no other node runs.
    """
    options = options or ExecuteOptions()
    graph = build_release_graph(
        plan, vcs=vcs, host=host, publisher=publisher, preflight=preflight, options=options
    )
    wid = workflow_id(plan, options)
    print(
        f"Starting release workflow {wid} for {len(plan.items)} packages "
        f"({len(graph)} steps in {len(graph.layers())} stages)..."
    )

    state = _Run(graph, store, wid, options.dry_run)
    await state.run()

    preflight_error = state.errors.get(PREFLIGHT)
    if preflight_error is not None:
        if isinstance(preflight_error, PreflightError):
            raise preflight_error
        raise PreflightError("preflight", str(preflight_error)) from preflight_error

    result = state.result()
    print(f"Workflow complete: {len(result.released_packages)} packages released")
    return result


def execute(plan: Plan, **kwargs) -> ExecutionResult:
    """Synchronous entry point; see ``execute_async``."""
    return asyncio.run(execute_async(plan, **kwargs))
