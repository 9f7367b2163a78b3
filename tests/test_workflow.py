"""Tests for monorelease.workflow."""

from __future__ import annotations

import pytest

from monorelease.cascade import make_cascade_commit
from monorelease.errors import PlanError, PreflightError
from monorelease.models import Plan, PreviewItem, PrItem, StableItem
from monorelease.store import MemoryNodeStore
from monorelease.workflow import (
    PREFLIGHT,
    ExecuteOptions,
    Node,
    WorkflowGraph,
    build_release_graph,
    execute,
    release_title,
    render_release_body,
    workflow_id,
)


def noop() -> None:
    pass


@pytest.fixture
def stable_plan(make_package, make_commit) -> Plan:
    a, b = make_package("pkg-a"), make_package("pkg-b")
    return Plan(
        lifecycle="stable",
        timestamp="2024-01-01T00:00:00+00:00",
        releases=(
            StableItem(
                package=a,
                commits=(make_commit("feat", "a", message="add thing"),),
                bump="minor",
                current_version="1.0.0",
                next_version="1.1.0",
            ),
        ),
        cascades=(
            StableItem(
                package=b,
                commits=(make_cascade_commit("b", "Depends on pkg-a@1.1.0"),),
                bump="patch",
                current_version="0.2.0",
                next_version="0.2.1",
            ),
        ),
    )


@pytest.fixture
def run(vcs, host, publisher, preflight):
    """Execute a plan against the in-memory collaborators."""
    store = MemoryNodeStore()

    def execute_plan(plan: Plan, **options):
        return execute(
            plan,
            vcs=vcs,
            host=host,
            publisher=publisher,
            store=store,
            preflight=preflight,
            options=ExecuteOptions(**options),
        )

    execute_plan.store = store
    return execute_plan


class TestWorkflowGraph:
    """Tests for WorkflowGraph."""

    def test_add_returns_new_graph(self) -> None:
        """Graphs are immutable."""
        empty = WorkflowGraph()
        graph = empty.add(Node(name="a", action="a", operation=noop))
        assert len(empty) == 0
        assert "a" in graph and len(graph) == 1

    def test_duplicate_name(self) -> None:
        """Node names are unique."""
        graph = WorkflowGraph().add(Node(name="a", action="a", operation=noop))
        with pytest.raises(PlanError, match="Duplicate"):
            graph.add(Node(name="a", action="a", operation=noop))

    def test_unknown_dependency(self) -> None:
        """Dependencies must already be in the graph."""
        with pytest.raises(PlanError, match="unknown nodes: missing"):
            WorkflowGraph().add(
                Node(name="a", action="a", operation=noop, dependencies=("missing",))
            )

    def test_layers(self) -> None:
        """Nodes are layered by dependency depth."""
        graph = (
            WorkflowGraph()
            .add(Node(name="root", action="", operation=noop))
            .add(Node(name="x", action="", operation=noop, dependencies=("root",)))
            .add(Node(name="y", action="", operation=noop, dependencies=("root",)))
            .add(Node(name="z", action="", operation=noop, dependencies=("x", "y")))
        )
        assert graph.layers() == [["root"], ["x", "y"], ["z"]]


class TestBuildReleaseGraph:
    """Tests for build_release_graph()."""

    def test_node_chain(self, stable_plan, vcs, host, publisher, preflight) -> None:
        """Preflight gates one Publish → CreateTag → PushTag → release chain per item."""
        graph = build_release_graph(
            stable_plan,
            vcs=vcs,
            host=host,
            publisher=publisher,
            preflight=preflight,
            options=ExecuteOptions(),
        )
        assert graph.layers() == [
            [PREFLIGHT],
            ["Publish:pkg-a", "Publish:pkg-b"],
            ["CreateTag:pkg-a@1.1.0", "CreateTag:pkg-b@0.2.1"],
            ["PushTag:pkg-a@1.1.0", "PushTag:pkg-b@0.2.1"],
            ["CreateGHRelease:pkg-a@1.1.0", "CreateGHRelease:pkg-b@0.2.1"],
        ]
        assert graph.get("Publish:pkg-a").retry.attempts == 3
        assert graph.get("CreateTag:pkg-a@1.1.0").retry.attempts == 1
        assert graph.get(PREFLIGHT).retry.attempts == 1

    def test_dry_run_has_no_preflight(self, stable_plan, vcs, host, publisher, preflight) -> None:
        """Dry runs skip the preflight node."""
        graph = build_release_graph(
            stable_plan,
            vcs=vcs,
            host=host,
            publisher=publisher,
            preflight=preflight,
            options=ExecuteOptions(dry_run=True),
        )
        assert PREFLIGHT not in graph
        assert graph.get("Publish:pkg-a").dependencies == ()


class TestWorkflowId:
    """Tests for workflow_id()."""

    def test_stable_across_dry_run(self, stable_plan) -> None:
        """Dry-run does not change the id; other options do."""
        base = workflow_id(stable_plan, ExecuteOptions())
        assert base == workflow_id(stable_plan, ExecuteOptions(dry_run=True))
        assert base != workflow_id(stable_plan, ExecuteOptions(remote="upstream"))
        assert len(base) == 16


class TestReleaseNotes:
    """Tests for render_release_body() and release_title()."""

    def test_sections(self, make_package, make_commit) -> None:
        """Commits are grouped by kind; cascade commits carry no sha."""
        breaking = make_commit("feat", "a", breaking=True, message="drop py2", sha="1111111aaaa")
        feat = make_commit("feat", "a", message="add cli", sha="2222222bbbb")
        fix = make_commit("fix", "a", message="fix crash", sha="3333333cccc")
        chore = make_cascade_commit("a", "Depends on pkg-z@1.0.0")
        item = StableItem(
            package=make_package("pkg-a"),
            commits=(feat, fix, breaking, chore),
            bump="major",
            next_version="2.0.0",
        )

        body = render_release_body(item)

        assert body.splitlines() == [
            "## pkg-a v2.0.0",
            "",
            "### Breaking Changes",
            "",
            "- drop py2 (1111111)",
            "",
            "### Features",
            "",
            "- add cli (2222222)",
            "",
            "### Bug Fixes",
            "",
            "- fix crash (3333333)",
            "",
            "### Other Changes",
            "",
            "- Depends on pkg-z@1.0.0",
        ]

    def test_titles(self, make_package) -> None:
        """Preview releases are titled by channel, others by version."""
        pkg = make_package("pkg-a")
        preview = PreviewItem(package=pkg, bump="minor", base_version="1.1.0", iteration=1)
        stable = StableItem(package=pkg, bump="minor", next_version="1.1.0")
        assert release_title(preview, "next") == "pkg-a @next"
        assert release_title(stable) == "pkg-a v1.1.0"


class TestExecute:
    """Tests for execute()."""

    def test_happy_path(self, stable_plan, run, vcs, host, publisher, preflight) -> None:
        """Every item is published, tagged, pushed and released."""
        result = run(stable_plan)

        assert result.ok
        assert preflight.calls == [["pkg-a", "pkg-b"]]
        assert sorted(publisher.names) == ["pkg-a", "pkg-b"]
        assert sorted(t for t, _ in vcs.created_tags) == ["pkg-a@1.1.0", "pkg-b@0.2.1"]
        assert sorted(vcs.pushed_tags) == [
            ("pkg-a@1.1.0", "origin", False),
            ("pkg-b@0.2.1", "origin", False),
        ]
        assert host.releases["pkg-a@1.1.0"]["title"] == "pkg-a v1.1.0"
        assert host.releases["pkg-a@1.1.0"]["prerelease"] is False
        assert result.released_packages == ["pkg-a", "pkg-b"]
        assert result.created_tags == ["pkg-a@1.1.0", "pkg-b@0.2.1"]

    def test_publish_pins_and_dist_tag(self, stable_plan, run, publisher) -> None:
        """Each publish pins the other planned versions."""
        run(stable_plan, dist_tag="stable", registry="https://upload.example/")
        by_name = {p["package"]: p for p in publisher.published}
        assert by_name["pkg-b"]["pins"] == {"pkg-a": "1.1.0"}
        assert by_name["pkg-a"]["pins"] == {"pkg-b": "0.2.1"}
        assert by_name["pkg-a"]["dist_tag"] == "stable"
        assert by_name["pkg-a"]["registry"] == "https://upload.example/"

    def test_skip_publish(self, stable_plan, run, vcs, publisher) -> None:
        """skip_publish still tags and releases."""
        result = run(stable_plan, skip_publish=True)
        assert result.ok
        assert publisher.published == []
        assert len(vcs.pushed_tags) == 2

    def test_retry_then_succeed(self, stable_plan, run, publisher, capsys) -> None:
        """Publish is retried up to twice."""
        publisher.failures["pkg-a"] = 2
        result = run(stable_plan)
        assert result.ok
        out = capsys.readouterr().out
        assert "  Retrying: Publish:pkg-a (attempt 2/3)" in out
        assert "  Retrying: Publish:pkg-a (attempt 3/3)" in out

    def test_failure_blocks_chain(self, stable_plan, run, vcs, publisher, capsys) -> None:
        """A failed node blocks its dependents; other chains continue."""
        publisher.failures["pkg-a"] = 3

        result = run(stable_plan)

        assert not result.ok
        assert result.failed == {"Publish:pkg-a": "Failed to publish pkg-a: upload failed"}
        assert result.blocked == [
            "CreateTag:pkg-a@1.1.0",
            "PushTag:pkg-a@1.1.0",
            "CreateGHRelease:pkg-a@1.1.0",
        ]
        assert [t for t, _ in vcs.created_tags] == ["pkg-b@0.2.1"]
        assert "✗ Failed: Publish:pkg-a - Failed to publish pkg-a: upload failed" in (
            capsys.readouterr().out
        )

    def test_resume_does_not_republish(self, stable_plan, run, vcs, host, publisher) -> None:
        """Re-running the same plan skips completed nodes."""
        vcs.push_failures = {"pkg-a@1.1.0": 3, "pkg-b@0.2.1": 3}
        first = run(stable_plan)
        assert set(first.failed) == {"PushTag:pkg-a@1.1.0", "PushTag:pkg-b@0.2.1"}
        assert host.releases == {}

        second = run(stable_plan)

        assert second.ok
        assert second.workflow_id == first.workflow_id
        assert "Publish:pkg-a" in second.resumed
        assert "CreateTag:pkg-a@1.1.0" in second.resumed
        assert "PushTag:pkg-a@1.1.0" in second.completed
        assert len(publisher.published) == 2
        assert len(vcs.created_tags) == 2
        assert set(host.releases) == {"pkg-a@1.1.0", "pkg-b@0.2.1"}

    def test_failures_recorded(self, stable_plan, run, publisher) -> None:
        """Failed nodes are persisted with their error."""
        publisher.failures["pkg-b"] = 3
        result = run(stable_plan)
        record = run.store.get(result.workflow_id, "Publish:pkg-b")
        assert record is not None
        assert record.status == "failed"
        assert "upload failed" in record.detail

    def test_preflight_failure(self, stable_plan, run, publisher, preflight) -> None:
        """A failing preflight raises and publishes nothing."""
        preflight.error = PreflightError("env.git-clean", "dirty")
        with pytest.raises(PreflightError, match="env.git-clean"):
            run(stable_plan)
        assert publisher.published == []

    def test_release_retried(self, stable_plan, run, host) -> None:
        """Release record creation is retried like publishing."""
        host.failures["pkg-a@1.1.0"] = 2
        assert run(stable_plan).ok
        assert "pkg-a@1.1.0" in host.releases

    def test_dry_run(self, stable_plan, run, vcs, host, publisher, preflight, capsys) -> None:
        """Dry runs describe every node and change nothing."""
        result = run(stable_plan, dry_run=True)

        assert result.dry_run and result.ok
        assert publisher.published == [] and vcs.created_tags == [] and host.releases == {}
        assert preflight.calls == []
        assert run.store.records(result.workflow_id) == []
        out = capsys.readouterr().out
        assert "for 2 packages (8 steps in 4 stages)" in out
        assert "[dry-run] Would publish pkg-a@1.1.0" in out
        assert "[dry-run] Would push tag: pkg-b@0.2.1" in out

    def test_preview_updates_existing_release(self, make_package, run, vcs, host, publisher) -> None:
        """Preview releases force-push tags and update an existing record."""
        item = PreviewItem(
            package=make_package("pkg-a"),
            bump="minor",
            current_version="1.0.0",
            base_version="1.1.0",
            iteration=2,
        )
        plan = Plan(lifecycle="preview", timestamp="t", releases=(item,))
        host.releases["pkg-a@1.1.0-next.2"] = {"title": "old", "body": "old", "prerelease": True}

        result = run(plan)

        assert result.ok
        assert vcs.pushed_tags == [("pkg-a@1.1.0-next.2", "origin", True)]
        assert host.updated == ["pkg-a@1.1.0-next.2"]
        assert host.created == []
        assert publisher.published[0]["dist_tag"] == "next"

    def test_preview_creates_prerelease(self, make_package, run, host) -> None:
        """A new preview release is a prerelease titled by channel."""
        item = PreviewItem(
            package=make_package("pkg-a"), bump="patch", base_version="0.0.1", iteration=1
        )
        run(Plan(lifecycle="preview", timestamp="t", releases=(item,)), preview_tag="beta")
        release = host.releases["pkg-a@0.0.1-next.1"]
        assert release["title"] == "pkg-a @beta"
        assert release["prerelease"] is True

    def test_pr_release(self, make_package, run, host, publisher) -> None:
        """PR builds publish to a per-PR channel as prereleases."""
        item = PrItem(package=make_package("pkg-a"), pr_number=42, iteration=1, sha="abc1234ffff")
        run(Plan(lifecycle="pr", timestamp="t", releases=(item,)))
        assert publisher.published[0]["version"] == "0.0.0-pr.42.1.abc1234"
        assert publisher.published[0]["dist_tag"] == "pr-42"
        assert host.releases["pkg-a@0.0.0-pr.42.1.abc1234"]["prerelease"] is True

    def test_existing_local_tag_not_recreated(self, stable_plan, run, vcs) -> None:
        """CreateTag succeeds when the tag is already present locally."""
        vcs.tag("pkg-a@1.1.0")
        result = run(stable_plan)
        assert result.ok
        assert [t for t, _ in vcs.created_tags] == ["pkg-b@0.2.1"]
