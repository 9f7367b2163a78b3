"""Durable workflow node state.

Every workflow node's outcome is stored under ``(workflow_id, node)``.
Re-executing the same plan computes the same workflow id, so nodes already
marked completed are skipped: a failed run can be resumed without
re-publishing or re-tagging anything.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Protocol

from pydantic import BaseModel, ConfigDict

NodeStatus = Literal["completed", "failed"]


class NodeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    workflow_id: str
    node: str
    status: NodeStatus
    detail: str = ""
    updated_at: str


class NodeStore(Protocol):
    def get(self, workflow_id: str, node: str) -> NodeRecord | None: ...

    def put(self, workflow_id: str, node: str, status: NodeStatus, detail: str = "") -> None:
        """Record a node outcome, replacing any earlier record atomically."""
        ...

    def records(self, workflow_id: str) -> list[NodeRecord]: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MemoryNodeStore:
    """In-process store; state is lost when the process exits."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], NodeRecord] = {}

    def get(self, workflow_id: str, node: str) -> NodeRecord | None:
        return self._records.get((workflow_id, node))

    def put(self, workflow_id: str, node: str, status: NodeStatus, detail: str = "") -> None:
        self._records[(workflow_id, node)] = NodeRecord(
            workflow_id=workflow_id, node=node, status=status, detail=detail, updated_at=_now()
        )

    def records(self, workflow_id: str) -> list[NodeRecord]:
        return sorted(
            (r for (wid, _), r in self._records.items() if wid == workflow_id),
            key=lambda r: r.node,
        )


class SqliteNodeStore:
    """Node state in an embedded SQLite database file.

    Each ``put`` runs in its own transaction, so a crash leaves every node
    either fully recorded or not recorded at all.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> SqliteNodeStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _init_schema(self) -> None:
        with self.conn:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS node_state (
                    workflow_id TEXT NOT NULL,
                    node        TEXT NOT NULL,
                    status      TEXT NOT NULL,
                    detail      TEXT NOT NULL DEFAULT '',
                    updated_at  TEXT NOT NULL,
                    PRIMARY KEY (workflow_id, node)
                )
            """)

    def get(self, workflow_id: str, node: str) -> NodeRecord | None:
        row = self.conn.execute(
            "SELECT * FROM node_state WHERE workflow_id = ? AND node = ?",
            (workflow_id, node),
        ).fetchone()
        return NodeRecord(**dict(row)) if row else None

    def put(self, workflow_id: str, node: str, status: NodeStatus, detail: str = "") -> None:
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO node_state (workflow_id, node, status, detail, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (workflow_id, node) DO UPDATE SET
                    status = excluded.status,
                    detail = excluded.detail,
                    updated_at = excluded.updated_at
                """,
                (workflow_id, node, status, detail, _now()),
            )

    def records(self, workflow_id: str) -> list[NodeRecord]:
        rows = self.conn.execute(
            "SELECT * FROM node_state WHERE workflow_id = ? ORDER BY node",
            (workflow_id,),
        ).fetchall()
        return [NodeRecord(**dict(row)) for row in rows]
