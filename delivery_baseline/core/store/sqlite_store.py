from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from delivery_baseline.core.errors import DuplicateBaselineVersion, not_found
from delivery_baseline.core.model import (
    NO_LINK,
    BaselineVersion,
    Deliverable,
    DeliverableLink,
    EntityType,
    Link,
    Milestone,
    MilestoneLink,
    PlanNode,
    Signature,
)


SCHEMA = """
CREATE TABLE IF NOT EXISTS milestones (
  id TEXT PRIMARY KEY,
  project_id TEXT NOT NULL,
  name TEXT NOT NULL,
  start_date TEXT,
  end_date TEXT,
  forecast_end_date TEXT,
  baseline_start_date TEXT,
  baseline_end_date TEXT,
  baseline_billable REAL NOT NULL DEFAULT 0,
  supplier_signer_id TEXT,
  supplier_signer_name TEXT,
  supplier_signed_at TEXT,
  customer_signer_id TEXT,
  customer_signer_name TEXT,
  customer_signed_at TEXT,
  locked INTEGER NOT NULL DEFAULT 0,
  breached INTEGER NOT NULL DEFAULT 0,
  breach_reason TEXT,
  breached_at TEXT,
  breached_by TEXT,
  is_deleted INTEGER NOT NULL DEFAULT 0,
  deleted_at TEXT,
  deleted_by TEXT
);

CREATE TABLE IF NOT EXISTS deliverables (
  id TEXT PRIMARY KEY,
  project_id TEXT NOT NULL,
  milestone_id TEXT NOT NULL REFERENCES milestones(id),
  name TEXT NOT NULL,
  target_date TEXT,
  is_deleted INTEGER NOT NULL DEFAULT 0,
  deleted_at TEXT,
  deleted_by TEXT
);

CREATE TABLE IF NOT EXISTS plan_nodes (
  id TEXT PRIMARY KEY,
  project_id TEXT NOT NULL,
  parent_id TEXT,
  item_type TEXT NOT NULL CHECK (item_type IN ('task', 'milestone', 'deliverable')),
  name TEXT NOT NULL,
  link_milestone_id TEXT,
  link_deliverable_id TEXT,
  sort_order INTEGER NOT NULL DEFAULT 0,
  indent_level INTEGER NOT NULL DEFAULT 0,
  is_deleted INTEGER NOT NULL DEFAULT 0,
  deleted_at TEXT,
  deleted_by TEXT,
  CHECK (link_milestone_id IS NULL OR link_deliverable_id IS NULL)
);

CREATE TABLE IF NOT EXISTS baseline_versions (
  id TEXT PRIMARY KEY,
  milestone_id TEXT NOT NULL REFERENCES milestones(id),
  version INTEGER NOT NULL,
  variation_id TEXT,
  baseline_start_date TEXT,
  baseline_end_date TEXT,
  baseline_billable REAL NOT NULL DEFAULT 0,
  supplier_signed_by TEXT,
  supplier_signed_name TEXT,
  supplier_signed_at TEXT,
  customer_signed_by TEXT,
  customer_signed_name TEXT,
  customer_signed_at TEXT,
  created_at TEXT NOT NULL,
  UNIQUE (milestone_id, version)
);

CREATE INDEX IF NOT EXISTS idx_plan_nodes_link_milestone ON plan_nodes(link_milestone_id);
CREATE INDEX IF NOT EXISTS idx_plan_nodes_link_deliverable ON plan_nodes(link_deliverable_id);
CREATE INDEX IF NOT EXISTS idx_deliverables_milestone ON deliverables(milestone_id);
"""

# Message sqlite3 raises when the (milestone_id, version) key is taken.
VERSION_KEY_VIOLATION = "UNIQUE constraint failed: baseline_versions.milestone_id, baseline_versions.version"


class SqliteStore:
    """SQLite-backed store implementing both repositories.

    Each write runs in its own BEGIN IMMEDIATE transaction unless the calling
    thread is inside atomic(), in which case it joins that transaction.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path).expanduser()
        if str(self._db_path.parent) not in (".", ""):
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self._initialize_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize_database(self) -> None:
        conn = self._connect()
        try:
            conn.executescript(SCHEMA)
        finally:
            conn.close()

    @contextmanager
    def _tx(self) -> Iterator[sqlite3.Connection]:
        shared = getattr(self._local, "conn", None)
        if shared is not None:
            yield shared
            return
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        shared = getattr(self._local, "conn", None)
        if shared is not None:
            yield shared
            return
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if getattr(self._local, "conn", None) is not None:
            yield
            return
        conn = self._connect()
        conn.execute("BEGIN IMMEDIATE")
        self._local.conn = conn
        try:
            yield
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")
        finally:
            self._local.conn = None
            conn.close()

    def load_snapshot(
        self,
        *,
        milestones: Iterable[Milestone],
        deliverables: Iterable[Deliverable],
        plan_nodes: Iterable[PlanNode],
    ) -> dict[str, int]:
        # Insert-only: signatures, breach and deletion state already stored must survive.
        with self._tx() as conn:
            return {
                "milestones": sum(
                    _insert_new(conn, "milestones", _milestone_to_row(m)) for m in milestones
                ),
                "deliverables": sum(
                    _insert_new(conn, "deliverables", _deliverable_to_row(d)) for d in deliverables
                ),
                "plan_nodes": sum(
                    _insert_new(conn, "plan_nodes", _plan_node_to_row(n)) for n in plan_nodes
                ),
            }

    # plan nodes

    def get_plan_node(self, node_id: str) -> Optional[PlanNode]:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM plan_nodes WHERE id = ?", (node_id,)).fetchone()
        return _row_to_plan_node(row) if row else None

    def soft_delete_plan_nodes(
        self, node_ids: Iterable[str], *, actor_id: Optional[str], at: datetime
    ) -> int:
        ids = list(node_ids)
        if not ids:
            return 0
        marks = ",".join("?" for _ in ids)
        with self._tx() as conn:
            cur = conn.execute(
                f"UPDATE plan_nodes SET is_deleted = 1, deleted_at = ?, deleted_by = ? "
                f"WHERE is_deleted = 0 AND id IN ({marks})",
                [at.isoformat(), actor_id, *ids],
            )
            return cur.rowcount

    def restore_plan_node(self, node_id: str) -> Optional[PlanNode]:
        with self._tx() as conn:
            conn.execute(
                "UPDATE plan_nodes SET is_deleted = 0, deleted_at = NULL, deleted_by = NULL WHERE id = ?",
                (node_id,),
            )
            row = conn.execute("SELECT * FROM plan_nodes WHERE id = ?", (node_id,)).fetchone()
        return _row_to_plan_node(row) if row else None

    def list_plan_nodes_by_link(self, entity_type: EntityType, entity_id: str) -> list[PlanNode]:
        column = "link_milestone_id" if entity_type == "milestone" else "link_deliverable_id"
        with self._read() as conn:
            rows = conn.execute(
                f"SELECT * FROM plan_nodes WHERE {column} = ? AND is_deleted = 0 "
                "ORDER BY sort_order, id",
                (entity_id,),
            ).fetchall()
        return [_row_to_plan_node(r) for r in rows]

    def list_plan_nodes(self, project_id: str, *, include_deleted: bool = False) -> list[PlanNode]:
        sql = "SELECT * FROM plan_nodes WHERE project_id = ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        with self._read() as conn:
            rows = conn.execute(sql + " ORDER BY sort_order, id", (project_id,)).fetchall()
        return [_row_to_plan_node(r) for r in rows]

    # milestones

    def get_milestone(self, milestone_id: str) -> Optional[Milestone]:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM milestones WHERE id = ?", (milestone_id,)).fetchone()
        return _row_to_milestone(row) if row else None

    def update_milestone(self, milestone_id: str, **changes: Any) -> Milestone:
        with self._tx() as conn:
            row = conn.execute("SELECT * FROM milestones WHERE id = ?", (milestone_id,)).fetchone()
            if row is None:
                raise not_found("milestone", milestone_id)
            m = replace(_row_to_milestone(row), **changes)
            _update(conn, "milestones", _milestone_to_row(m))
            return m

    def soft_delete_milestone(
        self, milestone_id: str, *, actor_id: Optional[str], at: datetime
    ) -> Milestone:
        with self._tx() as conn:
            row = conn.execute("SELECT * FROM milestones WHERE id = ?", (milestone_id,)).fetchone()
            if row is None:
                raise not_found("milestone", milestone_id)
            m = _row_to_milestone(row)
            if not m.is_deleted:
                m = replace(m, is_deleted=True, deleted_at=at, deleted_by=actor_id)
                _update(conn, "milestones", _milestone_to_row(m))
            return m

    def restore_milestone(self, milestone_id: str) -> Optional[Milestone]:
        with self._tx() as conn:
            conn.execute(
                "UPDATE milestones SET is_deleted = 0, deleted_at = NULL, deleted_by = NULL WHERE id = ?",
                (milestone_id,),
            )
            row = conn.execute("SELECT * FROM milestones WHERE id = ?", (milestone_id,)).fetchone()
        return _row_to_milestone(row) if row else None

    def list_milestones(self, project_id: str, *, include_deleted: bool = False) -> list[Milestone]:
        sql = "SELECT * FROM milestones WHERE project_id = ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        with self._read() as conn:
            rows = conn.execute(sql + " ORDER BY id", (project_id,)).fetchall()
        return [_row_to_milestone(r) for r in rows]

    # deliverables

    def get_deliverable(self, deliverable_id: str) -> Optional[Deliverable]:
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM deliverables WHERE id = ?", (deliverable_id,)
            ).fetchone()
        return _row_to_deliverable(row) if row else None

    def update_deliverable(self, deliverable_id: str, **changes: Any) -> Deliverable:
        with self._tx() as conn:
            row = conn.execute(
                "SELECT * FROM deliverables WHERE id = ?", (deliverable_id,)
            ).fetchone()
            if row is None:
                raise not_found("deliverable", deliverable_id)
            d = replace(_row_to_deliverable(row), **changes)
            _update(conn, "deliverables", _deliverable_to_row(d))
            return d

    def soft_delete_deliverable(
        self, deliverable_id: str, *, actor_id: Optional[str], at: datetime
    ) -> Deliverable:
        with self._tx() as conn:
            row = conn.execute(
                "SELECT * FROM deliverables WHERE id = ?", (deliverable_id,)
            ).fetchone()
            if row is None:
                raise not_found("deliverable", deliverable_id)
            d = _row_to_deliverable(row)
            if not d.is_deleted:
                d = replace(d, is_deleted=True, deleted_at=at, deleted_by=actor_id)
                _update(conn, "deliverables", _deliverable_to_row(d))
            return d

    def restore_deliverable(self, deliverable_id: str) -> Optional[Deliverable]:
        with self._tx() as conn:
            conn.execute(
                "UPDATE deliverables SET is_deleted = 0, deleted_at = NULL, deleted_by = NULL WHERE id = ?",
                (deliverable_id,),
            )
            row = conn.execute(
                "SELECT * FROM deliverables WHERE id = ?", (deliverable_id,)
            ).fetchone()
        return _row_to_deliverable(row) if row else None

    def list_deliverables(self, project_id: str, *, include_deleted: bool = False) -> list[Deliverable]:
        sql = "SELECT * FROM deliverables WHERE project_id = ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        with self._read() as conn:
            rows = conn.execute(sql + " ORDER BY id", (project_id,)).fetchall()
        return [_row_to_deliverable(r) for r in rows]

    def list_deliverables_by_milestone(self, milestone_id: str) -> list[Deliverable]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM deliverables WHERE milestone_id = ? AND is_deleted = 0 ORDER BY id",
                (milestone_id,),
            ).fetchall()
        return [_row_to_deliverable(r) for r in rows]

    # baseline versions

    def insert_baseline_version(self, version: BaselineVersion) -> BaselineVersion:
        try:
            with self._tx() as conn:
                _insert(conn, "baseline_versions", _baseline_version_to_row(version))
        except sqlite3.IntegrityError as e:
            if VERSION_KEY_VIOLATION not in str(e):
                raise
            raise DuplicateBaselineVersion(version.milestone_id, version.version) from e
        return version

    def list_baseline_versions(self, milestone_id: str) -> list[BaselineVersion]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM baseline_versions WHERE milestone_id = ? ORDER BY version",
                (milestone_id,),
            ).fetchall()
        return [_row_to_baseline_version(r) for r in rows]


def _insert(conn: sqlite3.Connection, table: str, row: dict[str, Any]) -> None:
    cols = ", ".join(row.keys())
    marks = ", ".join(f":{k}" for k in row.keys())
    conn.execute(f"INSERT INTO {table} ({cols}) VALUES ({marks})", row)


def _insert_new(conn: sqlite3.Connection, table: str, row: dict[str, Any]) -> int:
    cols = ", ".join(row.keys())
    marks = ", ".join(f":{k}" for k in row.keys())
    cur = conn.execute(
        f"INSERT INTO {table} ({cols}) VALUES ({marks}) ON CONFLICT(id) DO NOTHING", row
    )
    return cur.rowcount


def _update(conn: sqlite3.Connection, table: str, row: dict[str, Any]) -> None:
    sets = ", ".join(f"{k} = :{k}" for k in row.keys() if k != "id")
    conn.execute(f"UPDATE {table} SET {sets} WHERE id = :id", row)


def _d(v: Optional[date]) -> Optional[str]:
    return v.isoformat() if v is not None else None


def _parse_date(v: Optional[str]) -> Optional[date]:
    return date.fromisoformat(v) if v else None


def _parse_dt(v: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(v) if v else None


def _signature(row: sqlite3.Row, prefix: str) -> Optional[Signature]:
    signed_at = _parse_dt(row[f"{prefix}_signed_at"])
    if signed_at is None:
        return None
    return Signature(
        signer_id=row[f"{prefix}_signer_id"],
        signer_name=row[f"{prefix}_signer_name"],
        signed_at=signed_at,
    )


def _milestone_to_row(m: Milestone) -> dict[str, Any]:
    sup = m.supplier_signature
    cus = m.customer_signature
    return {
        "id": m.id,
        "project_id": m.project_id,
        "name": m.name,
        "start_date": _d(m.start_date),
        "end_date": _d(m.end_date),
        "forecast_end_date": _d(m.forecast_end_date),
        "baseline_start_date": _d(m.baseline_start_date),
        "baseline_end_date": _d(m.baseline_end_date),
        "baseline_billable": m.baseline_billable,
        "supplier_signer_id": sup.signer_id if sup else None,
        "supplier_signer_name": sup.signer_name if sup else None,
        "supplier_signed_at": sup.signed_at.isoformat() if sup else None,
        "customer_signer_id": cus.signer_id if cus else None,
        "customer_signer_name": cus.signer_name if cus else None,
        "customer_signed_at": cus.signed_at.isoformat() if cus else None,
        "locked": int(m.locked),
        "breached": int(m.breached),
        "breach_reason": m.breach_reason,
        "breached_at": _d(m.breached_at),
        "breached_by": m.breached_by,
        "is_deleted": int(m.is_deleted),
        "deleted_at": _d(m.deleted_at),
        "deleted_by": m.deleted_by,
    }


def _row_to_milestone(row: sqlite3.Row) -> Milestone:
    return Milestone(
        id=row["id"],
        project_id=row["project_id"],
        name=row["name"],
        start_date=_parse_date(row["start_date"]),
        end_date=_parse_date(row["end_date"]),
        forecast_end_date=_parse_date(row["forecast_end_date"]),
        baseline_start_date=_parse_date(row["baseline_start_date"]),
        baseline_end_date=_parse_date(row["baseline_end_date"]),
        baseline_billable=float(row["baseline_billable"] or 0),
        supplier_signature=_signature(row, "supplier"),
        customer_signature=_signature(row, "customer"),
        locked=bool(row["locked"]),
        breached=bool(row["breached"]),
        breach_reason=row["breach_reason"],
        breached_at=_parse_dt(row["breached_at"]),
        breached_by=row["breached_by"],
        is_deleted=bool(row["is_deleted"]),
        deleted_at=_parse_dt(row["deleted_at"]),
        deleted_by=row["deleted_by"],
    )


def _deliverable_to_row(d: Deliverable) -> dict[str, Any]:
    return {
        "id": d.id,
        "project_id": d.project_id,
        "milestone_id": d.milestone_id,
        "name": d.name,
        "target_date": _d(d.target_date),
        "is_deleted": int(d.is_deleted),
        "deleted_at": _d(d.deleted_at),
        "deleted_by": d.deleted_by,
    }


def _row_to_deliverable(row: sqlite3.Row) -> Deliverable:
    return Deliverable(
        id=row["id"],
        project_id=row["project_id"],
        milestone_id=row["milestone_id"],
        name=row["name"],
        target_date=_parse_date(row["target_date"]),
        is_deleted=bool(row["is_deleted"]),
        deleted_at=_parse_dt(row["deleted_at"]),
        deleted_by=row["deleted_by"],
    )


def _plan_node_to_row(n: PlanNode) -> dict[str, Any]:
    return {
        "id": n.id,
        "project_id": n.project_id,
        "parent_id": n.parent_id,
        "item_type": n.item_type,
        "name": n.name,
        "link_milestone_id": n.link.milestone_id if isinstance(n.link, MilestoneLink) else None,
        "link_deliverable_id": (
            n.link.deliverable_id if isinstance(n.link, DeliverableLink) else None
        ),
        "sort_order": n.sort_order,
        "indent_level": n.indent_level,
        "is_deleted": int(n.is_deleted),
        "deleted_at": _d(n.deleted_at),
        "deleted_by": n.deleted_by,
    }


def _row_to_plan_node(row: sqlite3.Row) -> PlanNode:
    link: Link = NO_LINK
    if row["link_milestone_id"]:
        link = MilestoneLink(row["link_milestone_id"])
    elif row["link_deliverable_id"]:
        link = DeliverableLink(row["link_deliverable_id"])
    return PlanNode(
        id=row["id"],
        project_id=row["project_id"],
        parent_id=row["parent_id"],
        item_type=row["item_type"],
        name=row["name"],
        link=link,
        sort_order=int(row["sort_order"]),
        indent_level=int(row["indent_level"]),
        is_deleted=bool(row["is_deleted"]),
        deleted_at=_parse_dt(row["deleted_at"]),
        deleted_by=row["deleted_by"],
    )


def _baseline_version_to_row(v: BaselineVersion) -> dict[str, Any]:
    return {
        "id": v.id,
        "milestone_id": v.milestone_id,
        "version": v.version,
        "variation_id": v.variation_id,
        "baseline_start_date": _d(v.baseline_start_date),
        "baseline_end_date": _d(v.baseline_end_date),
        "baseline_billable": v.baseline_billable,
        "supplier_signed_by": v.supplier_signed_by,
        "supplier_signed_name": v.supplier_signed_name,
        "supplier_signed_at": _d(v.supplier_signed_at),
        "customer_signed_by": v.customer_signed_by,
        "customer_signed_name": v.customer_signed_name,
        "customer_signed_at": _d(v.customer_signed_at),
        "created_at": v.created_at.isoformat(),
    }


def _row_to_baseline_version(row: sqlite3.Row) -> BaselineVersion:
    created_at = _parse_dt(row["created_at"])
    assert created_at is not None
    return BaselineVersion(
        id=row["id"],
        milestone_id=row["milestone_id"],
        version=int(row["version"]),
        variation_id=row["variation_id"],
        baseline_start_date=_parse_date(row["baseline_start_date"]),
        baseline_end_date=_parse_date(row["baseline_end_date"]),
        baseline_billable=float(row["baseline_billable"] or 0),
        supplier_signed_by=row["supplier_signed_by"],
        supplier_signed_name=row["supplier_signed_name"],
        supplier_signed_at=_parse_dt(row["supplier_signed_at"]),
        customer_signed_by=row["customer_signed_by"],
        customer_signed_name=row["customer_signed_name"],
        customer_signed_at=_parse_dt(row["customer_signed_at"]),
        created_at=created_at,
    )
