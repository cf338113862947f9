from __future__ import annotations

from collections import Counter
from datetime import date, datetime
from typing import Any, Iterable, Optional, cast

from delivery_baseline.core.errors import ProjectValidationError
from delivery_baseline.core.model import (
    NO_LINK,
    Deliverable,
    DeliverableLink,
    ItemType,
    Link,
    Milestone,
    MilestoneLink,
    PlanNode,
    ProjectSnapshot,
)


ALLOWED_ITEM_TYPES: set[str] = {"task", "milestone", "deliverable"}


class _Collector:
    def __init__(self, file: Optional[str]) -> None:
        self.file = file
        self.errors: list[ProjectValidationError] = []

    def add(self, code: str, message: str, path: str) -> None:
        self.errors.append(
            ProjectValidationError(code=code, message=message, file=self.file, path=path)
        )


def _non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and bool(v.strip())


def _date_field(raw: dict[str, Any], key: str, path: str, out: _Collector) -> Optional[date]:
    v = raw.get(key)
    if v is None:
        return None
    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, date):
        return v
    if isinstance(v, str):
        try:
            return date.fromisoformat(v)
        except ValueError:
            pass
    out.add("E_INVALID_DATE", f"{key} must be an ISO date (YYYY-MM-DD)", f"{path}.{key}")
    return None


def _records(raw: dict[str, Any], key: str, out: _Collector) -> list[tuple[str, dict[str, Any]]]:
    items = raw.get(key)
    if items is None:
        return []
    if not isinstance(items, list):
        out.add("E_INVALID_TYPE", f"{key} must be an array", key)
        return []
    records: list[tuple[str, dict[str, Any]]] = []
    for i, item in enumerate(items):
        path = f"{key}[{i}]"
        if not isinstance(item, dict):
            out.add("E_INVALID_TYPE", "record must be an object", path)
            continue
        records.append((path, item))
    return records


def _identify(
    path: str, item: dict[str, Any], seen: set[str], out: _Collector
) -> Optional[tuple[str, str]]:
    rid = item.get("id")
    if not _non_empty_str(rid):
        out.add("E_REQUIRED_FIELD", "id is required and must be a non-empty string", f"{path}.id")
        return None
    if rid in seen:
        out.add("E_DUPLICATE_ID", f"duplicate id: {rid}", f"{path}.id")
        return None
    name = item.get("name")
    if not _non_empty_str(name):
        out.add("E_REQUIRED_FIELD", "name is required and must be a non-empty string", f"{path}.name")
        return None
    seen.add(rid)
    return cast(str, rid), cast(str, name)


def validate_project(
    raw: dict[str, Any],
) -> tuple[Optional[ProjectSnapshot], list[ProjectValidationError]]:
    """Validate a project snapshot.

    Returns (snapshot, errors). Snapshot is None when errors exist.
    """

    out = _Collector(cast(Optional[str], raw.get("__file__")))

    schema_version = raw.get("schema_version")
    if not _non_empty_str(schema_version):
        out.add(
            "E_REQUIRED_FIELD",
            "schema_version is required and must be a non-empty string",
            "schema_version",
        )

    project_id = raw.get("project_id")
    if not _non_empty_str(project_id):
        out.add("E_REQUIRED_FIELD", "project_id is required and must be a non-empty string", "project_id")
        return None, _sorted(out.errors)
    project_id = cast(str, project_id)

    milestones: list[Milestone] = []
    seen: set[str] = set()
    for path, item in _records(raw, "milestones", out):
        ident = _identify(path, item, seen, out)
        if ident is None:
            continue
        billable = item.get("baseline_billable", 0)
        if not isinstance(billable, (int, float)) or isinstance(billable, bool):
            out.add("E_INVALID_TYPE", "baseline_billable must be a number", f"{path}.baseline_billable")
            billable = 0
        milestones.append(
            Milestone(
                id=ident[0],
                project_id=project_id,
                name=ident[1],
                start_date=_date_field(item, "start_date", path, out),
                end_date=_date_field(item, "end_date", path, out),
                forecast_end_date=_date_field(item, "forecast_end_date", path, out),
                baseline_start_date=_date_field(item, "baseline_start_date", path, out),
                baseline_end_date=_date_field(item, "baseline_end_date", path, out),
                baseline_billable=float(billable),
            )
        )
    milestone_ids = {m.id for m in milestones}

    deliverables: list[Deliverable] = []
    seen = set()
    for path, item in _records(raw, "deliverables", out):
        ident = _identify(path, item, seen, out)
        if ident is None:
            continue
        owner = item.get("milestone_id")
        if not _non_empty_str(owner):
            out.add(
                "E_REQUIRED_FIELD",
                "milestone_id is required and must be a non-empty string",
                f"{path}.milestone_id",
            )
            continue
        if owner not in milestone_ids:
            out.add("E_UNKNOWN_MILESTONE", f"milestone_id references unknown id: {owner}", f"{path}.milestone_id")
            continue
        deliverables.append(
            Deliverable(
                id=ident[0],
                project_id=project_id,
                milestone_id=cast(str, owner),
                name=ident[1],
                target_date=_date_field(item, "target_date", path, out),
            )
        )
    deliverable_ids = {d.id for d in deliverables}

    plan_nodes: list[PlanNode] = []
    parents: list[tuple[str, str]] = []
    seen = set()
    for path, item in _records(raw, "plan_nodes", out):
        ident = _identify(path, item, seen, out)
        if ident is None:
            continue

        item_type = item.get("item_type")
        if not isinstance(item_type, str) or item_type not in ALLOWED_ITEM_TYPES:
            out.add(
                "E_INVALID_ENUM",
                f"item_type must be one of {sorted(ALLOWED_ITEM_TYPES)}",
                f"{path}.item_type",
            )
            continue

        link = _link(path, item, milestone_ids, deliverable_ids, out)
        if link is None:
            continue

        sort_order = item.get("sort_order", 0)
        indent_level = item.get("indent_level", 0)
        if not isinstance(sort_order, int) or not isinstance(indent_level, int):
            out.add("E_INVALID_TYPE", "sort_order and indent_level must be integers", path)
            continue

        parent_id = item.get("parent_id")
        if parent_id is not None:
            if not _non_empty_str(parent_id):
                out.add("E_INVALID_TYPE", "parent_id must be a string", f"{path}.parent_id")
                continue
            parents.append((path, cast(str, parent_id)))

        plan_nodes.append(
            PlanNode(
                id=ident[0],
                project_id=project_id,
                item_type=cast(ItemType, item_type),
                name=ident[1],
                parent_id=cast(Optional[str], parent_id),
                link=link,
                sort_order=sort_order,
                indent_level=indent_level,
            )
        )

    node_ids = {n.id for n in plan_nodes}
    for path, parent_id in parents:
        if parent_id not in node_ids:
            out.add("E_UNKNOWN_PARENT", f"parent_id references unknown id: {parent_id}", f"{path}.parent_id")

    if out.errors:
        return None, _sorted(out.errors)

    return (
        ProjectSnapshot(
            schema_version=cast(str, schema_version),
            milestones=milestones,
            deliverables=deliverables,
            plan_nodes=plan_nodes,
        ),
        [],
    )


def _link(
    path: str,
    item: dict[str, Any],
    milestone_ids: set[str],
    deliverable_ids: set[str],
    out: _Collector,
) -> Optional[Link]:
    milestone_id = item.get("milestone_id")
    deliverable_id = item.get("deliverable_id")

    if milestone_id is not None and deliverable_id is not None:
        out.add(
            "E_AMBIGUOUS_LINK",
            "a plan node may link to a milestone or a deliverable, not both",
            path,
        )
        return None

    if milestone_id is not None:
        if milestone_id not in milestone_ids:
            out.add("E_UNKNOWN_LINK", f"milestone_id references unknown id: {milestone_id}", f"{path}.milestone_id")
            return None
        return MilestoneLink(milestone_id)

    if deliverable_id is not None:
        if deliverable_id not in deliverable_ids:
            out.add(
                "E_UNKNOWN_LINK",
                f"deliverable_id references unknown id: {deliverable_id}",
                f"{path}.deliverable_id",
            )
            return None
        return DeliverableLink(deliverable_id)

    return NO_LINK


def summarize_project(snapshot: ProjectSnapshot) -> str:
    linked = Counter(
        "milestone" if isinstance(n.link, MilestoneLink)
        else "deliverable" if isinstance(n.link, DeliverableLink)
        else "none"
        for n in snapshot.plan_nodes
    )
    return (
        f"OK: {len(snapshot.milestones)} milestones, {len(snapshot.deliverables)} deliverables, "
        f"{len(snapshot.plan_nodes)} plan nodes\n"
        f"Links: milestone={linked.get('milestone', 0)}, "
        f"deliverable={linked.get('deliverable', 0)}, none={linked.get('none', 0)}"
    )


def _sorted(errors: Iterable[ProjectValidationError]) -> list[ProjectValidationError]:
    return sorted(
        list(errors),
        key=lambda e: (
            e.file or "",
            e.path or "",
            e.code,
        ),
    )
