from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import date
from typing import Any, Callable, Optional, TypeVar, Union

import typer
from rich.console import Console
from rich.table import Table

from delivery_baseline.core.baseline.lock_manager import baseline_status_label
from delivery_baseline.core.breach.monitor import milestone_end_date, milestone_health
from delivery_baseline.core.config import ConfigError, load_settings
from delivery_baseline.core.deletion.coordinator import DeletionResult
from delivery_baseline.core.errors import (
    BaselineError,
    NotFoundError,
    ProjectError,
    ProjectLoadError,
    ProjectValidationError,
)
from delivery_baseline.core.io.load_project import load_project
from delivery_baseline.core.service import BaselineService
from delivery_baseline.core.store.sqlite_store import SqliteStore
from delivery_baseline.core.validate.validate_project import summarize_project, validate_project

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()

AnyError = Union[BaselineError, ProjectError]
T = TypeVar("T")


@app.callback()
def _callback(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", help="YAML settings file"),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite store path (overrides settings)"),
) -> None:
    """Baseline integrity CLI."""
    try:
        settings = load_settings(config)
    except FileNotFoundError:
        _print_errors(
            [
                ProjectLoadError(
                    code="E_CONFIG_NOT_FOUND",
                    message=f"settings file not found: {config}",
                    path="config",
                )
            ]
        )
        raise typer.Exit(code=1)
    except ConfigError as e:
        _print_errors(
            [ProjectValidationError(code="E_CONFIG_INVALID", message=str(e), path="config")]
        )
        raise typer.Exit(code=2)

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"db_path": db or settings.db_path, "atomic_cascades": settings.atomic_cascades}


def _service(ctx: typer.Context) -> BaselineService:
    store = SqliteStore(ctx.obj["db_path"])
    return BaselineService(store, atomic_cascades=ctx.obj["atomic_cascades"])


@app.command("validate")
def validate(
    path: str = typer.Argument(..., help="Path to a project snapshot (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Validate a project snapshot without importing it."""
    _check_format(format)
    try:
        raw = load_project(path)
    except ProjectLoadError as e:
        _fail([e], format, exit_code=1, command="validate")

    snapshot, errors = validate_project(raw)
    if errors or snapshot is None:
        _fail(list(errors), format, exit_code=2, command="validate")

    assert snapshot is not None
    if format == "json":
        _emit(
            {
                "command": "validate",
                "ok": True,
                "summary": {
                    "milestones": len(snapshot.milestones),
                    "deliverables": len(snapshot.deliverables),
                    "plan_nodes": len(snapshot.plan_nodes),
                },
            }
        )
        return
    typer.echo(summarize_project(snapshot))


@app.command("import")
def import_cmd(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="Path to a project snapshot (.yaml/.yml/.json)"),
) -> None:
    """Load new records from a project snapshot; records already stored are left as they are."""
    try:
        raw = load_project(path)
    except ProjectLoadError as e:
        _print_errors([e])
        raise typer.Exit(code=1)

    snapshot, errors = validate_project(raw)
    if errors or snapshot is None:
        _print_errors(list(errors))
        raise typer.Exit(code=2)

    svc = _service(ctx)
    inserted = svc.store.load_snapshot(
        milestones=snapshot.milestones,
        deliverables=snapshot.deliverables,
        plan_nodes=snapshot.plan_nodes,
    )
    kept = (
        len(snapshot.milestones) + len(snapshot.deliverables) + len(snapshot.plan_nodes)
    ) - sum(inserted.values())
    typer.echo(
        f"OK: imported {inserted['milestones']} milestones, "
        f"{inserted['deliverables']} deliverables, {inserted['plan_nodes']} plan nodes"
        + (f" ({kept} already stored, left unchanged)" if kept else "")
    )


@app.command("status")
def status(
    ctx: typer.Context,
    project_id: str = typer.Argument(..., help="Project id"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Show baseline and breach status for each milestone of a project."""
    _check_format(format)
    svc = _service(ctx)
    milestones = svc.store.list_milestones(project_id)

    rows = [
        {
            "id": m.id,
            "name": m.name,
            "end_date": milestone_end_date(m),
            "baseline": baseline_status_label(m),
            "health": milestone_health(m),
        }
        for m in milestones
    ]
    if format == "json":
        _emit({"command": "status", "project_id": project_id, "milestones": rows})
        return

    table = Table(title=f"baseline status ({project_id})")
    table.add_column("Milestone")
    table.add_column("Name")
    table.add_column("End")
    table.add_column("Baseline")
    table.add_column("Health")
    for r in rows:
        table.add_row(r["id"], r["name"], str(r["end_date"] or "-"), r["baseline"], r["health"])
    console.print(table)


@app.command("sign")
def sign(
    ctx: typer.Context,
    milestone_id: str = typer.Argument(...),
    role: str = typer.Option(..., "--role", help="supplier|customer"),
    signer_id: str = typer.Option(..., "--signer-id"),
    signer_name: str = typer.Option(..., "--signer-name"),
) -> None:
    """Sign a milestone baseline; the second signature locks it."""
    svc = _service(ctx)
    m = _run(lambda: svc.sign_baseline(milestone_id, role, signer_id, signer_name))
    typer.echo(f"OK: {m.id} {baseline_status_label(m)}")


@app.command("reset")
def reset(ctx: typer.Context, milestone_id: str = typer.Argument(...)) -> None:
    """Administrative reset: clear both signatures and unlock (history is kept)."""
    svc = _service(ctx)
    m = _run(lambda: svc.reset_baseline(milestone_id))
    typer.echo(f"OK: {m.id} {baseline_status_label(m)}")


@app.command("delete-node")
def delete_node(
    ctx: typer.Context,
    node_id: str = typer.Argument(...),
    actor: str = typer.Option(..., "--actor"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Soft-delete a plan node and its linked milestone/deliverable."""
    _check_format(format)
    svc = _service(ctx)
    _report_deletion("delete-node", _run(lambda: svc.delete_plan_node(node_id, actor)), format)


@app.command("delete-milestone")
def delete_milestone(
    ctx: typer.Context,
    milestone_id: str = typer.Argument(...),
    actor: str = typer.Option(..., "--actor"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Soft-delete a milestone and the plan nodes linked to it."""
    _check_format(format)
    svc = _service(ctx)
    _report_deletion(
        "delete-milestone", _run(lambda: svc.delete_milestone(milestone_id, actor)), format
    )


@app.command("delete-deliverable")
def delete_deliverable(
    ctx: typer.Context,
    deliverable_id: str = typer.Argument(...),
    actor: str = typer.Option(..., "--actor"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Soft-delete a deliverable and the plan nodes linked to it."""
    _check_format(format)
    svc = _service(ctx)
    _report_deletion(
        "delete-deliverable", _run(lambda: svc.delete_deliverable(deliverable_id, actor)), format
    )


@app.command("check-date")
def check_date(
    ctx: typer.Context,
    milestone_id: str = typer.Argument(...),
    proposed: str = typer.Argument(..., help="Proposed date (YYYY-MM-DD)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Would this date breach the milestone window? Does not write."""
    _check_format(format)
    svc = _service(ctx)
    check = _run(lambda: svc.check_date_against_baseline(milestone_id, _parse_date(proposed)))
    if format == "json":
        _emit({"command": "check-date", **asdict(check)})
        return
    verdict = "BREACH" if check.would_breach else "OK"
    typer.echo(
        f"{verdict}: proposed {check.proposed_date} vs milestone end {check.milestone_end_date}"
        + (" (baselined)" if check.is_baselined else "")
    )


@app.command("set-date")
def set_date(
    ctx: typer.Context,
    deliverable_id: str = typer.Argument(...),
    new_date: str = typer.Argument(..., help="New target date (YYYY-MM-DD)"),
    actor: str = typer.Option(..., "--actor"),
    reason: Optional[str] = typer.Option(None, "--reason"),
) -> None:
    """Commit a deliverable date, recording or clearing the milestone breach."""
    svc = _service(ctx)
    res = _run(
        lambda: svc.commit_deliverable_date(deliverable_id, _parse_date(new_date), actor, reason)
    )
    if res.breach_recorded:
        typer.echo(
            f"BREACH: {deliverable_id} {res.check.proposed_date} is after "
            f"milestone end {res.check.milestone_end_date}"
        )
        return
    typer.echo(f"OK: {deliverable_id} set to {res.check.proposed_date}" + (" (breach cleared)" if res.breach_cleared else ""))


@app.command("reconcile")
def reconcile(ctx: typer.Context, milestone_id: str = typer.Argument(...)) -> None:
    """Clear a milestone breach once no deliverable exceeds its window."""
    svc = _service(ctx)
    cleared = _run(lambda: svc.reconcile(milestone_id))
    typer.echo(f"OK: {milestone_id} " + ("breach cleared" if cleared else "unchanged"))


@app.command("history")
def history(
    ctx: typer.Context,
    milestone_id: str = typer.Argument(...),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """List recorded baseline versions for a milestone."""
    _check_format(format)
    svc = _service(ctx)
    versions = _run(lambda: svc.baseline_history(milestone_id))
    if format == "json":
        _emit({"command": "history", "milestone_id": milestone_id, "versions": [asdict(v) for v in versions]})
        return
    if not versions:
        typer.echo(f"{milestone_id}: no baseline versions")
        return
    for v in versions:
        typer.echo(
            f"v{v.version}: {v.baseline_start_date} -> {v.baseline_end_date} "
            f"billable={v.baseline_billable} supplier={v.supplier_signed_name} customer={v.customer_signed_name}"
        )


@app.command("restore")
def restore(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="plan-node|milestone|deliverable"),
    record_id: str = typer.Argument(...),
) -> None:
    """Restore a soft-deleted record (no cascade)."""
    svc = _service(ctx)
    restorers = {
        "plan-node": svc.restore_plan_node,
        "milestone": svc.restore_milestone,
        "deliverable": svc.restore_deliverable,
    }
    if kind not in restorers:
        _print_errors(
            [
                ProjectValidationError(
                    code="E_RESTORE_UNKNOWN_KIND",
                    message=f"unknown kind: {kind} (choose one of: {', '.join(restorers)})",
                    path="kind",
                )
            ]
        )
        raise typer.Exit(code=2)
    _run(lambda: restorers[kind](record_id))
    typer.echo(f"OK: restored {kind} {record_id}")


@app.command("deleted")
def deleted(
    ctx: typer.Context,
    project_id: str = typer.Argument(...),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """List soft-deleted records of a project."""
    _check_format(format)
    svc = _service(ctx)
    items = svc.list_deleted(project_id)
    rows = (
        [("plan-node", n.id, n.name, n.deleted_by) for n in items.plan_nodes]
        + [("milestone", m.id, m.name, m.deleted_by) for m in items.milestones]
        + [("deliverable", d.id, d.name, d.deleted_by) for d in items.deliverables]
    )
    if format == "json":
        _emit(
            {
                "command": "deleted",
                "project_id": project_id,
                "items": [{"kind": k, "id": i, "name": n, "deleted_by": b} for k, i, n, b in rows],
            }
        )
        return
    for k, i, n, b in rows:
        typer.echo(f"{k} {i} {n} (deleted by {b or '-'})")


def _report_deletion(command: str, res: DeletionResult, format: str) -> None:
    if format == "json":
        payload: dict[str, Any] = {
            "command": command,
            "allowed": res.allowed,
            "synced": res.synced,
            "reason": res.reason,
            "error": res.error.code if res.error else None,
        }
        if res.count is not None:
            payload["count"] = res.count
        _emit(payload)
        if not res.allowed:
            raise typer.Exit(code=2)
        return

    if not res.allowed:
        assert res.error is not None
        _print_errors([res.error])
        raise typer.Exit(code=2)
    if res.error is not None:
        typer.echo(f"WARN: {res.error}", err=True)
    count = f", count={res.count}" if res.count is not None else ""
    typer.echo(f"OK: deleted (synced={str(res.synced).lower()}{count})")


def _run(fn: Callable[[], T]) -> T:
    try:
        return fn()
    except NotFoundError as e:
        _print_errors([e])
        raise typer.Exit(code=1)
    except BaselineError as e:
        _print_errors([e])
        raise typer.Exit(code=2)


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        _print_errors(
            [
                ProjectValidationError(
                    code="E_INVALID_DATE",
                    message=f"invalid date: {value} (expected YYYY-MM-DD)",
                    path="date",
                )
            ]
        )
        raise typer.Exit(code=2)


def _check_format(format: str) -> None:
    if format not in ("text", "json"):
        _print_errors(
            [
                ProjectValidationError(
                    code="E_UNKNOWN_FORMAT",
                    message=f"unknown format: {format} (choose one of: text, json)",
                    path="format",
                )
            ]
        )
        raise typer.Exit(code=2)


def _fail(errors: list[Any], format: str, *, exit_code: int, command: str) -> None:
    if format == "json":
        _emit(
            {
                "command": command,
                "ok": False,
                "error_count": len(errors),
                "errors": [
                    {"code": e.code, "message": e.message, "file": e.file, "path": e.path}
                    for e in errors
                ],
            }
        )
    else:
        _print_errors(errors)
    raise typer.Exit(code=exit_code)


def _emit(payload: dict[str, Any]) -> None:
    payload = {"tool": "baseline", **payload}
    typer.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _print_errors(errors: list[AnyError]) -> None:
    for e in sorted(errors, key=str):
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="baseline")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
