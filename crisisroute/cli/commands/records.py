"""Read-side and maintenance commands over the routing store and audit ledger.

``records``       routing-record table
``blackout``      is a child under a notification blackout right now?
``sweep``         fail records left non-terminal past the stale threshold
``verify-audit``  walk the audit hash chain
"""

from __future__ import annotations

import typer
from rich.table import Table

from crisisroute.bridge.audit_sink import LedgerAuditSink
from crisisroute.bridge.delivery import DeliveryClient
from crisisroute.cli.commands.common import console, load_settings, require_db
from crisisroute.core.audit_ledger import AuditLedger, AuditLedgerIntegrityError
from crisisroute.core.blackout import BlackoutManager
from crisisroute.core.collaborators import ChildDirectory
from crisisroute.core.orchestrator import RoutingOrchestrator
from crisisroute.core.store import SqliteRoutingStore
from crisisroute.models.routing import RoutingStatus

_STATUS_STYLE = {
    RoutingStatus.SENT: "[green]sent[/green]",
    RoutingStatus.FAILED: "[red]failed[/red]",
}


def records_cmd(
    signal_id: str = typer.Option(None, "--signal", "-s", help="Filter by signal id."),
    status: str = typer.Option(None, "--status", help="Filter by routing status."),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum rows to show."),
    routing_db: str = typer.Option(
        None, "--db", "-d", help="Path to the routing SQLite database."
    ),
) -> None:
    """List routing records, newest first."""
    settings = load_settings(routing_db)
    require_db(settings.routing_db_path, "Routing database")
    try:
        statuses = [RoutingStatus(status)] if status else None
    except ValueError as exc:
        valid = ", ".join(s.value for s in RoutingStatus)
        console.print(f"[bold red]Unknown status:[/bold red] {status} (one of {valid})")
        raise typer.Exit(code=1) from exc

    records = SqliteRoutingStore(settings.routing_db_path).find_records(
        signal_id=signal_id, statuses=statuses, limit=limit
    )
    if not records:
        console.print("[dim]No routing records.[/dim]")
        return

    table = Table(title="Routing Records")
    table.add_column("Routing ID", style="cyan", no_wrap=True)
    table.add_column("Signal")
    table.add_column("Partner")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Started")
    table.add_column("Error")

    for r in records:
        table.add_row(
            r.id,
            r.signal_id,
            (r.partner_id or "-") + (" (fallback)" if r.used_fallback else ""),
            _STATUS_STYLE.get(r.status, f"[yellow]{r.status.value}[/yellow]"),
            str(r.attempts),
            r.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            r.last_error or "",
        )
    console.print(table)


def blackout_cmd(
    child_id: str = typer.Argument(..., help="Child to check."),
    routing_db: str = typer.Option(
        None, "--db", "-d", help="Path to the routing SQLite database."
    ),
) -> None:
    """Report whether family notifications about a child are suppressed."""
    settings = load_settings(routing_db)
    require_db(settings.routing_db_path, "Routing database")
    check = BlackoutManager(SqliteRoutingStore(settings.routing_db_path)).check(child_id)
    if check.is_blocked:
        hours = check.remaining_ms / 3_600_000
        console.print(
            f"[yellow]Blackout active[/yellow] until {check.expires_at.isoformat()} "
            f"({hours:.1f} h remaining)"
        )
    else:
        console.print("[green]No active blackout.[/green]")


def sweep_cmd(
    routing_db: str = typer.Option(
        None, "--db", "-d", help="Path to the routing SQLite database."
    ),
    audit_db: str = typer.Option(
        None, "--audit-db", help="Path to the audit SQLite database."
    ),
) -> None:
    """Mark records stuck in a non-terminal state as failed."""
    settings = load_settings(routing_db, audit_db)
    require_db(settings.routing_db_path, "Routing database")
    with DeliveryClient(settings) as delivery:
        orchestrator = RoutingOrchestrator(
            SqliteRoutingStore(settings.routing_db_path),
            ChildDirectory({}),
            delivery,
            settings,
            audit_sink=LedgerAuditSink(AuditLedger(settings.audit_db_path)),
        )
        reconciled = orchestrator.reconcile_stale_records()

    if not reconciled:
        console.print("[green]No stale routing records.[/green]")
        return
    for record in reconciled:
        console.print(f"  [red]failed[/red] {record.id}")
    console.print(f"[yellow]Reconciled {len(reconciled)} stale record(s).[/yellow]")


def verify_audit_cmd(
    audit_db: str = typer.Option(
        None, "--audit-db", help="Path to the audit SQLite database."
    ),
) -> None:
    """Verify the integrity of the audit hash chain."""
    settings = load_settings(audit_db=audit_db)
    require_db(settings.audit_db_path, "Audit database")
    ledger = AuditLedger(settings.audit_db_path)
    try:
        ledger.verify_chain()
    except AuditLedgerIntegrityError as exc:
        console.print(f"[bold red]Audit chain BROKEN:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc
    console.print(f"[green]Audit chain intact[/green] ({ledger.count()} entries).")
