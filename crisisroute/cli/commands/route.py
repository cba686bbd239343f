"""``crisisroute route INPUT`` — route one signal from a JSON request file.

Assembles the SQLite-backed engine from settings (running the startup
guard), loads the child directory, routes the signal and prints the
structured result.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel

from crisisroute.callable import route
from crisisroute.cli.commands.common import console, load_settings, read_json
from crisisroute.core.collaborators import ChildContextUnavailable, ChildDirectory
from crisisroute.core.errors import ConfigurationError
from crisisroute.core.orchestrator import RoutingOrchestrator
from crisisroute.models.routing import AuthenticatedPrincipal


def route_cmd(
    input_file: str = typer.Argument(
        ...,
        help="JSON file with signalId, childId, triggeredAt, deviceType, jurisdiction.",
    ),
    children_file: str = typer.Option(
        ...,
        "--children",
        "-c",
        help="JSON child directory: {childId: {birthDate, sharedCustody}}.",
    ),
    principal: str = typer.Option(
        "cli-operator",
        "--principal",
        "-p",
        help="Authenticated principal uid recorded for this request.",
    ),
    routing_db: str = typer.Option(
        None, "--db", "-d", help="Path to the routing SQLite database."
    ),
    audit_db: str = typer.Option(
        None, "--audit-db", help="Path to the audit SQLite database."
    ),
) -> None:
    """Route one signal to an external crisis partner.

    Exits with code 1 when routing did not succeed.
    """
    settings = load_settings(routing_db, audit_db)
    raw_input = read_json(input_file, "Input file")
    try:
        children = ChildDirectory.from_json_file(Path(children_file))
    except ChildContextUnavailable as exc:
        console.print(f"[bold red]Child directory error:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    try:
        orchestrator = RoutingOrchestrator.from_settings(settings, children)
    except ConfigurationError as exc:
        console.print(f"[bold red]Configuration error:[/bold red]\n{exc}")
        raise typer.Exit(code=2) from exc

    try:
        result = route(
            raw_input,
            AuthenticatedPrincipal(uid=principal),
            orchestrator=orchestrator,
        )
    finally:
        orchestrator.delivery.close()

    lines = [
        f"[bold]Routing ID:[/bold]    {result.routing_id or '-'}",
        f"[bold]Partner:[/bold]       {result.partner_id or '-'}",
        f"[bold]Fallback:[/bold]      {'yes' if result.used_fallback else 'no'}",
    ]
    if result.success:
        title, style = "[bold green]Signal routed[/bold green]", "green"
    else:
        title, style = "[bold red]Routing failed[/bold red]", "red"
        lines.append(f"[bold]Error:[/bold]         {result.error} ({result.error_kind.value})")

    console.print()
    console.print(Panel("\n".join(lines), title=title, border_style=style, padding=(1, 2)))
    console.print()

    if not result.success:
        raise typer.Exit(code=1)
