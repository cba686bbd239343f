"""``crisisroute import-partners`` and ``crisisroute partners``.

Partner configuration is managed outside the engine; these commands load it
into the isolated routing store and show what the selector will see.

Import file format::

    {
      "partners": [{"partnerId": "...", "name": "...", "webhookUrl": "...",
                    "publicKey": "-----BEGIN PUBLIC KEY-----...", ...}],
      "registry": {"jurisdictionMap": {"US-CA": ["..."]},
                   "fallbackPartners": ["..."]}
    }
"""

from __future__ import annotations

import pydantic
import typer
from rich.table import Table

from crisisroute.bridge.delivery import DeliveryClient
from crisisroute.cli.commands.common import console, load_settings, read_json, require_db
from crisisroute.core.selector import describe_partner_availability
from crisisroute.core.store import SqliteRoutingStore
from crisisroute.models.base import utcnow
from crisisroute.models.partners import CrisisPartnerConfig, PartnerRegistry

_AVAILABILITY_STYLE = {
    "available": "[green]available[/green]",
    "key-expiring": "[yellow]key-expiring[/yellow]",
    "key-expired": "[red]key-expired[/red]",
}


def import_partners_cmd(
    config_file: str = typer.Argument(..., help="JSON file with partners and registry."),
    routing_db: str = typer.Option(
        None, "--db", "-d", help="Path to the routing SQLite database."
    ),
) -> None:
    """Load partner configurations and the jurisdiction registry into the store."""
    settings = load_settings(routing_db)
    data = read_json(config_file, "Partner file")
    if not isinstance(data, dict):
        console.print("[bold red]Partner file must be a JSON object.[/bold red]")
        raise typer.Exit(code=1)

    try:
        partners = [CrisisPartnerConfig.model_validate(p) for p in data.get("partners", [])]
        registry = (
            PartnerRegistry.model_validate(data["registry"]) if "registry" in data else None
        )
    except pydantic.ValidationError as exc:
        console.print(f"[bold red]Invalid partner configuration:[/bold red]\n{exc}")
        raise typer.Exit(code=1) from exc

    store = SqliteRoutingStore(settings.routing_db_path)
    for partner in partners:
        store.save_partner(partner)
    if registry is not None:
        store.save_registry(registry)

    console.print(
        f"[green]Imported {len(partners)} partner(s)"
        f"{' and the jurisdiction registry' if registry is not None else ''}.[/green]"
    )


def partners_cmd(
    routing_db: str = typer.Option(
        None, "--db", "-d", help="Path to the routing SQLite database."
    ),
) -> None:
    """List partners with their availability, priority and key expiry."""
    settings = load_settings(routing_db)
    require_db(settings.routing_db_path, "Routing database")
    store = SqliteRoutingStore(settings.routing_db_path)
    partners = store.list_partners()
    registry = store.get_registry()

    if not partners:
        console.print("[dim]No partners configured.[/dim]")
        return

    now = utcnow()
    table = Table(title="Crisis Partners")
    table.add_column("Partner", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Priority", justify="right")
    table.add_column("Jurisdictions")
    table.add_column("Fallback", justify="center")
    table.add_column("Availability")
    table.add_column("Key Expires")

    for p in sorted(partners, key=lambda p: (p.priority, p.partner_id)):
        availability = describe_partner_availability(p, now)
        in_fallback = p.partner_id in registry.fallback_partners
        table.add_row(
            p.partner_id,
            p.name,
            str(p.priority),
            ", ".join(sorted(p.jurisdictions)) or "-",
            "[green]Yes[/green]" if in_fallback else "No",
            _AVAILABILITY_STYLE.get(availability, f"[dim]{availability}[/dim]"),
            p.key_expires_at.date().isoformat() if p.key_expires_at else "never",
        )

    console.print(table)


def health_cmd(
    partner_id: str = typer.Argument(..., help="Partner to probe."),
    routing_db: str = typer.Option(
        None, "--db", "-d", help="Path to the routing SQLite database."
    ),
) -> None:
    """Send a HEAD request to a partner webhook and report reachability."""
    settings = load_settings(routing_db)
    require_db(settings.routing_db_path, "Routing database")
    partner = SqliteRoutingStore(settings.routing_db_path).get_partner(partner_id)
    if partner is None:
        console.print(f"[bold red]Partner not found:[/bold red] {partner_id}")
        raise typer.Exit(code=1)

    with DeliveryClient(settings) as client:
        health = client.check_partner_health(partner)

    if health.healthy:
        console.print(
            f"[green]{partner_id} is reachable[/green] "
            f"(HTTP {health.status_code}, {health.response_time_ms} ms)"
        )
    else:
        console.print(f"[bold red]{partner_id} is unhealthy:[/bold red] {health.error}")
        raise typer.Exit(code=1)
