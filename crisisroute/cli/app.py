"""Main Typer application — imports and registers all CLI commands.

Entry point: ``crisisroute`` (configured via pyproject.toml project.scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from crisisroute.cli.commands.common import load_settings
from crisisroute.cli.commands.keys import decrypt_cmd, keygen_cmd
from crisisroute.cli.commands.partners import health_cmd, import_partners_cmd, partners_cmd
from crisisroute.cli.commands.records import (
    blackout_cmd,
    records_cmd,
    sweep_cmd,
    verify_audit_cmd,
)
from crisisroute.cli.commands.route import route_cmd

app = typer.Typer(
    name="crisisroute",
    help="crisisroute: route child-safety signals to external crisis partners.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging once for every command."""
    level = "DEBUG" if verbose else load_settings().log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


# Register subcommands
app.command(name="route", help="Route a signal from a JSON request file.")(route_cmd)
app.command(name="import-partners", help="Load partners and registry from JSON.")(
    import_partners_cmd
)
app.command(name="partners", help="List configured crisis partners.")(partners_cmd)
app.command(name="health", help="HEAD-check a partner webhook.")(health_cmd)
app.command(name="records", help="List routing records.")(records_cmd)
app.command(name="blackout", help="Check a child's notification blackout.")(blackout_cmd)
app.command(name="sweep", help="Fail stale non-terminal routing records.")(sweep_cmd)
app.command(name="verify-audit", help="Verify the audit hash chain.")(verify_audit_cmd)
app.command(name="keygen", help="Generate partner or signing keys.")(keygen_cmd)
app.command(name="decrypt", help="Decrypt a package with a partner key.")(decrypt_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
