"""Shared helpers for CLI commands: settings overrides and JSON file loading."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console

from crisisroute.config import RoutingSettings

console = Console()


def load_settings(
    routing_db: str | None = None,
    audit_db: str | None = None,
) -> RoutingSettings:
    """Fresh settings from the environment, with CLI path overrides applied."""
    settings = RoutingSettings()
    overrides: dict[str, Any] = {}
    if routing_db:
        overrides["routing_db_path"] = Path(routing_db)
    if audit_db:
        overrides["audit_db_path"] = Path(audit_db)
    return settings.model_copy(update=overrides) if overrides else settings


def read_json(path: str, what: str) -> Any:
    """Read a JSON file or exit with a readable error."""
    file_path = Path(path)
    if not file_path.exists():
        console.print(f"[bold red]{what} not found:[/bold red] {path}")
        raise typer.Exit(code=1)
    try:
        return json.loads(file_path.read_text(encoding="utf-8"))
    except ValueError as exc:
        console.print(f"[bold red]{what} is not valid JSON:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc


def require_db(path: Path, what: str) -> None:
    if not path.exists():
        console.print(f"[bold red]{what} not found:[/bold red] {path}")
        raise typer.Exit(code=1)
