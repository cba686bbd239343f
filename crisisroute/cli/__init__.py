"""crisisroute CLI — Typer-based operator command-line interface.

Provides the ``crisisroute`` command with subcommands for routing a signal,
managing partner configuration, inspecting routing records and blackouts,
reconciling stale records, verifying the audit chain and key management.

All output uses Rich for formatted terminal display.
"""
