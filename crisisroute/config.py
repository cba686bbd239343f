"""Routing engine configuration — env-driven.

Centralized settings using pydantic-settings. Reads from a .env file and
CRISISROUTE_* environment variables.

The routing and audit databases are deliberately separate files from any
family-facing data store.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class RoutingSettings(BaseSettings):
    """Runtime configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export CRISISROUTE_ENVIRONMENT=staging
        export CRISISROUTE_WEBHOOK_MAX_ATTEMPTS=4
        export CRISISROUTE_ROUTING_DB_PATH=/data/routing.db

    Or via .env file::

        CRISISROUTE_ENVIRONMENT=production
        CRISISROUTE_INSTANCE_SIGNING_KEY=<hex seed>
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CRISISROUTE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False
    instance_id: str = "crisisroute"

    # Isolated storage (never shared with family-visible collections)
    routing_db_path: Path = Path(".crisisroute/routing.db")
    audit_db_path: Path = Path(".crisisroute/audit.db")

    # Partner selection
    default_jurisdiction: str = "US-NATIONAL"

    # Webhook delivery
    webhook_timeout_seconds: float = 15.0
    webhook_max_attempts: int = 3
    webhook_backoff_base_seconds: float = 1.0
    webhook_max_backoff_seconds: float = 30.0
    webhook_backoff_jitter: float = 0.0  # fraction of the delay, 0 disables
    require_https_webhooks: bool = True

    # Platform execution deadline for one routing invocation
    execution_deadline_seconds: float = 60.0

    # Records still non-terminal after this long are swept to FAILED
    stale_record_seconds: float = 300.0

    # Skip delivery when the signal was already sent to the same partner
    deduplicate_deliveries: bool = False

    # Ed25519 seed (hex) used to sign outbound webhook requests
    instance_signing_key: str = ""

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"
