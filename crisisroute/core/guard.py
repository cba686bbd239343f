"""Startup guard — enforces hard routing constraints before any signal is routed.

Runs once when the engine is assembled and fails hard (raises
``ConfigurationError``) if any constraint is violated.

Constraints enforced
--------------------
Always:
1. The worst-case delivery time (every attempt timing out plus every
   backoff sleep) fits inside the platform execution deadline, so a routing
   record is never left non-terminal by a killed invocation under the
   configured policy.
2. At least one delivery attempt is configured.
3. The stale-record threshold is longer than the execution deadline, so
   the sweep never fails a record a live invocation may still finish.

Production only:
4. Debug mode is disabled.
5. Webhooks must be HTTPS.
6. An instance signing key is configured.
"""

from __future__ import annotations

import logging

from crisisroute.bridge.delivery import worst_case_delivery_seconds
from crisisroute.bridge.signing import key_fingerprint, public_key_for
from crisisroute.config import RoutingSettings
from crisisroute.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


def enforce_routing_constraints(settings: RoutingSettings) -> None:
    """Validate routing settings, raising ``ConfigurationError`` on any violation.

    All violations are collected and reported together.
    """
    violations: list[str] = []

    if settings.webhook_max_attempts < 1:
        violations.append(
            "webhook_max_attempts must be at least 1. "
            "Set CRISISROUTE_WEBHOOK_MAX_ATTEMPTS."
        )

    worst_case = worst_case_delivery_seconds(settings)
    if worst_case >= settings.execution_deadline_seconds:
        violations.append(
            f"Worst-case delivery time {worst_case:.1f}s does not fit the "
            f"execution deadline of {settings.execution_deadline_seconds:.1f}s. "
            "Lower the webhook timeout, attempts or backoff."
        )

    if settings.stale_record_seconds <= settings.execution_deadline_seconds:
        violations.append(
            f"stale_record_seconds ({settings.stale_record_seconds:.1f}s) must exceed the "
            f"execution deadline of {settings.execution_deadline_seconds:.1f}s. "
            "Set CRISISROUTE_STALE_RECORD_SECONDS."
        )

    if settings.is_production:
        if settings.debug:
            violations.append(
                "debug=True is not allowed in production. Set CRISISROUTE_DEBUG=false."
            )
        if not settings.require_https_webhooks:
            violations.append(
                "Plain-HTTP webhooks are not allowed in production. "
                "Set CRISISROUTE_REQUIRE_HTTPS_WEBHOOKS=true."
            )
        if not settings.instance_signing_key:
            violations.append(
                "An instance signing key is required in production. "
                "Set CRISISROUTE_INSTANCE_SIGNING_KEY."
            )
        else:
            try:
                public_key_for(settings.instance_signing_key)
            except ValueError:
                violations.append(
                    "CRISISROUTE_INSTANCE_SIGNING_KEY is not a valid hex Ed25519 seed."
                )

    if violations:
        msg = "Routing configuration guard failed.\n" + "\n".join(
            f"  - {v}" for v in violations
        )
        logger.critical(msg)
        raise ConfigurationError(msg)

    if settings.instance_signing_key and settings.is_production:
        logger.info(
            "Routing configuration guard passed (signing key %s).",
            key_fingerprint(public_key_for(settings.instance_signing_key)),
        )
    else:
        logger.info("Routing configuration guard passed.")
