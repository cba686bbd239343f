"""Delivery bridge — POSTs encrypted packages to partner webhooks over httpx.

Bridge boundary
---------------
The orchestrator depends on ``DeliveryClient.deliver()`` only. HTTP is done
with an ``httpx.Client`` that can be injected (tests pass one built on
``httpx.MockTransport``); sleeping between attempts and reading the clock
are injectable too, so the retry loop runs instantly under test.

Retry policy
------------
- network error, timeout, HTTP 5xx, or a 2xx body that cannot be parsed:
  retry, up to ``webhook_max_attempts`` attempts in total, sleeping
  ``base * 2**(attempt-1)`` seconds (capped) between attempts
- any other non-2xx status: fail immediately, no retry
- 2xx with ``received: false``: terminal rejection by the partner

Only routing ids, partner ids, status codes and attempt counts are logged.
The package contents never are.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

import httpx

from crisisroute.bridge.signing import sign_data, signing_message
from crisisroute.config import RoutingSettings
from crisisroute.core.hasher import canonical_json_bytes, generate_signal_ref
from crisisroute.models.base import utcnow
from crisisroute.models.partners import CrisisPartnerConfig, PartnerHealth
from crisisroute.models.payload import (
    WEBHOOK_PROTOCOL_VERSION,
    DeliveryResult,
    EncryptedSignalPackage,
    PartnerWebhookPayload,
)

logger = logging.getLogger(__name__)

HEADER_VERSION = "X-Crisisroute-Version"
HEADER_INSTANCE = "X-Crisisroute-Instance"
HEADER_TIMESTAMP = "X-Crisisroute-Timestamp"
HEADER_SIGNATURE = "X-Crisisroute-Signature"


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def validate_webhook_url(url: str, *, require_https: bool = True) -> str | None:
    """Return an error message if *url* is not an acceptable webhook, else ``None``."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "Invalid webhook URL"
    allowed = ("https",) if require_https else ("https", "http")
    if parsed.scheme not in allowed:
        return "Webhook URL must use HTTPS" if require_https else "Invalid webhook URL"
    if not parsed.hostname:
        return "Invalid webhook URL"
    return None


def calculate_backoff(
    attempt: int,
    *,
    base_seconds: float,
    max_seconds: float,
    jitter: float = 0.0,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay to wait after failed attempt number *attempt* (1-based).

    ``jitter`` is a fraction of the delay; the result is spread uniformly
    over ``delay * (1 +/- jitter)`` and never exceeds ``max_seconds``.
    """
    delay = min(base_seconds * (2 ** (attempt - 1)), max_seconds)
    if jitter > 0:
        delay *= 1 + jitter * (2 * rng() - 1)
    return max(0.0, min(delay, max_seconds))


def worst_case_delivery_seconds(settings: RoutingSettings) -> float:
    """Upper bound on wall time spent in one ``deliver()`` call."""
    attempts = settings.webhook_max_attempts
    backoff = sum(
        min(
            settings.webhook_backoff_base_seconds * (2 ** (attempt - 1))
            * (1 + settings.webhook_backoff_jitter),
            settings.webhook_max_backoff_seconds,
        )
        for attempt in range(1, attempts)
    )
    return attempts * settings.webhook_timeout_seconds + backoff


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class DeliveryClient:
    """Delivers encrypted signal packages to partner webhooks.

    Parameters
    ----------
    settings:
        Timeout, retry and instance settings.
    http_client:
        Optional pre-built ``httpx.Client``. When omitted the client builds
        and owns one; call ``close()`` (or use as a context manager) to
        release it.
    sleep:
        Called with the backoff delay in seconds between attempts.
    signing_key:
        Hex Ed25519 seed used to sign requests. Defaults to
        ``settings.instance_signing_key``; empty disables signing.
    clock:
        Returns the current UTC time for ``deliveredAt`` and the signature
        timestamp.
    """

    def __init__(
        self,
        settings: RoutingSettings,
        *,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        signing_key: str | None = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client()
        self._sleep = sleep
        self._signing_key = (
            signing_key if signing_key is not None else settings.instance_signing_key
        )
        self._clock = clock
        self._rng = rng

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> DeliveryClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Request construction
    # ------------------------------------------------------------------

    def build_envelope(
        self, package: EncryptedSignalPackage, routing_id: str
    ) -> PartnerWebhookPayload:
        return PartnerWebhookPayload(
            version=WEBHOOK_PROTOCOL_VERSION,
            instance_id=self._settings.instance_id,
            package=package,
            delivered_at=self._clock(),
            signal_ref=generate_signal_ref(package.partner_id, routing_id),
        )

    def _headers(self, body: bytes) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            HEADER_VERSION: WEBHOOK_PROTOCOL_VERSION,
            HEADER_INSTANCE: self._settings.instance_id,
        }
        if self._signing_key:
            timestamp = str(int(self._clock().timestamp()))
            headers[HEADER_TIMESTAMP] = timestamp
            headers[HEADER_SIGNATURE] = sign_data(
                signing_message(timestamp, body), self._signing_key
            )
        return headers

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def deliver(
        self,
        package: EncryptedSignalPackage,
        partner: CrisisPartnerConfig,
        correlation_id: str,
    ) -> DeliveryResult:
        """POST *package* to *partner* with timeouts and bounded retries.

        Never raises for HTTP or network failures; the outcome is described
        by the returned ``DeliveryResult``.
        """
        url_error = validate_webhook_url(
            partner.webhook_url, require_https=self._settings.require_https_webhooks
        )
        if url_error is not None:
            logger.warning(
                "Routing %s: partner %s has an invalid webhook URL",
                correlation_id,
                partner.partner_id,
            )
            return DeliveryResult(success=False, error=url_error, attempts=0)

        body = canonical_json_bytes(self.build_envelope(package, correlation_id).to_wire())
        headers = self._headers(body)
        max_attempts = max(1, self._settings.webhook_max_attempts)
        started = time.monotonic()
        last_error = "Max retries exceeded"
        last_status: int | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                response = self._client.post(
                    partner.webhook_url,
                    content=body,
                    headers=headers,
                    timeout=self._settings.webhook_timeout_seconds,
                )
            except httpx.TimeoutException:
                last_error = "Partner webhook timed out"
                last_status = None
            except httpx.HTTPError as exc:
                last_error = f"Network error: {type(exc).__name__}"
                last_status = None
            else:
                last_status = response.status_code
                outcome = self._interpret(response, attempt, started)
                if outcome is not None:
                    logger.info(
                        "Routing %s: delivery to %s %s after %d attempt(s) (HTTP %d)",
                        correlation_id,
                        partner.partner_id,
                        "succeeded" if outcome.success else "rejected",
                        attempt,
                        response.status_code,
                    )
                    return outcome
                last_error = (
                    f"Partner error: HTTP {response.status_code}"
                    if response.status_code >= 500
                    else "Partner returned an unreadable response"
                )

            logger.warning(
                "Routing %s: attempt %d/%d to %s failed: %s",
                correlation_id,
                attempt,
                max_attempts,
                partner.partner_id,
                last_error,
            )
            if attempt < max_attempts:
                self._sleep(
                    calculate_backoff(
                        attempt,
                        base_seconds=self._settings.webhook_backoff_base_seconds,
                        max_seconds=self._settings.webhook_max_backoff_seconds,
                        jitter=self._settings.webhook_backoff_jitter,
                        rng=self._rng,
                    )
                )

        return DeliveryResult(
            success=False,
            error=f"Max retries exceeded: {last_error}",
            response_time_ms=_elapsed_ms(started),
            attempts=max_attempts,
            status_code=last_status,
        )

    @staticmethod
    def _interpret(
        response: httpx.Response, attempt: int, started: float
    ) -> DeliveryResult | None:
        """Map one response to a final result, or ``None`` when it should be retried.

        A 2xx only counts as delivered when the body carries a boolean
        ``received``. Bodies that are not JSON objects, or that omit
        ``received``, are retried rather than read as a receipt, which is
        stricter than accepting every 2xx that lacks ``received: false``.
        """
        status = response.status_code
        if status >= 500:
            return None
        if not 200 <= status < 300:
            return DeliveryResult(
                success=False,
                error=f"Partner rejected: HTTP {status}",
                response_time_ms=_elapsed_ms(started),
                attempts=attempt,
                status_code=status,
            )

        try:
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict) or not isinstance(data.get("received"), bool):
            return None

        if data["received"] is False:
            return DeliveryResult(
                success=False,
                error=str(data.get("error") or "Partner rejected signal"),
                response_time_ms=_elapsed_ms(started),
                attempts=attempt,
                status_code=status,
            )
        reference = data.get("reference")
        return DeliveryResult(
            success=True,
            reference=str(reference) if reference is not None else None,
            response_time_ms=_elapsed_ms(started),
            attempts=attempt,
            status_code=status,
        )

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def check_partner_health(self, partner: CrisisPartnerConfig) -> PartnerHealth:
        """Probe the partner webhook with a HEAD request.

        A 2xx or 405 (endpoint exists but only accepts POST) counts as healthy.
        """
        url_error = validate_webhook_url(
            partner.webhook_url, require_https=self._settings.require_https_webhooks
        )
        if url_error is not None:
            return PartnerHealth(
                partner_id=partner.partner_id, healthy=False, error=url_error
            )

        started = time.monotonic()
        try:
            response = self._client.head(
                partner.webhook_url,
                headers={
                    HEADER_VERSION: WEBHOOK_PROTOCOL_VERSION,
                    HEADER_INSTANCE: self._settings.instance_id,
                },
                timeout=self._settings.webhook_timeout_seconds,
            )
        except httpx.HTTPError as exc:
            return PartnerHealth(
                partner_id=partner.partner_id,
                healthy=False,
                response_time_ms=_elapsed_ms(started),
                error=f"{type(exc).__name__}: {exc}",
            )

        healthy = response.is_success or response.status_code == 405
        return PartnerHealth(
            partner_id=partner.partner_id,
            healthy=healthy,
            status_code=response.status_code,
            response_time_ms=_elapsed_ms(started),
            error=None if healthy else f"HTTP {response.status_code}",
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
