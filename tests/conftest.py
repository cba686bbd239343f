"""Shared test fixtures for crisisroute."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx
import pytest

from crisisroute.bridge.audit_sink import LedgerAuditSink
from crisisroute.bridge.delivery import DeliveryClient
from crisisroute.bridge.encryption import generate_partner_keypair
from crisisroute.config import RoutingSettings
from crisisroute.core.audit_ledger import AuditLedger
from crisisroute.core.collaborators import ChildDirectory
from crisisroute.core.orchestrator import RoutingOrchestrator
from crisisroute.core.store import SqliteRoutingStore
from crisisroute.models.partners import (
    DEFAULT_FALLBACK_PARTNER_ID,
    CrisisPartnerConfig,
    PartnerRegistry,
)
from crisisroute.models.routing import AuthenticatedPrincipal, RouteSignalInput

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Deterministic clock: returns ``now`` until told to advance."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakePartnerWebhook:
    """Scripted partner endpoint for ``httpx.MockTransport``.

    Each queued step is either a (status, response kwargs) pair or an
    exception to raise.
    When the script runs out, the last step repeats.
    """

    def __init__(self) -> None:
        self.steps: list[tuple[int, dict[str, Any]] | Exception] = []
        self.requests: list[httpx.Request] = []
        self.on_request: Callable[[httpx.Request], None] | None = None

    def respond(self, status: int = 200, body: Any = None, **kwargs: Any) -> FakePartnerWebhook:
        if body is None and "content" not in kwargs and "json" not in kwargs:
            body = {"received": True, "reference": "ref-123"}
        if body is not None:
            kwargs["json"] = body
        self.steps.append((status, kwargs))
        return self

    def fail_with(self, exc: Exception) -> FakePartnerWebhook:
        self.steps.append(exc)
        return self

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(request)
        index = min(len(self.requests), len(self.steps)) - 1
        step = self.steps[index] if self.steps else (200, {"json": {"received": True}})
        if isinstance(step, Exception):
            raise step
        status, kwargs = step
        return httpx.Response(status, **kwargs)

    @property
    def posts(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    def last_envelope(self) -> dict[str, Any]:
        return json.loads(self.posts[-1].content)


@pytest.fixture
def clock() -> FixedClock:
    """Provide a fixed clock starting at 2026-03-01T12:00Z."""
    return FixedClock()


@pytest.fixture(scope="session")
def partner_keys() -> tuple[str, str]:
    """One RSA key pair shared by the whole session (generation is slow)."""
    return generate_partner_keypair()


@pytest.fixture(scope="session")
def other_partner_keys() -> tuple[str, str]:
    return generate_partner_keypair()


@pytest.fixture
def settings(tmp_path: Path) -> RoutingSettings:
    """Provide isolated settings pointing at temp databases."""
    return RoutingSettings(
        _env_file=None,
        routing_db_path=tmp_path / "routing.db",
        audit_db_path=tmp_path / "audit.db",
        instance_id="test-instance",
    )


@pytest.fixture
def store(settings: RoutingSettings) -> SqliteRoutingStore:
    """Provide a fresh routing store backed by a temp SQLite database."""
    return SqliteRoutingStore(settings.routing_db_path)


@pytest.fixture
def ledger(settings: RoutingSettings) -> AuditLedger:
    """Provide a fresh audit ledger backed by a temp SQLite database."""
    return AuditLedger(settings.audit_db_path)


@pytest.fixture
def audit_sink(ledger: AuditLedger) -> LedgerAuditSink:
    return LedgerAuditSink(ledger)


@pytest.fixture
def children(clock: FixedClock) -> ChildDirectory:
    """Provide a child directory: child-1 is 14 with shared custody."""
    return ChildDirectory(
        {
            "child-1": {"birthDate": "2011-03-15", "sharedCustody": True},
            "child-2": {"birthDate": "2013-01-01"},
            "child-no-birthdate": {"sharedCustody": False},
        },
        clock=clock,
    )


@pytest.fixture
def principal() -> AuthenticatedPrincipal:
    return AuthenticatedPrincipal(uid="child-1-account")


# ---------------------------------------------------------------------------
# Partner factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_partner(partner_keys: tuple[str, str]) -> Callable[..., CrisisPartnerConfig]:
    """Factory fixture: build a CrisisPartnerConfig with sensible defaults."""

    def _factory(partner_id: str = "ca-crisis-line", **overrides: Any) -> CrisisPartnerConfig:
        defaults: dict[str, Any] = {
            "partner_id": partner_id,
            "name": f"Partner {partner_id}",
            "webhook_url": f"https://{partner_id}.example.org/signals",
            "public_key": partner_keys[1],
            "jurisdictions": frozenset({"US-CA"}),
            "priority": 10,
        }
        defaults.update(overrides)
        return CrisisPartnerConfig(**defaults)

    return _factory


@pytest.fixture
def partners(make_partner: Callable[..., CrisisPartnerConfig]) -> list[CrisisPartnerConfig]:
    """Two US-CA partners (priority 10 and 20) and one national fallback."""
    return [
        make_partner("ca-crisis-line", priority=10),
        make_partner("ca-backup-line", priority=20),
        make_partner(
            DEFAULT_FALLBACK_PARTNER_ID,
            jurisdictions=frozenset(),
            is_fallback=True,
            priority=50,
        ),
    ]


@pytest.fixture
def registry() -> PartnerRegistry:
    """US-CA lists the backup first so priority, not order, must decide."""
    return PartnerRegistry(
        jurisdiction_map={"US-CA": ["ca-backup-line", "ca-crisis-line"]},
        fallback_partners=[DEFAULT_FALLBACK_PARTNER_ID],
    )


@pytest.fixture
def seeded_store(
    store: SqliteRoutingStore,
    partners: list[CrisisPartnerConfig],
    registry: PartnerRegistry,
) -> SqliteRoutingStore:
    for partner in partners:
        store.save_partner(partner)
    store.save_registry(registry)
    return store


# ---------------------------------------------------------------------------
# Delivery and orchestration
# ---------------------------------------------------------------------------


@pytest.fixture
def webhook() -> FakePartnerWebhook:
    return FakePartnerWebhook()


@pytest.fixture
def sleeps() -> list[float]:
    """Records every backoff delay instead of sleeping."""
    return []


@pytest.fixture
def delivery(
    settings: RoutingSettings,
    webhook: FakePartnerWebhook,
    sleeps: list[float],
    clock: FixedClock,
) -> DeliveryClient:
    client = httpx.Client(transport=httpx.MockTransport(webhook.handler))
    return DeliveryClient(settings, http_client=client, sleep=sleeps.append, clock=clock)


@pytest.fixture
def orchestrator(
    seeded_store: SqliteRoutingStore,
    children: ChildDirectory,
    delivery: DeliveryClient,
    settings: RoutingSettings,
    audit_sink: LedgerAuditSink,
    clock: FixedClock,
) -> RoutingOrchestrator:
    """Provide a fully wired orchestrator over temp stores and a fake webhook."""
    return RoutingOrchestrator(
        seeded_store,
        children,
        delivery,
        settings,
        audit_sink=audit_sink,
        clock=clock,
    )


@pytest.fixture
def make_request() -> Callable[..., RouteSignalInput]:
    """Factory fixture: build a RouteSignalInput with sensible defaults."""

    def _factory(**overrides: Any) -> RouteSignalInput:
        defaults: dict[str, Any] = {
            "signal_id": "signal-001",
            "child_id": "child-1",
            "triggered_at": T0 - timedelta(minutes=1),
            "device_type": "android",
            "jurisdiction": "US-CA",
        }
        defaults.update(overrides)
        return RouteSignalInput(**defaults)

    return _factory
