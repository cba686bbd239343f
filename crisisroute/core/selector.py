"""Partner selection with jurisdiction fallback.

Selection is a pure function of (jurisdiction, registry, partners, now):
no hidden state, fully deterministic.

1. Candidates mapped to the jurisdiction that are ACTIVE and whose key has
   not expired; lowest ``priority`` wins, ties broken by registry order.
2. Otherwise the same filter over the registry's fallback list.
3. Otherwise ``PreconditionError``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from crisisroute.core.errors import PreconditionError
from crisisroute.models.base import utcnow
from crisisroute.models.partners import (
    CrisisPartnerConfig,
    PartnerRegistry,
    PartnerSelection,
    PartnerStatus,
)

logger = logging.getLogger(__name__)

KEY_EXPIRY_WARNING_DAYS = 30


def is_partner_available(partner: CrisisPartnerConfig, now: datetime) -> bool:
    """Active, and the public key is either non-expiring or still valid."""
    if partner.status != PartnerStatus.ACTIVE:
        return False
    if partner.key_expires_at is not None and partner.key_expires_at <= now:
        return False
    return True


def is_key_expiring_soon(
    partner: CrisisPartnerConfig,
    now: datetime,
    days_warning: int = KEY_EXPIRY_WARNING_DAYS,
) -> bool:
    """Whether the partner key expires within *days_warning* days (or already has)."""
    if partner.key_expires_at is None:
        return False
    return partner.key_expires_at <= now + timedelta(days=days_warning)


def _best_available(
    partner_ids: Iterable[str],
    by_id: dict[str, CrisisPartnerConfig],
    now: datetime,
) -> CrisisPartnerConfig | None:
    available = [
        by_id[pid]
        for pid in partner_ids
        if pid in by_id and is_partner_available(by_id[pid], now)
    ]
    if not available:
        return None
    # min() is stable, so equal priorities keep registry order.
    return min(available, key=lambda p: p.priority)


def select_partner(
    jurisdiction: str,
    registry: PartnerRegistry,
    partners: Iterable[CrisisPartnerConfig],
    *,
    now: datetime | None = None,
) -> PartnerSelection:
    """Resolve *jurisdiction* to a partner, falling back to national partners.

    Parameters
    ----------
    jurisdiction:
        Region code such as ``"US-CA"``.
    registry:
        The jurisdiction routing table.
    partners:
        Every known partner configuration (any status).
    now:
        Reference time for key-expiry checks. Defaults to the current UTC time.

    Returns
    -------
    PartnerSelection
        The chosen partner and whether the fallback list was used.

    Raises
    ------
    PreconditionError
        If neither the jurisdiction list nor the fallback list yields an
        available partner.
    """
    now = now or utcnow()
    by_id: dict[str, CrisisPartnerConfig] = {}
    for partner in partners:
        by_id.setdefault(partner.partner_id, partner)

    primary = _best_available(
        registry.jurisdiction_map.get(jurisdiction, []), by_id, now
    )
    if primary is not None:
        return PartnerSelection(partner=primary, used_fallback=False)

    fallback = _best_available(registry.fallback_partners, by_id, now)
    if fallback is not None:
        logger.info(
            "No available partner mapped to %s; using fallback partner %s",
            jurisdiction,
            fallback.partner_id,
        )
        return PartnerSelection(partner=fallback, used_fallback=True)

    raise PreconditionError("No available crisis partner")


def describe_partner_availability(
    partner: CrisisPartnerConfig, now: datetime
) -> str:
    """One-word availability label used by the operator CLI."""
    if partner.status != PartnerStatus.ACTIVE:
        return partner.status.value
    if not is_partner_available(partner, now):
        return "key-expired"
    if is_key_expiring_soon(partner, now):
        return "key-expiring"
    return "available"
