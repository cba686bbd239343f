"""Crisis partner configuration and jurisdiction registry models.

Both are externally managed and read-only to the routing engine.
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field

from crisisroute.models.base import UtcDatetime, WireModel, utcnow

DEFAULT_FALLBACK_PARTNER_ID = "default_national_partner"


class PartnerStatus(str, Enum):
    """Lifecycle status of a partner. Only ACTIVE partners are selectable."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class CrisisPartnerConfig(WireModel):
    """An external crisis-response organization that can receive signals."""

    partner_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    status: PartnerStatus = PartnerStatus.ACTIVE
    webhook_url: str
    public_key: str  # PEM-encoded RSA public key
    jurisdictions: frozenset[str] = frozenset()
    is_fallback: bool = False
    priority: int = Field(default=50, ge=0, le=100)  # lower = preferred
    key_expires_at: UtcDatetime | None = None


class PartnerRegistry(WireModel):
    """Jurisdiction routing table.

    ``jurisdiction_map`` maps a jurisdiction code to an ordered list of
    partner ids; ``fallback_partners`` lists national resources tried when no
    jurisdiction partner is available.
    """

    jurisdiction_map: dict[str, list[str]] = {}
    fallback_partners: list[str] = [DEFAULT_FALLBACK_PARTNER_ID]
    last_updated: UtcDatetime = Field(default_factory=utcnow)


class PartnerSelection(WireModel):
    """Result of partner selection for one jurisdiction."""

    partner: CrisisPartnerConfig
    used_fallback: bool


class PartnerHealth(WireModel):
    """Outcome of a HEAD probe against a partner webhook."""

    partner_id: str
    healthy: bool
    status_code: int | None = None
    response_time_ms: int = 0
    error: str | None = None
