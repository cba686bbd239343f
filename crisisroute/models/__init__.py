"""crisisroute data models — all Pydantic v2, all frozen (immutable)."""

from crisisroute.models.audit import AuditEntry
from crisisroute.models.blackout import BlackoutCheck, BlackoutStatus, SignalBlackout
from crisisroute.models.partners import (
    DEFAULT_FALLBACK_PARTNER_ID,
    CrisisPartnerConfig,
    PartnerHealth,
    PartnerRegistry,
    PartnerSelection,
    PartnerStatus,
)
from crisisroute.models.payload import (
    WEBHOOK_PROTOCOL_VERSION,
    DeliveryResult,
    DevicePlatform,
    EncryptedSignalPackage,
    ExclusionResult,
    ExternalSignalPayload,
    PartnerWebhookPayload,
)
from crisisroute.models.routing import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    AuthenticatedPrincipal,
    ErrorKind,
    RouteSignalInput,
    RouteSignalResult,
    RoutingRecord,
    RoutingStatus,
)

__all__ = [
    # partners
    "DEFAULT_FALLBACK_PARTNER_ID",
    "PartnerStatus",
    "CrisisPartnerConfig",
    "PartnerRegistry",
    "PartnerSelection",
    "PartnerHealth",
    # payload
    "WEBHOOK_PROTOCOL_VERSION",
    "DevicePlatform",
    "ExternalSignalPayload",
    "ExclusionResult",
    "EncryptedSignalPackage",
    "PartnerWebhookPayload",
    "DeliveryResult",
    # routing
    "RoutingStatus",
    "VALID_TRANSITIONS",
    "TERMINAL_STATUSES",
    "RoutingRecord",
    "RouteSignalInput",
    "RouteSignalResult",
    "ErrorKind",
    "AuthenticatedPrincipal",
    # blackout
    "SignalBlackout",
    "BlackoutStatus",
    "BlackoutCheck",
    # audit
    "AuditEntry",
]
