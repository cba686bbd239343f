"""Routing record, input/output models and the routing state table."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field

from crisisroute.models.base import UtcDatetime, WireModel
from crisisroute.models.payload import DevicePlatform


class RoutingStatus(str, Enum):
    """Strict status model for one routing attempt."""

    PENDING = "pending"
    ENCRYPTING = "encrypting"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


# Valid status transitions, enforced by RoutingStateMachine.
# Terminal states (SENT, FAILED) have no outgoing transitions.
VALID_TRANSITIONS: dict[RoutingStatus, set[RoutingStatus]] = {
    RoutingStatus.PENDING: {RoutingStatus.ENCRYPTING, RoutingStatus.FAILED},
    RoutingStatus.ENCRYPTING: {RoutingStatus.SENDING, RoutingStatus.FAILED},
    RoutingStatus.SENDING: {RoutingStatus.SENT, RoutingStatus.FAILED},
    RoutingStatus.SENT: set(),  # terminal
    RoutingStatus.FAILED: set(),  # terminal
}

TERMINAL_STATUSES: frozenset[RoutingStatus] = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)


class RoutingRecord(WireModel):
    """Isolated ledger row for one routing attempt.

    Never exposed to family-facing data. ``partner_id`` is empty until a
    partner has been selected.
    """

    id: str = Field(min_length=1)
    signal_id: str = Field(min_length=1)
    partner_id: str = ""
    jurisdiction: str
    status: RoutingStatus = RoutingStatus.PENDING
    used_fallback: bool = False
    started_at: UtcDatetime
    sent_at: UtcDatetime | None = None
    acknowledged_at: UtcDatetime | None = None
    partner_reference: str | None = None
    attempts: int = Field(default=0, ge=0)
    last_error: str | None = None
    response_time_ms: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class RouteSignalInput(WireModel):
    """Request to route one triggered signal."""

    signal_id: str = Field(min_length=1)
    child_id: str = Field(min_length=1)
    triggered_at: UtcDatetime
    device_type: DevicePlatform
    jurisdiction: str | None = Field(default=None, min_length=2, max_length=16)


class ErrorKind(str, Enum):
    """Tag carried by a failed RouteSignalResult."""

    VALIDATION = "validation"
    UNAUTHENTICATED = "unauthenticated"
    PRECONDITION = "precondition"
    DELIVERY = "delivery"
    INTERNAL = "internal"


class RouteSignalResult(WireModel):
    """Structured outcome returned to the caller; never raised."""

    success: bool
    routing_id: str | None = None
    partner_id: str | None = None
    used_fallback: bool = False
    error: str | None = None
    error_kind: ErrorKind | None = None


class AuthenticatedPrincipal(WireModel):
    """Identity supplied by the caller/auth collaborator."""

    uid: str = Field(min_length=1)
    claims: dict[str, Any] = {}
