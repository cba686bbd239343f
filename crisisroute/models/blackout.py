"""Notification blackout models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from crisisroute.models.base import UtcDatetime, WireModel


class BlackoutStatus(str, Enum):
    """Derived from the clock; never stored."""

    ACTIVE = "active"
    EXPIRED = "expired"


class SignalBlackout(WireModel):
    """Window during which family notifications about a child are suppressed."""

    id: str = Field(min_length=1)
    child_id: str = Field(min_length=1)
    signal_id: str = Field(min_length=1)
    started_at: UtcDatetime
    expires_at: UtcDatetime

    def status_at(self, now: datetime) -> BlackoutStatus:
        return BlackoutStatus.ACTIVE if self.expires_at > now else BlackoutStatus.EXPIRED


class BlackoutCheck(WireModel):
    """Answer to "may I notify the family about this child right now?"."""

    is_blocked: bool
    expires_at: UtcDatetime | None = None
    remaining_ms: int | None = None
