"""Notification blackout manager.

A blackout suppresses family-visible notifications about a child for a fixed
48 hours after a signal was delivered to a crisis partner. Blackouts are
never renewed, shortened or ended early; whether one is active is derived
from the clock at read time.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from crisisroute.core.store import RoutingStore
from crisisroute.models.base import utcnow
from crisisroute.models.blackout import BlackoutCheck, SignalBlackout

logger = logging.getLogger(__name__)

BLACKOUT_DURATION = timedelta(hours=48)


class BlackoutManager:
    """Opens and answers queries about notification blackouts.

    Parameters
    ----------
    store:
        The isolated routing store that holds blackout documents.
    clock:
        Returns the current UTC time.
    """

    def __init__(
        self,
        store: RoutingStore,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._clock = clock

    def start_blackout(self, child_id: str, signal_id: str) -> SignalBlackout:
        """Open a 48-hour blackout starting now.

        If a blackout already exists for the same child and signal it is
        returned unchanged.
        """
        existing = self._store.get_blackout(child_id, signal_id)
        if existing is not None:
            return existing

        started = self._clock()
        stored = self._store.save_blackout(
            SignalBlackout(
                id=f"blackout_{uuid.uuid4().hex}",
                child_id=child_id,
                signal_id=signal_id,
                started_at=started,
                expires_at=started + BLACKOUT_DURATION,
            )
        )
        logger.info("Blackout %s opened, expires %s", stored.id, stored.expires_at.isoformat())
        return stored

    def active_blackouts(self, child_id: str | None = None) -> list[SignalBlackout]:
        """Blackouts whose expiry is still in the future, latest expiry first."""
        return self._store.find_blackouts(child_id=child_id, expires_after=self._clock())

    def check(self, child_id: str) -> BlackoutCheck:
        """Whether family notifications about *child_id* are currently suppressed."""
        now = self._clock()
        active = self._store.find_blackouts(child_id=child_id, expires_after=now)
        if not active:
            return BlackoutCheck(is_blocked=False)
        expires_at = max(b.expires_at for b in active)
        return BlackoutCheck(
            is_blocked=True,
            expires_at=expires_at,
            remaining_ms=int((expires_at - now).total_seconds() * 1000),
        )

    def is_notification_blocked(self, child_id: str) -> bool:
        return self.check(child_id).is_blocked
