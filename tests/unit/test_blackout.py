"""Tests for the BlackoutManager — fixed 48h window, no renewal, read side."""

from __future__ import annotations

from datetime import timedelta

import pytest

from crisisroute.core.blackout import BLACKOUT_DURATION, BlackoutManager


@pytest.fixture
def manager(store, clock) -> BlackoutManager:
    return BlackoutManager(store, clock=clock)


class TestBlackoutManager:
    def test_duration_is_48_hours(self):
        assert BLACKOUT_DURATION == timedelta(hours=48)

    def test_start_blackout(self, manager, clock):
        blackout = manager.start_blackout("child-1", "signal-001")
        assert blackout.started_at == clock()
        assert blackout.expires_at - blackout.started_at == timedelta(hours=48)
        assert blackout.id.startswith("blackout_")

    def test_repeat_start_returns_existing_unchanged(self, manager, clock):
        first = manager.start_blackout("child-1", "signal-001")
        clock.advance(hours=10)
        second = manager.start_blackout("child-1", "signal-001")
        assert second == first

    def test_check_active(self, manager, clock):
        manager.start_blackout("child-1", "signal-001")
        clock.advance(hours=47)
        check = manager.check("child-1")
        assert check.is_blocked is True
        assert check.remaining_ms == 3_600_000
        assert manager.is_notification_blocked("child-1")

    def test_check_expired(self, manager, clock):
        manager.start_blackout("child-1", "signal-001")
        clock.advance(hours=48)
        check = manager.check("child-1")
        assert check.is_blocked is False
        assert check.expires_at is None

    def test_other_child_not_blocked(self, manager):
        manager.start_blackout("child-1", "signal-001")
        assert not manager.is_notification_blocked("child-2")

    def test_latest_expiry_wins(self, manager, clock):
        manager.start_blackout("child-1", "signal-001")
        clock.advance(hours=5)
        second = manager.start_blackout("child-1", "signal-002")
        check = manager.check("child-1")
        assert check.expires_at == second.expires_at
        assert len(manager.active_blackouts("child-1")) == 2
