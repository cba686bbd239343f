"""Tests for the hash-chained AuditLedger and the best-effort audit sink."""

from __future__ import annotations

from crisisroute.bridge.audit_sink import (
    ACTION_ROUTED,
    AuditSink,
    LedgerAuditSink,
    record_audit_event,
)
from crisisroute.models.audit import AuditEntry


class _BrokenSink:
    def write(self, action, resource_id, metadata, *, resource_type="signalRouting"):
        raise OSError("disk full")


class TestAuditLedger:
    def test_append_seals_and_links(self, ledger):
        first = ledger.append(AuditEntry(action="a", resource_id="r1"))
        second = ledger.append(AuditEntry(action="b", resource_id="r2"))
        assert first.previous_entry_hash == ""
        assert len(first.entry_hash) == 64
        assert second.previous_entry_hash == first.entry_hash

    def test_entries_round_trip(self, ledger):
        sealed = ledger.append(
            AuditEntry(action="a", resource_id="r1", metadata={"attempts": 2, "nested": {"x": [1]}})
        )
        assert ledger.get_entries() == [sealed]

    def test_filter_by_resource(self, ledger):
        ledger.append(AuditEntry(action="a", resource_id="r1"))
        ledger.append(AuditEntry(action="b", resource_id="r2"))
        assert [e.action for e in ledger.get_entries("r2")] == ["b"]
        assert ledger.count() == 2

    def test_verify_empty_and_populated(self, ledger):
        assert ledger.verify_chain() is True
        for i in range(3):
            ledger.append(AuditEntry(action=f"a{i}", resource_id="r"))
        assert ledger.verify_chain() is True


class TestAuditSink:
    def test_ledger_sink_is_an_audit_sink(self, audit_sink):
        assert isinstance(audit_sink, AuditSink)

    def test_record_event_writes_to_ledger(self, audit_sink, ledger):
        assert record_audit_event(audit_sink, ACTION_ROUTED, "routing_1", {"partnerId": "p"})
        [entry] = ledger.get_entries("routing_1")
        assert entry.action == ACTION_ROUTED
        assert entry.resource_type == "signalRouting"
        assert entry.metadata == {"partnerId": "p"}

    def test_failing_sink_is_swallowed(self, caplog):
        assert record_audit_event(_BrokenSink(), ACTION_ROUTED, "routing_1") is False
        assert "Failed to write audit event" in caplog.text

    def test_missing_sink_is_a_no_op(self):
        assert record_audit_event(None, ACTION_ROUTED, "routing_1") is False

    def test_sink_exposes_ledger(self, ledger):
        assert LedgerAuditSink(ledger).ledger is ledger
