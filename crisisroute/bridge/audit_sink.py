"""Audit sink bridge — best-effort, write-only, isolated.

Bridge boundary
---------------
The routing engine writes admin audit events through the ``AuditSink``
protocol. The default implementation, ``LedgerAuditSink``, appends to the
hash-chained ``AuditLedger``; deployments may plug in any other append-only
destination.

A failing sink must never fail or retry the routing workflow.
``record_audit_event()`` is the only call site the engine uses and it
swallows every sink exception after logging it.

Audit metadata must never contain payload fields, child identifiers or key
material: only routing ids, partner ids, timings and error detail.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from crisisroute.core.audit_ledger import AuditLedger
from crisisroute.models.audit import AuditEntry

logger = logging.getLogger(__name__)

ACTION_ROUTED = "signal_routed_external"
ACTION_DELIVERY_FAILED = "signal_delivery_failed"
ACTION_PRECONDITION_FAILED = "signal_routing_precondition_failed"
ACTION_ROUTING_FAILED = "signal_routing_failed"
ACTION_ACKNOWLEDGED = "signal_routing_acknowledged"
ACTION_STALE_RECONCILED = "signal_routing_stale_reconciled"


@runtime_checkable
class AuditSink(Protocol):
    """Append-only audit destination."""

    def write(
        self,
        action: str,
        resource_id: str,
        metadata: dict[str, Any],
        *,
        resource_type: str = "signalRouting",
    ) -> None: ...


class LedgerAuditSink:
    """``AuditSink`` backed by the hash-chained :class:`AuditLedger`."""

    def __init__(self, ledger: AuditLedger) -> None:
        self._ledger = ledger

    @property
    def ledger(self) -> AuditLedger:
        return self._ledger

    def write(
        self,
        action: str,
        resource_id: str,
        metadata: dict[str, Any],
        *,
        resource_type: str = "signalRouting",
    ) -> None:
        sealed = self._ledger.append(
            AuditEntry(
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                metadata=metadata,
            )
        )
        logger.debug(
            "AuditLedger: appended %s for %s (%s)",
            action,
            resource_id,
            sealed.entry_hash[:12],
        )


def record_audit_event(
    sink: AuditSink | None,
    action: str,
    resource_id: str,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """Best-effort write to *sink*.

    Returns ``True`` if the sink accepted the event. Never raises.
    """
    if sink is None:
        return False
    try:
        sink.write(action, resource_id, metadata or {})
        return True
    except Exception:
        # Never let an audit failure break signal routing.
        logger.exception(
            "Failed to write audit event %s for %s; routing outcome is unaffected.",
            action,
            resource_id,
        )
        return False
