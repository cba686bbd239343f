"""Routing status state machine.

Enforces:
- Valid transitions only (VALID_TRANSITIONS table)
- No regression: pending -> encrypting -> sending -> {sent | failed}
- Terminal records are immutable except for trailing annotations
- Every transition persisted to the routing store before it is returned
- Writes are compare-and-set on the prior status, so a record changed by
  another writer (e.g. the stale sweep) is never overwritten
"""

from __future__ import annotations

import logging
from typing import Any

from crisisroute.core.errors import InvalidTransitionError
from crisisroute.core.store import RoutingStore
from crisisroute.models.routing import (
    VALID_TRANSITIONS,
    RoutingRecord,
    RoutingStatus,
)

logger = logging.getLogger(__name__)

# Fields that may still be written once a record is terminal.
ANNOTATION_FIELDS: frozenset[str] = frozenset({"acknowledged_at", "partner_reference"})

# Identity fields never change after creation.
_IMMUTABLE_FIELDS: frozenset[str] = frozenset({"id", "signal_id", "started_at", "status"})


class RoutingStateMachine:
    """Applies status transitions to routing records and persists them.

    Parameters
    ----------
    store:
        The isolated routing store that owns the records.
    """

    def __init__(self, store: RoutingStore) -> None:
        self._store = store

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, record: RoutingRecord) -> RoutingRecord:
        """Persist a brand-new record. It must start in PENDING."""
        if record.status != RoutingStatus.PENDING:
            raise InvalidTransitionError(
                f"Routing record {record.id} must be created as pending, "
                f"not {record.status.value}"
            )
        self._store.create_record(record)
        logger.debug("Routing record %s created (pending)", record.id)
        return record

    def transition(
        self,
        record: RoutingRecord,
        target: RoutingStatus,
        **changes: Any,
    ) -> RoutingRecord:
        """Move *record* to *target*, applying *changes* in the same write.

        Validates the transition against ``VALID_TRANSITIONS`` and returns
        the persisted record.
        """
        allowed = VALID_TRANSITIONS.get(record.status, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition routing {record.id} from {record.status.value} "
                f"to {target.value}. Allowed: {sorted(s.value for s in allowed)}"
            )
        forbidden = _IMMUTABLE_FIELDS.intersection(changes)
        if forbidden:
            raise InvalidTransitionError(
                f"Fields {sorted(forbidden)} cannot be changed on routing {record.id}"
            )

        updated = record.model_copy(update={**changes, "status": target})
        self._store.update_record(updated, expected_status=record.status)
        logger.debug(
            "Routing record %s: %s->%s",
            record.id,
            record.status.value,
            target.value,
        )
        return updated

    def fail(self, record: RoutingRecord, reason: str, **changes: Any) -> RoutingRecord:
        """Convenience: transition to FAILED recording *reason* as ``last_error``."""
        return self.transition(
            record, RoutingStatus.FAILED, last_error=reason, **changes
        )

    def annotate(self, record: RoutingRecord, **changes: Any) -> RoutingRecord:
        """Write trailing annotations to a terminal record without changing status."""
        if not record.is_terminal:
            raise InvalidTransitionError(
                f"Routing {record.id} is {record.status.value}; "
                "annotations apply to terminal records only"
            )
        disallowed = set(changes) - ANNOTATION_FIELDS
        if disallowed:
            raise InvalidTransitionError(
                f"Fields {sorted(disallowed)} are not annotations and cannot be "
                f"changed on terminal routing {record.id}"
            )
        updated = record.model_copy(update=changes)
        self._store.update_record(updated, expected_status=record.status)
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_available_transitions(self, record: RoutingRecord) -> set[RoutingStatus]:
        """Return the set of valid target statuses for a record."""
        return set(VALID_TRANSITIONS.get(record.status, set()))
