"""Append-only, hash-chained audit entry model.

Audit entries live in their own database, isolated from both family data and
the routing store. They must never carry payload contents.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuditEntry(BaseModel):
    """A single entry in the append-only audit ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: str  # e.g. "signal_routed_external", "signal_routing_failed"
    resource_type: str = "signalRouting"
    resource_id: str
    metadata: dict[str, Any] = {}
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    previous_entry_hash: str = ""  # SHA-256 of previous entry's canonical bytes
    entry_hash: str = ""  # computed on append, seals this entry
