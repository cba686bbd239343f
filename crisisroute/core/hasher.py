"""Canonical hashing helpers for audit chaining and wire references."""

from __future__ import annotations

import hashlib
import json
from typing import Any

SIGNAL_REF_LENGTH = 16


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes for hashing and the wire.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of an audit entry (excluding the entry_hash field itself).

    This is the seal that makes each entry tamper-evident.
    """
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))


def generate_signal_ref(partner_id: str, routing_id: str) -> str:
    """Short, non-reversible reference sent to the partner instead of the signal id.

    Stable for a given (partner, routing attempt) so partner support staff
    can quote it back, but reveals nothing about the signal or the family.
    """
    digest = sha256_hex(f"{partner_id}:{routing_id}".encode("utf-8"))
    return digest[:SIGNAL_REF_LENGTH]
