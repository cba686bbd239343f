"""Outbound payload models — minimal, de-identified, encrypted.

CRITICAL: ``ExternalSignalPayload`` must never gain a family identifier,
contact detail, screenshot or activity field. The exclusion validator in
``crisisroute.core.payload`` rejects any such field before delivery.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import ConfigDict, Field

from crisisroute.models.base import UtcDatetime, WireModel

WEBHOOK_PROTOCOL_VERSION = "1.0"


class DevicePlatform(str, Enum):
    """Platform on which the signal was triggered."""

    WEB = "web"
    CHROME = "chrome"
    ANDROID = "android"
    IOS = "ios"


class ExternalSignalPayload(WireModel):
    """The only data a partner ever sees about a signal."""

    model_config = ConfigDict(extra="forbid")

    signal_id: str = Field(min_length=1)
    child_age: int = Field(ge=0, le=25)
    has_shared_custody: bool
    signal_timestamp: UtcDatetime
    jurisdiction: str = Field(min_length=2, max_length=16)
    device_platform: DevicePlatform


class ExclusionResult(WireModel):
    """Outcome of the forbidden-field check."""

    valid: bool
    forbidden_fields_found: list[str] = []


class EncryptedSignalPackage(WireModel):
    """Hybrid-encrypted payload addressed to one partner key.

    Transient: built, transmitted and dropped within a single invocation.
    """

    encrypted_key: str  # RSA-OAEP wrapped AES key, base64
    encrypted_payload: str  # AES-GCM ciphertext + tag, base64
    iv: str = Field(min_length=16, max_length=16)  # 12-byte nonce, base64
    key_algorithm: Literal["RSA-OAEP"] = "RSA-OAEP"
    payload_algorithm: Literal["AES-GCM"] = "AES-GCM"
    partner_id: str = Field(min_length=1)
    public_key_hash: str = Field(min_length=64, max_length=64)


class PartnerWebhookPayload(WireModel):
    """Envelope POSTed to the partner webhook."""

    version: Literal["1.0"] = WEBHOOK_PROTOCOL_VERSION
    instance_id: str = Field(min_length=1)
    package: EncryptedSignalPackage
    delivered_at: UtcDatetime
    signal_ref: str = Field(min_length=8, max_length=16)


class DeliveryResult(WireModel):
    """Outcome of the delivery retry loop."""

    success: bool
    reference: str | None = None
    error: str | None = None
    response_time_ms: int = 0
    attempts: int = 0
    status_code: int | None = None
