"""Payload builder and forbidden-field exclusion validator.

The builder is the only producer of outbound payloads. The validator still
runs on every payload before encryption so that any change which widens the
payload fails closed before delivery.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from crisisroute.models.payload import (
    DevicePlatform,
    ExclusionResult,
    ExternalSignalPayload,
)

# Field names that must never leave the boundary. "jurisdiction" replaces any
# location data and "devicePlatform" replaces any device identifier.
FORBIDDEN_FIELDS: tuple[str, ...] = (
    "parentId",
    "familyId",
    "childId",
    "childName",
    "firstName",
    "lastName",
    "email",
    "phone",
    "phoneNumber",
    "screenshot",
    "screenshots",
    "activityData",
    "activity",
    "browsingHistory",
    "urls",
    "address",
    "location",
    "coordinates",
    "deviceId",
    "userId",
)

_FORBIDDEN_SET = frozenset(FORBIDDEN_FIELDS)


def build_external_payload(
    signal_id: str,
    child_age: int,
    has_shared_custody: bool,
    signal_timestamp: datetime,
    jurisdiction: str,
    device_platform: DevicePlatform | str,
) -> ExternalSignalPayload:
    """Build the minimal payload a crisis partner receives."""
    return ExternalSignalPayload(
        signal_id=signal_id,
        child_age=child_age,
        has_shared_custody=has_shared_custody,
        signal_timestamp=signal_timestamp,
        jurisdiction=jurisdiction,
        device_platform=device_platform,
    )


def _collect_keys(data: Mapping[str, Any], found: list[str]) -> None:
    for key, value in data.items():
        if key in _FORBIDDEN_SET and key not in found:
            found.append(key)
        if isinstance(value, Mapping):
            _collect_keys(value, found)
        elif isinstance(value, (list, tuple)):
            for item in value:
                if isinstance(item, Mapping):
                    _collect_keys(item, found)


def validate_payload_exclusions(
    data: ExternalSignalPayload | Mapping[str, Any],
) -> ExclusionResult:
    """Check the serialized field set against ``FORBIDDEN_FIELDS``.

    Models are checked on their wire (camelCase) serialization. Nested
    mappings are scanned too.
    """
    if isinstance(data, ExternalSignalPayload):
        data = data.to_wire()

    found: list[str] = []
    _collect_keys(data, found)
    return ExclusionResult(valid=not found, forbidden_fields_found=found)
