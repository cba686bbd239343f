"""Shared Pydantic configuration for wire-visible models.

Partners and stored documents use camelCase field names; Python code uses
snake_case. Both spellings are accepted on input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken to be UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


def utcnow() -> datetime:
    """Default clock for every component that needs "now"."""
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Frozen model that serializes with camelCase aliases."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict:
        """Dump to a JSON-compatible dict using the camelCase field names."""
        return self.model_dump(mode="json", by_alias=True)
