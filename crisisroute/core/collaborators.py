"""Child/custody collaborator interface.

The routing engine needs exactly two facts about a child: their age in whole
years and whether custody is shared. Both come from a ``ChildContextProvider``
supplied by the host application. ``ChildDirectory`` is a simple
mapping-backed implementation used by the CLI and tests.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from datetime import date, datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from crisisroute.models.base import utcnow

logger = logging.getLogger(__name__)


class ChildContextUnavailable(RuntimeError):
    """Raised by a provider when the child lookup itself fails."""


@runtime_checkable
class ChildContextProvider(Protocol):
    """Source of the minimal child facts needed for a payload."""

    def get_child_age(self, child_id: str) -> int | None:
        """Age in whole years, or ``None`` if it cannot be determined."""
        ...

    def has_shared_custody(self, child_id: str) -> bool: ...


def age_on(birth_date: date, today: date) -> int:
    """Whole years between *birth_date* and *today*."""
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return age


def _parse_birth_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).date()
        except ValueError:
            return None
    return None


class ChildDirectory:
    """``ChildContextProvider`` over an in-memory mapping.

    Each entry is keyed by child id and may carry ``birthDate`` (ISO date)
    and ``sharedCustody`` (bool)::

        {"child-1": {"birthDate": "2011-04-02", "sharedCustody": true}}
    """

    def __init__(
        self,
        children: Mapping[str, Mapping[str, Any]],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._children = dict(children)
        self._clock = clock

    @classmethod
    def from_json_file(
        cls, path: Path, clock: Callable[[], datetime] = utcnow
    ) -> ChildDirectory:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ChildContextUnavailable(f"Cannot read child directory {path}") from exc
        if not isinstance(data, dict):
            raise ChildContextUnavailable(f"Child directory {path} must be a JSON object")
        return cls(data, clock=clock)

    def _entry(self, child_id: str) -> Mapping[str, Any] | None:
        # Malformed entries read as an unknown child.
        entry = self._children.get(child_id)
        return entry if isinstance(entry, Mapping) else None

    def get_child_age(self, child_id: str) -> int | None:
        entry = self._entry(child_id)
        if entry is None:
            return None
        birth_date = _parse_birth_date(entry.get("birthDate"))
        if birth_date is None:
            return None
        age = age_on(birth_date, self._clock().date())
        return age if age >= 0 else None

    def has_shared_custody(self, child_id: str) -> bool:
        entry = self._entry(child_id)
        return bool(entry and entry.get("sharedCustody", False))
