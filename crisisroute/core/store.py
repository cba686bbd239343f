"""Isolated routing store backed by SQLite.

Holds routing records, blackouts, partner configurations and the partner
registry in a database file that no family-facing component reads.

Design:
- One short-lived connection per operation (safe across threads).
- WAL journal mode for concurrent readers.
- Each row keeps the full camelCase document in ``doc_json``; indexed
  columns exist only for the equality/range queries the engine needs.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from crisisroute.core.errors import InvalidTransitionError
from crisisroute.models.blackout import SignalBlackout
from crisisroute.models.partners import CrisisPartnerConfig, PartnerRegistry
from crisisroute.models.routing import RoutingRecord, RoutingStatus


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


@runtime_checkable
class RoutingStore(Protocol):
    """Key-addressed persistence used by the routing engine."""

    def create_record(self, record: RoutingRecord) -> None: ...

    def update_record(
        self, record: RoutingRecord, expected_status: RoutingStatus | None = None
    ) -> None: ...

    def get_record(self, routing_id: str) -> RoutingRecord | None: ...

    def find_records(
        self,
        *,
        signal_id: str | None = None,
        partner_id: str | None = None,
        statuses: list[RoutingStatus] | None = None,
        started_before: datetime | None = None,
        limit: int = 100,
    ) -> list[RoutingRecord]: ...

    def save_blackout(self, blackout: SignalBlackout) -> SignalBlackout: ...

    def get_blackout(self, child_id: str, signal_id: str) -> SignalBlackout | None: ...

    def find_blackouts(
        self,
        *,
        child_id: str | None = None,
        expires_after: datetime | None = None,
    ) -> list[SignalBlackout]: ...

    def save_partner(self, partner: CrisisPartnerConfig) -> None: ...

    def get_partner(self, partner_id: str) -> CrisisPartnerConfig | None: ...

    def list_partners(self) -> list[CrisisPartnerConfig]: ...

    def save_registry(self, registry: PartnerRegistry) -> None: ...

    def get_registry(self) -> PartnerRegistry: ...


class RecordNotFoundError(KeyError):
    """Raised when updating a routing record that was never created."""


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_RECORDS = """
CREATE TABLE IF NOT EXISTS routing_records (
    id          TEXT PRIMARY KEY,
    signal_id   TEXT NOT NULL,
    partner_id  TEXT NOT NULL DEFAULT '',
    status      TEXT NOT NULL,
    started_at  TEXT NOT NULL,
    doc_json    TEXT NOT NULL
);
"""

_CREATE_IDX_SIGNAL = """
CREATE INDEX IF NOT EXISTS idx_records_signal ON routing_records(signal_id, partner_id);
"""

_CREATE_IDX_STATUS = """
CREATE INDEX IF NOT EXISTS idx_records_status ON routing_records(status, started_at);
"""

_CREATE_BLACKOUTS = """
CREATE TABLE IF NOT EXISTS signal_blackouts (
    id          TEXT PRIMARY KEY,
    child_id    TEXT NOT NULL,
    signal_id   TEXT NOT NULL,
    started_at  TEXT NOT NULL,
    expires_at  TEXT NOT NULL,
    doc_json    TEXT NOT NULL,
    UNIQUE (child_id, signal_id)
);
"""

_CREATE_PARTNERS = """
CREATE TABLE IF NOT EXISTS crisis_partners (
    partner_id  TEXT PRIMARY KEY,
    doc_json    TEXT NOT NULL
);
"""

_CREATE_CONFIG = """
CREATE TABLE IF NOT EXISTS routing_config (
    key       TEXT PRIMARY KEY,
    doc_json  TEXT NOT NULL
);
"""

_REGISTRY_KEY = "partnerRegistry"


def _ts(value: datetime) -> str:
    # Models normalize to UTC, so ISO strings sort chronologically.
    return value.isoformat()


class SqliteRoutingStore:
    """SQLite implementation of :class:`RoutingStore`.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_RECORDS)
            conn.execute(_CREATE_IDX_SIGNAL)
            conn.execute(_CREATE_IDX_STATUS)
            conn.execute(_CREATE_BLACKOUTS)
            conn.execute(_CREATE_PARTNERS)
            conn.execute(_CREATE_CONFIG)
            conn.commit()

    # ------------------------------------------------------------------
    # Routing records
    # ------------------------------------------------------------------

    def create_record(self, record: RoutingRecord) -> None:
        """Insert a new routing record. Fails if the id already exists."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO routing_records
                    (id, signal_id, partner_id, status, started_at, doc_json)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.signal_id,
                    record.partner_id,
                    record.status.value,
                    _ts(record.started_at),
                    json.dumps(record.to_wire()),
                ),
            )
            conn.commit()

    def update_record(
        self, record: RoutingRecord, expected_status: RoutingStatus | None = None
    ) -> None:
        """Replace an existing routing record.

        With *expected_status* the write only applies while the stored row
        still has that status; otherwise ``InvalidTransitionError`` is raised
        and the row is left untouched.
        """
        query = (
            "UPDATE routing_records SET partner_id = ?, status = ?, doc_json = ? WHERE id = ?"
        )
        params: list[object] = [
            record.partner_id,
            record.status.value,
            json.dumps(record.to_wire()),
            record.id,
        ]
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status.value)

        with self._connect() as conn:
            cursor = conn.execute(query, params)
            if cursor.rowcount == 0:
                row = conn.execute(
                    "SELECT status FROM routing_records WHERE id = ?", (record.id,)
                ).fetchone()
            conn.commit()
        if cursor.rowcount == 0:
            if row is None:
                raise RecordNotFoundError(record.id)
            raise InvalidTransitionError(
                f"Routing {record.id} is stored as {row[0]}, not "
                f"{expected_status.value}; refusing to write {record.status.value}"
            )

    def get_record(self, routing_id: str) -> RoutingRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc_json FROM routing_records WHERE id = ?",
                (routing_id,),
            ).fetchone()
        return RoutingRecord.model_validate_json(row[0]) if row else None

    def find_records(
        self,
        *,
        signal_id: str | None = None,
        partner_id: str | None = None,
        statuses: list[RoutingStatus] | None = None,
        started_before: datetime | None = None,
        limit: int = 100,
    ) -> list[RoutingRecord]:
        """Query records by equality on signal/partner/status and a start-time bound."""
        clauses: list[str] = []
        params: list[object] = []
        if signal_id is not None:
            clauses.append("signal_id = ?")
            params.append(signal_id)
        if partner_id is not None:
            clauses.append("partner_id = ?")
            params.append(partner_id)
        if statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(s.value for s in statuses)
        if started_before is not None:
            clauses.append("started_at < ?")
            params.append(_ts(started_before))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT doc_json FROM routing_records {where} "
                "ORDER BY started_at DESC LIMIT ?",
                params,
            ).fetchall()
        return [RoutingRecord.model_validate_json(row[0]) for row in rows]

    # ------------------------------------------------------------------
    # Blackouts
    # ------------------------------------------------------------------

    def save_blackout(self, blackout: SignalBlackout) -> SignalBlackout:
        """Insert a blackout unless one exists for the same child + signal.

        Returns the stored blackout, which is the pre-existing one when the
        insert was skipped. Existing blackouts are never modified.
        """
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO signal_blackouts
                    (id, child_id, signal_id, started_at, expires_at, doc_json)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    blackout.id,
                    blackout.child_id,
                    blackout.signal_id,
                    _ts(blackout.started_at),
                    _ts(blackout.expires_at),
                    json.dumps(blackout.to_wire()),
                ),
            )
            conn.commit()
        stored = self.get_blackout(blackout.child_id, blackout.signal_id)
        return stored if stored is not None else blackout

    def get_blackout(self, child_id: str, signal_id: str) -> SignalBlackout | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc_json FROM signal_blackouts WHERE child_id = ? AND signal_id = ?",
                (child_id, signal_id),
            ).fetchone()
        return SignalBlackout.model_validate_json(row[0]) if row else None

    def find_blackouts(
        self,
        *,
        child_id: str | None = None,
        expires_after: datetime | None = None,
    ) -> list[SignalBlackout]:
        clauses: list[str] = []
        params: list[object] = []
        if child_id is not None:
            clauses.append("child_id = ?")
            params.append(child_id)
        if expires_after is not None:
            clauses.append("expires_at > ?")
            params.append(_ts(expires_after))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT doc_json FROM signal_blackouts {where} ORDER BY expires_at DESC",
                params,
            ).fetchall()
        return [SignalBlackout.model_validate_json(row[0]) for row in rows]

    # ------------------------------------------------------------------
    # Partner configuration (read-only to the engine; written by operators)
    # ------------------------------------------------------------------

    def save_partner(self, partner: CrisisPartnerConfig) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO crisis_partners (partner_id, doc_json) VALUES (?, ?)",
                (partner.partner_id, json.dumps(partner.to_wire())),
            )
            conn.commit()

    def get_partner(self, partner_id: str) -> CrisisPartnerConfig | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc_json FROM crisis_partners WHERE partner_id = ?",
                (partner_id,),
            ).fetchone()
        return CrisisPartnerConfig.model_validate_json(row[0]) if row else None

    def list_partners(self) -> list[CrisisPartnerConfig]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT doc_json FROM crisis_partners ORDER BY partner_id"
            ).fetchall()
        return [CrisisPartnerConfig.model_validate_json(row[0]) for row in rows]

    def save_registry(self, registry: PartnerRegistry) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO routing_config (key, doc_json) VALUES (?, ?)",
                (_REGISTRY_KEY, json.dumps(registry.to_wire())),
            )
            conn.commit()

    def get_registry(self) -> PartnerRegistry:
        """Return the stored registry, or the default national-fallback registry."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT doc_json FROM routing_config WHERE key = ?",
                (_REGISTRY_KEY,),
            ).fetchone()
        if row is None:
            return PartnerRegistry()
        return PartnerRegistry.model_validate_json(row[0])
