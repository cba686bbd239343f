"""Hash-chained admin audit trail for routing outcomes, stored in SQLite.

The audit database is separate from the routing store and never holds
payload fields or child identifiers. Entries form one global chain: each
row stores the seal of the row before it, so editing, deleting or
inserting a row out of band is caught by :meth:`AuditLedger.verify_chain`.

Writers never update or delete. ``append()`` reads the chain head and
inserts the new row inside one ``BEGIN IMMEDIATE`` transaction, so two
processes appending to the same file cannot fork the chain.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from crisisroute.core.hasher import compute_entry_hash
from crisisroute.models.audit import AuditEntry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_COLUMNS = (
    "entry_id",
    "action",
    "resource_type",
    "resource_id",
    "metadata_json",
    "timestamp_utc",
    "previous_entry_hash",
    "entry_hash",
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS audit_log (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id             TEXT NOT NULL UNIQUE,
    action               TEXT NOT NULL,
    resource_type        TEXT NOT NULL,
    resource_id          TEXT NOT NULL,
    metadata_json        TEXT NOT NULL DEFAULT '{}',
    timestamp_utc        TEXT NOT NULL,
    previous_entry_hash  TEXT NOT NULL DEFAULT '',
    entry_hash           TEXT NOT NULL UNIQUE
);
CREATE INDEX IF NOT EXISTS idx_audit_resource ON audit_log(resource_id, id);
"""

_INSERT = (
    f"INSERT INTO audit_log ({', '.join(_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _COLUMNS)})"
)
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM audit_log"


class AuditLedgerIntegrityError(RuntimeError):
    """The stored audit chain does not verify."""


class AuditLedger:
    """Admin audit ledger with a single tamper-evident hash chain.

    Parameters
    ----------
    db_path:
        SQLite file for the audit trail. Parent directories are created.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        # Autocommit mode; append() manages its own transaction.
        conn = sqlite3.connect(str(self._db_path), isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        return conn

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def append(self, entry: AuditEntry) -> AuditEntry:
        """Seal *entry* onto the end of the chain and persist it.

        Returns
        -------
        AuditEntry
            The stored entry, with ``previous_entry_hash`` and ``entry_hash``
            filled in.
        """
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            head = conn.execute(
                "SELECT entry_hash FROM audit_log ORDER BY id DESC LIMIT 1"
            ).fetchone()
            sealed = _seal(entry, head["entry_hash"] if head else "")
            conn.execute(_INSERT, _to_row(sealed))
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
        logger.debug("Audit entry %s sealed (%s)", sealed.entry_id, sealed.action)
        return sealed

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_entries(self, resource_id: str | None = None) -> list[AuditEntry]:
        """Entries in append order, optionally only those for *resource_id*."""
        query, params = f"{_SELECT} ORDER BY id", ()
        if resource_id is not None:
            query, params = f"{_SELECT} WHERE resource_id = ? ORDER BY id", (resource_id,)
        with self._connect() as conn:
            return [_from_row(row) for row in conn.execute(query, params)]

    def count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM audit_log").fetchone()[0]

    def verify_chain(self) -> bool:
        """Recompute every seal and check every back-link.

        Returns ``True`` for an intact (or empty) chain.

        Raises
        ------
        AuditLedgerIntegrityError
            At the first entry whose link or seal does not match.
        """
        expected_previous = ""
        for position, entry in enumerate(self.get_entries()):
            if entry.previous_entry_hash != expected_previous:
                raise AuditLedgerIntegrityError(
                    f"Chain broken at entry #{position} ({entry.entry_id}): links to "
                    f"{entry.previous_entry_hash[:12]!r}, "
                    f"expected {expected_previous[:12]!r}"
                )
            if entry.entry_hash != compute_entry_hash(entry.model_dump(mode="json")):
                raise AuditLedgerIntegrityError(
                    f"Tampered entry #{position} ({entry.entry_id}, {entry.action}): "
                    "content does not match its seal"
                )
            expected_previous = entry.entry_hash
        return True


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _seal(entry: AuditEntry, previous_hash: str) -> AuditEntry:
    linked = entry.model_copy(update={"previous_entry_hash": previous_hash, "entry_hash": ""})
    return linked.model_copy(
        update={"entry_hash": compute_entry_hash(linked.model_dump(mode="json"))}
    )


def _to_row(entry: AuditEntry) -> tuple[str, ...]:
    dumped = entry.model_dump(mode="json")
    return (
        entry.entry_id,
        entry.action,
        entry.resource_type,
        entry.resource_id,
        json.dumps(dumped["metadata"], sort_keys=True),
        entry.timestamp_utc.isoformat(),
        entry.previous_entry_hash,
        entry.entry_hash,
    )


def _from_row(row: sqlite3.Row) -> AuditEntry:
    return AuditEntry(
        entry_id=row["entry_id"],
        action=row["action"],
        resource_type=row["resource_type"],
        resource_id=row["resource_id"],
        metadata=json.loads(row["metadata_json"]),
        timestamp_utc=row["timestamp_utc"],
        previous_entry_hash=row["previous_entry_hash"],
        entry_hash=row["entry_hash"],
    )
