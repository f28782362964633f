from __future__ import annotations

import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import EventType, IdentityRecord, VerificationEvent

log = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS identities (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    external_id TEXT UNIQUE NOT NULL,
    display_name TEXT,
    wallet_address TEXT,
    challenge_amount REAL,
    challenge_expires_at TEXT,
    verified INTEGER NOT NULL DEFAULT 0,
    verified_at TEXT,
    last_known_balance REAL,
    last_checked_at TEXT,
    whitelisted INTEGER NOT NULL DEFAULT 0,
    requested_group_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS verification_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    identity_id INTEGER NOT NULL REFERENCES identities(id),
    event_type TEXT NOT NULL,
    payload TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_identities_verified ON identities(verified);
CREATE INDEX IF NOT EXISTS idx_events_identity ON verification_events(identity_id);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_record(row: sqlite3.Row) -> IdentityRecord:
    return IdentityRecord(
        id=row["id"],
        external_id=row["external_id"],
        display_name=row["display_name"],
        wallet_address=row["wallet_address"],
        challenge_amount=row["challenge_amount"],
        challenge_expires_at=_parse_ts(row["challenge_expires_at"]),
        verified=bool(row["verified"]),
        verified_at=_parse_ts(row["verified_at"]),
        last_known_balance=row["last_known_balance"],
        last_checked_at=_parse_ts(row["last_checked_at"]),
        whitelisted=bool(row["whitelisted"]),
        requested_group_id=row["requested_group_id"],
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


class RecordStore:
    """SQLite-backed identity records plus the append-only event log.

    Call :meth:`initialize` once at process start before anything else.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        if path != ":memory:":
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, exist_ok=True)
        self.conn = sqlite3.connect(path)
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        self.conn.close()

    def initialize(self) -> None:
        if self.path != ":memory:":
            self.conn.execute("PRAGMA journal_mode = WAL")
        with self.conn:
            self.conn.executescript(SCHEMA)

    # -- identities ---------------------------------------------------------

    def get(self, external_id: str) -> Optional[IdentityRecord]:
        row = self.conn.execute(
            "SELECT * FROM identities WHERE external_id = ?", (str(external_id),)
        ).fetchone()
        return _row_to_record(row) if row else None

    def _require(self, external_id: str) -> IdentityRecord:
        record = self.get(external_id)
        if record is None:
            raise KeyError(f"Unknown identity {external_id}")
        return record

    def get_or_create(
        self, external_id: str, display_name: str | None = None
    ) -> IdentityRecord:
        now = _ts(utcnow())
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO identities (external_id, display_name, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(external_id) DO UPDATE SET
                    display_name = COALESCE(excluded.display_name, identities.display_name),
                    updated_at = excluded.updated_at
                """,
                (str(external_id), display_name or None, now, now),
            )
        return self._require(external_id)

    def find_by_display_name(self, display_name: str) -> Optional[IdentityRecord]:
        row = self.conn.execute(
            "SELECT * FROM identities WHERE LOWER(display_name) = LOWER(?)",
            (display_name,),
        ).fetchone()
        return _row_to_record(row) if row else None

    def _update(self, external_id: str, **fields: Any) -> None:
        fields["updated_at"] = _ts(utcnow())
        assignments = ", ".join(f"{name} = ?" for name in fields)
        self.conn.execute(
            f"UPDATE identities SET {assignments} WHERE external_id = ?",
            (*fields.values(), str(external_id)),
        )

    def save_challenge(
        self,
        external_id: str,
        wallet_address: str,
        amount: float,
        expires_at: datetime,
        requested_group_id: str | None = None,
    ) -> IdentityRecord:
        record = self.get_or_create(external_id)
        with self.conn:
            self._update(
                external_id,
                wallet_address=wallet_address,
                challenge_amount=amount,
                challenge_expires_at=_ts(expires_at),
                verified=0,
                requested_group_id=requested_group_id or record.requested_group_id,
            )
            self._log_event(
                record.id,
                EventType.REQUESTED,
                {
                    "wallet_address": wallet_address,
                    "amount": amount,
                    "expires_at": _ts(expires_at),
                },
            )
        return self._require(external_id)

    def clear_challenge(self, external_id: str) -> None:
        with self.conn:
            self._update(
                external_id, challenge_amount=None, challenge_expires_at=None
            )

    def mark_verified(self, external_id: str, balance: float) -> IdentityRecord:
        record = self._require(external_id)
        if not record.wallet_address:
            raise ValueError(f"Identity {external_id} has no wallet to verify")
        now = _ts(utcnow())
        with self.conn:
            self._update(
                external_id,
                verified=1,
                verified_at=now,
                last_known_balance=balance,
                last_checked_at=now,
                challenge_amount=None,
                challenge_expires_at=None,
            )
            self._log_event(record.id, EventType.VERIFIED, {"balance": balance})
        return self._require(external_id)

    def update_balance(self, external_id: str, balance: float) -> None:
        with self.conn:
            self._update(
                external_id,
                last_known_balance=balance,
                last_checked_at=_ts(utcnow()),
            )

    def mark_revoked(self, external_id: str, payload: Dict[str, Any]) -> None:
        record = self._require(external_id)
        with self.conn:
            self._update(
                external_id,
                verified=0,
                challenge_amount=None,
                challenge_expires_at=None,
            )
            self._log_event(record.id, EventType.REVOKED, payload)

    def set_whitelisted(self, external_id: str, whitelisted: bool) -> IdentityRecord:
        record = self.get_or_create(external_id)
        with self.conn:
            self._update(external_id, whitelisted=int(whitelisted))
            self._log_event(
                record.id, EventType.WHITELIST_CHANGED, {"whitelisted": whitelisted}
            )
        return self._require(external_id)

    def set_requested_group(self, external_id: str, group_id: str) -> None:
        record = self.get_or_create(external_id)
        with self.conn:
            self._update(external_id, requested_group_id=str(group_id))
            self._log_event(
                record.id, EventType.GROUP_REQUESTED, {"group_id": str(group_id)}
            )

    def clear_requested_group(self, external_id: str) -> None:
        record = self.get(external_id)
        if record is None:
            return
        with self.conn:
            self._update(external_id, requested_group_id=None)
            self._log_event(record.id, EventType.GROUP_CLEARED, {})

    def list_verified(self) -> List[IdentityRecord]:
        rows = self.conn.execute(
            "SELECT * FROM identities WHERE verified = 1 ORDER BY id"
        ).fetchall()
        return [_row_to_record(r) for r in rows]

    def list_pending(self) -> List[IdentityRecord]:
        rows = self.conn.execute(
            "SELECT * FROM identities "
            "WHERE verified = 0 AND challenge_amount IS NOT NULL ORDER BY id"
        ).fetchall()
        return [_row_to_record(r) for r in rows]

    # -- event log ----------------------------------------------------------

    def _log_event(
        self, identity_id: int, event_type: EventType, payload: Dict[str, Any]
    ) -> None:
        self.conn.execute(
            "INSERT INTO verification_events (identity_id, event_type, payload, created_at) "
            "VALUES (?, ?, ?, ?)",
            (identity_id, event_type.value, json.dumps(payload), _ts(utcnow())),
        )

    def log_event(
        self, external_id: str, event_type: EventType, payload: Dict[str, Any]
    ) -> None:
        record = self._require(external_id)
        with self.conn:
            self._log_event(record.id, event_type, payload)

    def list_events(self, external_id: str) -> List[VerificationEvent]:
        """Audit trail of one identity, oldest first. Operators only."""
        record = self._require(external_id)
        rows = self.conn.execute(
            "SELECT * FROM verification_events WHERE identity_id = ? ORDER BY id",
            (record.id,),
        ).fetchall()
        return [
            VerificationEvent(
                identity_ref=r["identity_id"],
                event_type=EventType(r["event_type"]),
                payload=json.loads(r["payload"]),
                created_at=_parse_ts(r["created_at"]),
            )
            for r in rows
        ]
