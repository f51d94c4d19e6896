"""Persistent key-value storage for serialized library snapshots."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Optional

from .config import DEFAULT_SNAPSHOT_KEY
from .database import DatabaseService

logger = logging.getLogger(__name__)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class SnapshotStorage:
    """Read and write snapshot text under a key in the SQLite store.

    Errors from SQLite (``sqlite3.Error``) and the filesystem (``OSError``)
    propagate to the caller.
    """

    def __init__(
        self,
        db: Optional[DatabaseService] = None,
        key: str = DEFAULT_SNAPSHOT_KEY,
    ):
        self.db = db or DatabaseService()
        self.key = key
        self._initialized = False

    def _ensure_schema(self) -> None:
        if not self._initialized:
            self.db.initialize()
            self._initialized = True

    def read(self) -> Optional[str]:
        """Return the stored snapshot text, or None when nothing was saved yet."""
        return self._select(self.key)

    def _select(self, key: str) -> Optional[str]:
        self._ensure_schema()
        conn = self.db.connect()
        try:
            row = conn.execute(
                "SELECT payload FROM library_snapshots WHERE key = ?", (key,)
            ).fetchone()
            return row["payload"] if row else None
        finally:
            conn.close()

    def write(self, payload: str) -> None:
        """Replace the stored snapshot text."""
        self._upsert(self.key, payload)
        logger.debug("Stored snapshot under key %s (%d bytes)", self.key, len(payload))

    @property
    def backup_key(self) -> str:
        return f"{self.key}.malformed"

    def backup(self, payload: str) -> str:
        """Keep an unreadable snapshot under ``backup_key``; returns that key."""
        self._upsert(self.backup_key, payload)
        return self.backup_key

    def read_backup(self) -> Optional[str]:
        return self._select(self.backup_key)

    def _upsert(self, key: str, payload: str) -> None:
        self._ensure_schema()
        conn = self.db.connect()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO library_snapshots (key, payload, updated)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        payload = excluded.payload,
                        updated = excluded.updated
                    """,
                    (key, payload, _utcnow_iso()),
                )
        finally:
            conn.close()


__all__ = ["SnapshotStorage"]
