"""
Alarm history management.

Keeps a short list of recently configured alarms so they can be re-used.
The list is ordered most-recent-first, capped, and de-duplicated by
(duration_ms, music_url, kind). Alarms themselves are never persisted.
"""

import logging
import time
from typing import List, Optional

from .database import Database
from .models import HistoryEntry

MAX_HISTORY_ENTRIES = 10


class AlarmHistory:
    """Stores recently used alarm settings."""

    def __init__(self, database: Database, max_entries: int = MAX_HISTORY_ENTRIES):
        """
        Initialize alarm history.

        Args:
            database: Database instance for persistence
            max_entries: Number of entries kept
        """
        self.database = database
        self.max_entries = max_entries
        self.logger = logging.getLogger(__name__)

    def record(
        self,
        duration_ms: int,
        music_url: str,
        kind: str,
        label: Optional[str] = None,
        at: Optional[int] = None,
    ) -> List[HistoryEntry]:
        """
        Record an alarm, moving an identical earlier entry to the top.

        Args:
            duration_ms: Configured duration
            music_url: Music locator ('' for none)
            kind: MusicKind value
            label: Display label (video title, asset name)
            at: Epoch ms of creation (defaults to now)

        Returns:
            The updated history list
        """
        if at is None:
            at = int(time.time() * 1000)
        music_url = music_url or ""

        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            key = (duration_ms, music_url, kind)
            # Re-insert duplicates so they get a fresh id and sort first
            cursor.execute(
                """
                SELECT label FROM alarm_history
                WHERE duration_ms = ? AND music_url = ? AND kind = ?
                """,
                key,
            )
            existing = cursor.fetchone()
            if existing is not None:
                if label is None:
                    label = existing["label"]
                cursor.execute(
                    """
                    DELETE FROM alarm_history
                    WHERE duration_ms = ? AND music_url = ? AND kind = ?
                    """,
                    key,
                )
            cursor.execute(
                """
                INSERT INTO alarm_history (duration_ms, music_url, kind, label, created_at_ms)
                VALUES (?, ?, ?, ?, ?)
                """,
                (*key, label, at),
            )
            # Trim everything beyond the newest max_entries rows
            cursor.execute(
                """
                DELETE FROM alarm_history WHERE id NOT IN (
                    SELECT id FROM alarm_history
                    ORDER BY created_at_ms DESC, id DESC
                    LIMIT ?
                )
                """,
                (self.max_entries,),
            )
            conn.commit()
        finally:
            conn.close()

        self.logger.debug("Recorded alarm history: %s ms, %s (%s)", duration_ms, music_url, kind)
        return self.get_recent()

    def get_recent(self) -> List[HistoryEntry]:
        """Get history entries, most recent first."""
        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT duration_ms, music_url, kind, label, created_at_ms
                FROM alarm_history
                ORDER BY created_at_ms DESC, id DESC
                LIMIT ?
                """,
                (self.max_entries,),
            )
            return [
                HistoryEntry(
                    duration_ms=row["duration_ms"],
                    music_url=row["music_url"],
                    kind=row["kind"],
                    label=row["label"],
                    at=row["created_at_ms"],
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def clear(self) -> None:
        """Remove all history entries."""
        conn = self.database.get_connection()
        try:
            conn.execute("DELETE FROM alarm_history")
            conn.commit()
        finally:
            conn.close()
        self.logger.info("Alarm history cleared")
