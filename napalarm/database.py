"""
Database module for napalarm.

Handles SQLite database initialization, schema creation, and connection
management, plus the repository for configuration entries.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional


@dataclass
class ConfigEntry:
    """Configuration entry."""

    key: str
    value: str
    updated_at: Optional[datetime] = None


class Database:
    """Manages SQLite database connection and schema."""

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses ~/.napalarm/napalarm.db
        """
        self.logger = logging.getLogger(__name__)

        if db_path is None:
            app_dir = Path.home() / ".napalarm"
            app_dir.mkdir(exist_ok=True)
            db_path = str(app_dir / "napalarm.db")

        self.db_path = db_path
        self._ensure_schema()
        self.logger.info("Database initialized at %s", self.db_path)

    def _ensure_schema(self):
        """Ensure database schema exists."""
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        cursor = conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        # Alarm history (most recent first by created_at_ms)
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS alarm_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                duration_ms INTEGER NOT NULL,
                music_url TEXT NOT NULL DEFAULT '',
                kind TEXT NOT NULL,
                label TEXT,
                created_at_ms INTEGER NOT NULL,
                UNIQUE (duration_ms, music_url, kind)
            )
            """
        )

        cursor.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_alarm_history_created_at
            ON alarm_history(created_at_ms DESC)
            """
        )

        conn.commit()
        conn.close()
        self.logger.debug("Database schema created/verified")

    def get_connection(self):
        """
        Get a new database connection.

        Each thread should get its own connection. Caller is responsible
        for closing the connection when done.
        """
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def close(self):
        """Close database connection (no-op since connections are per call)."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ConfigRepository:
    """Reads and writes rows of the config table."""

    def __init__(self, database: Database):
        self.database = database
        self.logger = logging.getLogger(__name__)

    def initialize_defaults(self, defaults: Dict[str, Optional[str]]):
        """Insert default values for keys that are not stored yet."""
        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            for key, value in defaults.items():
                if value is None:
                    continue
                cursor.execute(
                    "INSERT OR IGNORE INTO config (key, value) VALUES (?, ?)", (key, str(value))
                )
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> Optional[ConfigEntry]:
        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT key, value, updated_at FROM config WHERE key = ?", (key,))
            row = cursor.fetchone()
            if not row:
                return None
            return ConfigEntry(key=row["key"], value=row["value"], updated_at=row["updated_at"])
        finally:
            conn.close()

    def set(self, key: str, value: str) -> bool:
        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO config (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )
            conn.commit()
            return True
        except sqlite3.Error as e:
            self.logger.error("Error setting config %s: %s", key, e)
            return False
        finally:
            conn.close()

    def get_all(self) -> List[ConfigEntry]:
        conn = self.database.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT key, value, updated_at FROM config ORDER BY key")
            return [
                ConfigEntry(key=row["key"], value=row["value"], updated_at=row["updated_at"])
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()
