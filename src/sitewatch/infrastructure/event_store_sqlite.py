import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from src.sitewatch.domain.models import RecentEvent


def _to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteEventStore:
    """Events created by one agent, stored as JSON payloads in SQLite."""

    def __init__(self, db_path: str | Path, agent: str = "sitewatch") -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.agent = agent
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.init_schema()

    def init_schema(self) -> None:
        cursor = self.conn.cursor()
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                agent TEXT NOT NULL,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT
            )
            """
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_events_agent_id ON events (agent, id)")
        self.conn.commit()

    def recent_events(self, limit: int) -> list[RecentEvent]:
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT id, payload, created_at, expires_at FROM events
            WHERE agent = ? AND (expires_at IS NULL OR expires_at > ?)
            ORDER BY id DESC
            LIMIT ?
            """,
            (self.agent, _to_db(datetime.now(timezone.utc)), int(limit)),
        )
        return [
            RecentEvent(
                id=int(row[0]),
                payload=json.loads(row[1]),
                created_at=_from_db(row[2]),
                expires_at=_from_db(row[3]),
            )
            for row in cursor.fetchall()
        ]

    def create_event(self, payload: Mapping[str, Any], expires_at: datetime | None = None) -> RecentEvent:
        stored = json.dumps(dict(payload), ensure_ascii=False, default=str)
        created_at = datetime.now(timezone.utc)
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                "INSERT INTO events (agent, payload, created_at, expires_at) VALUES (?, ?, ?, ?)",
                (self.agent, stored, _to_db(created_at), _to_db(expires_at)),
            )
            self.conn.commit()
        except sqlite3.Error:
            self.conn.rollback()
            raise
        return RecentEvent(
            id=int(cursor.lastrowid),
            payload=json.loads(stored),
            expires_at=expires_at,
            created_at=created_at,
        )

    def refresh_expiration(self, event: RecentEvent, expires_at: datetime | None) -> None:
        cursor = self.conn.cursor()
        try:
            cursor.execute(
                "UPDATE events SET expires_at = ? WHERE id = ? AND agent = ?",
                (_to_db(expires_at), event.id, self.agent),
            )
            self.conn.commit()
        except sqlite3.Error:
            self.conn.rollback()
            raise

    def count_events(self) -> int:
        cursor = self.conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM events WHERE agent = ?", (self.agent,))
        return int(cursor.fetchone()[0])

    def close(self) -> None:
        self.conn.close()
