"""SQLite room store: rooms, per-agent conversation pointers and messages."""

import logging
import re
import sqlite3
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chat_rooms (
    id TEXT PRIMARY KEY,
    name TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS agent_conversations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    room_id TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    gemini_url TEXT,
    gemini_conv_id TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (room_id) REFERENCES chat_rooms(id) ON DELETE CASCADE,
    UNIQUE(room_id, agent_id)
);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    room_id TEXT NOT NULL,
    sender TEXT NOT NULL,
    content TEXT NOT NULL,
    target TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (room_id) REFERENCES chat_rooms(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_messages_room_id ON messages(room_id);
CREATE INDEX IF NOT EXISTS idx_agent_conversations_room_id ON agent_conversations(room_id);
"""

_CONV_ID_RE = re.compile(r"/app/([a-zA-Z0-9]+)")


def conversation_id_from_url(url: str) -> str | None:
    """Extract the conversation id from a .../app/<id> URL."""
    match = _CONV_ID_RE.search(url)
    return match.group(1) if match else None


class RoomStore:
    """Thread-safe store over a single SQLite connection (WAL, foreign keys on)."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        if str(db_path) != ":memory:":
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()
        logger.info("Database initialized: %s", db_path)

    # ---- rooms ----

    def create_room(self, name: str | None = None) -> dict[str, Any]:
        room_id = str(uuid.uuid4())
        room_name = name or f"Room {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
        with self._lock:
            self._conn.execute("INSERT INTO chat_rooms (id, name) VALUES (?, ?)", (room_id, room_name))
            self._conn.commit()
            row = self._conn.execute("SELECT * FROM chat_rooms WHERE id = ?", (room_id,)).fetchone()
        logger.info("Created room: %s (%s)", room_id, room_name)
        return dict(row)

    def get_rooms(self) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT r.*,
                       (SELECT COUNT(*) FROM messages WHERE room_id = r.id) AS message_count
                FROM chat_rooms r
                ORDER BY r.updated_at DESC, r.created_at DESC
                """
            ).fetchall()
        return [dict(r) for r in rows]

    def get_room(self, room_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM chat_rooms WHERE id = ?", (room_id,)).fetchone()
        return dict(row) if row else None

    def delete_room(self, room_id: str) -> bool:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM chat_rooms WHERE id = ?", (room_id,))
            self._conn.commit()
        if cursor.rowcount:
            logger.info("Deleted room: %s", room_id)
        return cursor.rowcount > 0

    # ---- agent conversations ----

    def save_agent_conversation(self, room_id: str, agent_id: str, url: str) -> None:
        conv_id = conversation_id_from_url(url)
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO agent_conversations (room_id, agent_id, gemini_url, gemini_conv_id)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(room_id, agent_id) DO UPDATE SET
                    gemini_url = excluded.gemini_url,
                    gemini_conv_id = excluded.gemini_conv_id,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (room_id, agent_id, url, conv_id),
            )
            self._conn.commit()
        logger.info("Saved agent %s conversation: %s", agent_id, conv_id)

    def get_agent_conversations(self, room_id: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM agent_conversations WHERE room_id = ? ORDER BY agent_id", (room_id,)
            ).fetchall()
        return [dict(r) for r in rows]

    def get_agent_conversation(self, room_id: str, agent_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM agent_conversations WHERE room_id = ? AND agent_id = ?",
                (room_id, agent_id),
            ).fetchone()
        return dict(row) if row else None

    # ---- messages ----

    def save_message(self, room_id: str, sender: str, content: str, target: str | None = None) -> int:
        with self._lock:
            cursor = self._conn.execute(
                "INSERT INTO messages (room_id, sender, content, target) VALUES (?, ?, ?, ?)",
                (room_id, sender, content, target),
            )
            self._conn.execute(
                "UPDATE chat_rooms SET updated_at = CURRENT_TIMESTAMP WHERE id = ?", (room_id,)
            )
            self._conn.commit()
        return int(cursor.lastrowid)

    def get_messages(self, room_id: str, limit: int = 100) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM messages WHERE room_id = ? ORDER BY created_at ASC, id ASC LIMIT ?",
                (room_id, limit),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_room_with_details(self, room_id: str) -> dict[str, Any] | None:
        room = self.get_room(room_id)
        if room is None:
            return None
        return {
            **room,
            "agents": self.get_agent_conversations(room_id),
            "messages": self.get_messages(room_id),
        }

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.info("Database connection closed")
