"""Conversation history: one ``users`` row per sender and one ``message_log`` row per message."""
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from services.models import InboundMessage
from wa_bot.db.connect import get_conn

logger = logging.getLogger(__name__)

DIRECTION_INCOMING = "incoming"
DIRECTION_OUTGOING = "outgoing"
UNKNOWN_NAME = "Unknown"


class MessageLog:
    def __init__(self, db_path: Optional[Path] = None, *, timeout: Optional[float] = None):
        self.db_path = Path(db_path) if db_path else None
        self.timeout = timeout

    def _conn(self) -> sqlite3.Connection:
        return get_conn(self.db_path, timeout=self.timeout)

    def init_db(self) -> None:
        con = self._conn()
        try:
            cur = con.cursor()
            cur.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY,
                phone TEXT NOT NULL UNIQUE,
                name TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            );
            """)

            cur.execute("""
            CREATE TABLE IF NOT EXISTS message_log (
                id INTEGER PRIMARY KEY,
                user_id INTEGER NOT NULL,
                direction TEXT NOT NULL CHECK(direction IN ('incoming','outgoing')),
                content TEXT NOT NULL DEFAULT '',
                message_id TEXT,
                stage TEXT,
                outcome TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
            );
            """)
            cur.execute("CREATE INDEX IF NOT EXISTS idx_message_log_user ON message_log(user_id, id);")
            con.commit()
        finally:
            con.close()

    def _user_id(self, con: sqlite3.Connection, phone: str, name: str) -> int:
        con.execute(
            "INSERT OR IGNORE INTO users (phone, name) VALUES (?, ?)",
            (phone, name or UNKNOWN_NAME),
        )
        if name:
            # A later message may carry the display name the first one lacked.
            con.execute(
                "UPDATE users SET name = ?, updated_at = CURRENT_TIMESTAMP WHERE phone = ? AND name = ?",
                (name, phone, UNKNOWN_NAME),
            )
        row = con.execute("SELECT id FROM users WHERE phone = ?", (phone,)).fetchone()
        return int(row["id"])

    def record(
        self,
        message: InboundMessage,
        *,
        stage: str,
        outcome: str,
        reply_text: Optional[str] = None,
    ) -> int:
        """Store the inbound message and, when one was sent, the reply; returns the user id."""
        con = self._conn()
        try:
            user_id = self._user_id(con, message.sender_key, message.sender_name)
            rows = [(user_id, DIRECTION_INCOMING, message.body or "", message.message_id or None, stage, outcome)]
            if reply_text:
                rows.append((user_id, DIRECTION_OUTGOING, reply_text, None, stage, outcome))
            con.executemany(
                "INSERT INTO message_log (user_id, direction, content, message_id, stage, outcome) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                rows,
            )
            con.commit()
            return user_id
        finally:
            con.close()

    def history(self, phone: str, limit: int = 50) -> List[Dict[str, Any]]:
        con = self._conn()
        try:
            rows = con.execute(
                """
                SELECT m.direction, m.content, m.message_id, m.stage, m.outcome, m.created_at
                FROM message_log m
                JOIN users u ON u.id = m.user_id
                WHERE u.phone = ?
                ORDER BY m.id DESC
                LIMIT ?
                """,
                (phone, int(limit)),
            ).fetchall()
        finally:
            con.close()
        return [dict(row) for row in reversed(rows)]

    def user_name(self, phone: str) -> Optional[str]:
        con = self._conn()
        try:
            row = con.execute("SELECT name FROM users WHERE phone = ?", (phone,)).fetchone()
        finally:
            con.close()
        return row["name"] if row else None
