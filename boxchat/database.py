"""SQLite persistence layer for the boxchat relay."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable, Optional

from .config import DB_PATH
from .models import Message

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        identifier TEXT UNIQUE NOT NULL,
        display_name TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        public_key TEXT NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sender_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        receiver_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        text TEXT,
        image TEXT,
        encrypted_text TEXT,
        encrypted_image TEXT,
        nonce TEXT,
        is_encrypted INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS INTEGER))
    )
    """,
)

_MESSAGE_COLUMNS = """
    m.id, m.text, m.image, m.encrypted_text, m.encrypted_image, m.nonce,
    m.is_encrypted, m.created_at,
    s.identifier AS sender_identifier, r.identifier AS receiver_identifier
"""


class Database:
    """Thin wrapper around SQLite operations used by the API."""

    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._connect()
        try:
            for stmt in SCHEMA_STATEMENTS:
                conn.execute(stmt)
            conn.commit()
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    def create_user(
        self,
        identifier: str,
        display_name: str,
        password_hash: str,
        public_key: str,
    ) -> int:
        conn = self._connect()
        try:
            cursor = conn.execute(
                """
                INSERT INTO users(identifier, display_name, password_hash, public_key)
                VALUES (?, ?, ?, ?)
                """,
                (identifier, display_name, password_hash, public_key),
            )
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def get_user_by_identifier(self, identifier: str) -> Optional[sqlite3.Row]:
        conn = self._connect()
        try:
            cursor = conn.execute("SELECT * FROM users WHERE identifier = ?", (identifier,))
            return cursor.fetchone()
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Message operations
    # ------------------------------------------------------------------

    def store_message(self, sender_id: int, receiver_id: int, message: Message) -> int:
        record = message.payload.to_dict()
        conn = self._connect()
        try:
            cursor = conn.execute(
                """
                INSERT INTO messages(
                    sender_id,
                    receiver_id,
                    text,
                    image,
                    encrypted_text,
                    encrypted_image,
                    nonce,
                    is_encrypted
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    sender_id,
                    receiver_id,
                    record.get("text"),
                    record.get("image"),
                    record.get("encrypted_text"),
                    record.get("encrypted_image"),
                    record.get("nonce"),
                    int(record["is_encrypted"]),
                ),
            )
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def get_message(self, message_id: int) -> Optional[sqlite3.Row]:
        conn = self._connect()
        try:
            cursor = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages m
                JOIN users s ON m.sender_id = s.id
                JOIN users r ON m.receiver_id = r.id
                WHERE m.id = ?
                """,
                (message_id,),
            )
            return cursor.fetchone()
        finally:
            conn.close()

    def fetch_conversation(self, user_id: int, peer_id: int) -> Iterable[sqlite3.Row]:
        """Return every message exchanged between two users, oldest first."""

        conn = self._connect()
        try:
            cursor = conn.execute(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages m
                JOIN users s ON m.sender_id = s.id
                JOIN users r ON m.receiver_id = r.id
                WHERE (m.sender_id = ? AND m.receiver_id = ?)
                   OR (m.sender_id = ? AND m.receiver_id = ?)
                ORDER BY m.created_at ASC, m.id ASC
                """,
                (user_id, peer_id, peer_id, user_id),
            )
            return cursor.fetchall()
        finally:
            conn.close()


def row_to_message(row: sqlite3.Row) -> Message:
    return Message.from_dict(
        {
            "id": row["id"],
            "sender_id": row["sender_identifier"],
            "receiver_id": row["receiver_identifier"],
            "timestamp": row["created_at"],
            "text": row["text"],
            "image": row["image"],
            "encrypted_text": row["encrypted_text"],
            "encrypted_image": row["encrypted_image"],
            "nonce": row["nonce"],
            "is_encrypted": bool(row["is_encrypted"]),
        }
    )
