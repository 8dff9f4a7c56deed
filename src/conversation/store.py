"""Conversation store: get-or-create, save and reset over a storage adapter.

Adapters persist snapshot dicts, so any backend that can hold JSON works
and the turn logic never assumes a process-wide singleton.
"""

import copy
import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import structlog

from .models import Conversation, new_conversation
from .snapshot import export_snapshot, import_snapshot

logger = structlog.get_logger()


class StorageAdapter(Protocol):
    def load(self, conversation_id: str) -> dict | None: ...

    def save(self, conversation_id: str, data: dict) -> None: ...

    def delete(self, conversation_id: str) -> None: ...


class InMemoryStorage:
    """Process-lifetime storage; copies on the way in and out."""

    def __init__(self):
        self._data: dict[str, dict] = {}

    def load(self, conversation_id: str) -> dict | None:
        data = self._data.get(conversation_id)
        return copy.deepcopy(data) if data is not None else None

    def save(self, conversation_id: str, data: dict) -> None:
        self._data[conversation_id] = copy.deepcopy(data)

    def delete(self, conversation_id: str) -> None:
        self._data.pop(conversation_id, None)

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._data


def wal_connect(db_path: str | Path) -> sqlite3.Connection:
    """Open SQLite connection with WAL journal mode."""
    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


class SQLiteStorage:
    """One row per conversation holding its snapshot JSON."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = wal_connect(self.db_path)
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS conversations (
                    id TEXT PRIMARY KEY,
                    snapshot TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def load(self, conversation_id: str) -> dict | None:
        conn = wal_connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT snapshot FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            logger.warning("store.corrupt_snapshot", conversation_id=conversation_id, error=str(e))
            return None

    def save(self, conversation_id: str, data: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        conn = wal_connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO conversations (id, snapshot, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET snapshot = excluded.snapshot, updated_at = excluded.updated_at
                """,
                (conversation_id, json.dumps(data, default=str), now),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, conversation_id: str) -> None:
        conn = wal_connect(self.db_path)
        try:
            conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            conn.commit()
        finally:
            conn.close()


class ConversationStore:
    def __init__(self, storage: StorageAdapter | None = None):
        self.storage = storage if storage is not None else InMemoryStorage()

    def get_or_create(self, conversation_id: str) -> Conversation:
        data = self.storage.load(conversation_id)
        if data is None:
            logger.info("store.created", conversation_id=conversation_id)
            return new_conversation(conversation_id)
        conversation = Conversation(id=conversation_id)
        import_snapshot(conversation, data)
        return conversation

    def save(self, conversation: Conversation) -> None:
        self.storage.save(conversation.id, export_snapshot(conversation))

    def reset(self, conversation_id: str) -> Conversation:
        """Replace the aggregate with a fresh one. Always succeeds."""
        self.storage.delete(conversation_id)
        conversation = new_conversation(conversation_id)
        self.save(conversation)
        logger.info("store.reset", conversation_id=conversation_id)
        return conversation
