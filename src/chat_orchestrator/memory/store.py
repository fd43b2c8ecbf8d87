"""Per-user key/value memory with in-memory and SQLite backends."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from chat_orchestrator.types import ConversationMessage


@dataclass(slots=True)
class MemoryEntry:
    key: str
    value: Any
    updated_at: str


class MemoryStore(Protocol):
    """Persistent user memory contract used by the memory tools."""

    def get(self, user_id: str, key: str) -> Any | None:
        """Return the stored value or None."""

    def set(self, user_id: str, key: str, value: Any) -> None:
        """Insert or replace a value."""

    def delete(self, user_id: str, key: str) -> None:
        """Remove a key if present."""

    def all(self, user_id: str) -> list[MemoryEntry]:
        """All entries for a user, most recently updated first."""


class InMemoryMemoryStore:
    """Dictionary-backed store used for tests and local runs."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, MemoryEntry]] = {}

    def get(self, user_id: str, key: str) -> Any | None:
        entry = self._data.get(user_id, {}).get(key)
        return entry.value if entry else None

    def set(self, user_id: str, key: str, value: Any) -> None:
        self._data.setdefault(user_id, {})[key] = MemoryEntry(key=key, value=value, updated_at=_now())

    def delete(self, user_id: str, key: str) -> None:
        self._data.get(user_id, {}).pop(key, None)

    def all(self, user_id: str) -> list[MemoryEntry]:
        entries = list(self._data.get(user_id, {}).values())
        return sorted(entries, key=lambda entry: entry.updated_at, reverse=True)


class SqliteMemoryStore:
    """SQLite key/value table keyed on (user_id, key); values are stored as JSON."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        with sqlite3.connect(self.path) as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS user_memory ("
                "user_id TEXT NOT NULL, key TEXT NOT NULL, value TEXT NOT NULL, "
                "updated_at TEXT NOT NULL, PRIMARY KEY (user_id, key))"
            )
            conn.commit()

    def get(self, user_id: str, key: str) -> Any | None:
        with sqlite3.connect(self.path) as conn:
            row = conn.execute(
                "SELECT value FROM user_memory WHERE user_id = ? AND key = ?", (user_id, key)
            ).fetchone()
        return json.loads(row[0]) if row else None

    def set(self, user_id: str, key: str, value: Any) -> None:
        with sqlite3.connect(self.path) as conn:
            conn.execute(
                "INSERT INTO user_memory(user_id, key, value, updated_at) VALUES(?, ?, ?, ?) "
                "ON CONFLICT(user_id, key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
                (user_id, key, json.dumps(value), _now()),
            )
            conn.commit()

    def delete(self, user_id: str, key: str) -> None:
        with sqlite3.connect(self.path) as conn:
            conn.execute("DELETE FROM user_memory WHERE user_id = ? AND key = ?", (user_id, key))
            conn.commit()

    def all(self, user_id: str) -> list[MemoryEntry]:
        with sqlite3.connect(self.path) as conn:
            rows = conn.execute(
                "SELECT key, value, updated_at FROM user_memory WHERE user_id = ? ORDER BY updated_at DESC",
                (user_id,),
            ).fetchall()
        return [MemoryEntry(key=row[0], value=json.loads(row[1]), updated_at=row[2]) for row in rows]


def search_memory(store: MemoryStore, user_id: str, term: str) -> list[MemoryEntry]:
    needle = term.lower()
    return [
        entry
        for entry in store.all(user_id)
        if needle in entry.key.lower() or needle in json.dumps(entry.value).lower()
    ]


def summarize_conversation(
    store: MemoryStore,
    user_id: str,
    history: Sequence[ConversationMessage],
) -> str:
    """Store a topic summary of the conversation under today's summary key."""
    if not history:
        return ""
    topics = [message.content for message in history if message.role == "user"][:10]
    summary = f"Recent conversation topics: {'; '.join(topics)}"
    now = datetime.now(timezone.utc)
    store.set(
        user_id,
        f"conversation_summary_{now.date().isoformat()}",
        {"summary": summary, "message_count": len(history), "last_updated": now.isoformat()},
    )
    return summary


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
