"""Owner-scoped conversation message persistence."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from loggy.errors import InvalidRequestError
from loggy.types import ConversationMessage, MessageRole, ReferencedNote, utc_now

MAX_MESSAGE_CHARS = 10_000


class ConversationStore(Protocol):
    def append(self, message: ConversationMessage) -> ConversationMessage:
        """Persist one message."""

    def list(self, owner_id: str) -> list[ConversationMessage]:
        """Return the owner's messages, oldest first."""

    def clear(self, owner_id: str) -> int:
        """Delete the owner's messages and return how many were removed."""


def new_message(
    owner_id: str,
    role: MessageRole,
    content: str,
    *,
    references: list[ReferencedNote] | None = None,
    timestamp: datetime | None = None,
) -> ConversationMessage:
    if role not in ("user", "assistant"):
        raise InvalidRequestError("Message role must be 'user' or 'assistant'")
    if not content:
        raise InvalidRequestError("Message content must not be empty")
    if len(content) > MAX_MESSAGE_CHARS:
        raise InvalidRequestError(f"Message content exceeds {MAX_MESSAGE_CHARS} characters")
    return ConversationMessage(
        id=uuid4().hex,
        owner_id=owner_id,
        role=role,
        content=content,
        timestamp=timestamp or utc_now(),
        references=references,
    )


class InMemoryConversationStore:
    def __init__(self) -> None:
        self._messages: list[ConversationMessage] = []

    def append(self, message: ConversationMessage) -> ConversationMessage:
        self._messages.append(message)
        return message

    def list(self, owner_id: str) -> list[ConversationMessage]:
        owned = [message for message in self._messages if message.owner_id == owner_id]
        return sorted(owned, key=lambda message: message.timestamp)

    def clear(self, owner_id: str) -> int:
        kept = [message for message in self._messages if message.owner_id != owner_id]
        removed = len(self._messages) - len(kept)
        self._messages = kept
        return removed


class SqliteConversationStore:
    """SQLite-backed conversation store; references are stored as JSON."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS messages ("
                "id TEXT PRIMARY KEY, owner_id TEXT NOT NULL, role TEXT NOT NULL, "
                "content TEXT NOT NULL, timestamp TEXT NOT NULL, refs TEXT)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS messages_owner ON messages(owner_id, timestamp)"
            )
            conn.commit()

    def append(self, message: ConversationMessage) -> ConversationMessage:
        refs = None
        if message.references is not None:
            refs = json.dumps([ref.to_dict() for ref in message.references])
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                "INSERT INTO messages(id, owner_id, role, content, timestamp, refs) "
                "VALUES(?, ?, ?, ?, ?, ?)",
                (
                    message.id,
                    message.owner_id,
                    message.role,
                    message.content,
                    message.timestamp.isoformat(),
                    refs,
                ),
            )
            conn.commit()
        return message

    def list(self, owner_id: str) -> list[ConversationMessage]:
        with sqlite3.connect(self._path) as conn:
            rows = conn.execute(
                "SELECT id, owner_id, role, content, timestamp, refs FROM messages "
                "WHERE owner_id = ? ORDER BY timestamp, rowid",
                (owner_id,),
            ).fetchall()
        return [
            ConversationMessage(
                id=row[0],
                owner_id=row[1],
                role=row[2],
                content=row[3],
                timestamp=datetime.fromisoformat(row[4]),
                references=_load_references(row[5]),
            )
            for row in rows
        ]

    def clear(self, owner_id: str) -> int:
        with sqlite3.connect(self._path) as conn:
            cur = conn.execute("DELETE FROM messages WHERE owner_id = ?", (owner_id,))
            conn.commit()
        return cur.rowcount


def _load_references(raw: str | None) -> list[ReferencedNote] | None:
    if raw is None:
        return None
    return [
        ReferencedNote(
            note_id=item["noteId"],
            title=item["title"],
            content=item["content"],
            similarity=float(item["similarity"]),
        )
        for item in json.loads(raw)
    ]
