"""Owner-scoped note persistence with embedding slots."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from loggy.errors import InvalidRequestError, NoteNotFoundError
from loggy.types import EmbeddingRecord, Note, VectorizedNote, utc_now

logger = logging.getLogger(__name__)

MAX_TITLE_CHARS = 200
MAX_CONTENT_CHARS = 100_000


class NoteStore(Protocol):
    """Minimal note store contract; every call is scoped to one owner."""

    def create(
        self, owner_id: str, *, title: str, content: str = "", is_starred: bool = False
    ) -> Note:
        """Create and return a note."""

    def get(self, owner_id: str, note_id: str) -> Note:
        """Return one note or raise `NoteNotFoundError`."""

    def list(
        self, owner_id: str, *, is_starred: bool | None = None, search: str | None = None
    ) -> list[Note]:
        """Return the owner's notes, newest first."""

    def update(
        self,
        owner_id: str,
        note_id: str,
        *,
        title: str | None = None,
        content: str | None = None,
        is_starred: bool | None = None,
    ) -> Note:
        """Apply a partial update and return the note."""

    def delete(self, owner_id: str, note_id: str) -> None:
        """Delete one note or raise `NoteNotFoundError`."""

    def list_vectorized(self, owner_id: str) -> list[VectorizedNote]:
        """Return the owner's notes that carry a vector, oldest first."""

    def save_embedding(self, owner_id: str, note_id: str, record: EmbeddingRecord) -> None:
        """Overwrite a note's vector and provenance."""


def normalize_title(title: str | None) -> str:
    clean = (title or "").strip()
    if not clean:
        raise InvalidRequestError("Note title must not be empty")
    if len(clean) > MAX_TITLE_CHARS:
        raise InvalidRequestError(f"Note title exceeds {MAX_TITLE_CHARS} characters")
    return clean


def check_content(content: str | None) -> str:
    content = content or ""
    if len(content) > MAX_CONTENT_CHARS:
        raise InvalidRequestError(f"Note content exceeds {MAX_CONTENT_CHARS} characters")
    return content


def _matches(note: Note, is_starred: bool | None, search: str | None) -> bool:
    if is_starred is not None and note.is_starred != is_starred:
        return False
    if search and search.strip():
        needle = search.strip().lower()
        return needle in note.title.lower() or needle in note.content.lower()
    return True


class InMemoryNoteStore:
    """Dict-backed note store used for tests and local prototyping."""

    def __init__(self) -> None:
        self._notes: dict[str, Note] = {}

    def create(
        self, owner_id: str, *, title: str, content: str = "", is_starred: bool = False
    ) -> Note:
        now = utc_now()
        note = Note(
            id=uuid4().hex,
            owner_id=owner_id,
            title=normalize_title(title),
            content=check_content(content),
            is_starred=is_starred,
            created_at=now,
            updated_at=now,
        )
        self._notes[note.id] = note
        return replace(note)

    def get(self, owner_id: str, note_id: str) -> Note:
        return replace(self._require(owner_id, note_id))

    def list(
        self, owner_id: str, *, is_starred: bool | None = None, search: str | None = None
    ) -> list[Note]:
        notes = [
            replace(note)
            for note in self._notes.values()
            if note.owner_id == owner_id and _matches(note, is_starred, search)
        ]
        return sorted(notes, key=lambda note: note.created_at, reverse=True)

    def update(
        self,
        owner_id: str,
        note_id: str,
        *,
        title: str | None = None,
        content: str | None = None,
        is_starred: bool | None = None,
    ) -> Note:
        if title is None and content is None and is_starred is None:
            raise InvalidRequestError("No fields to update")
        note = self._require(owner_id, note_id)
        if title is not None:
            note.title = normalize_title(title)
        if content is not None:
            note.content = check_content(content)
        if is_starred is not None:
            note.is_starred = is_starred
        note.updated_at = utc_now()
        return replace(note)

    def delete(self, owner_id: str, note_id: str) -> None:
        self._require(owner_id, note_id)
        del self._notes[note_id]

    def list_vectorized(self, owner_id: str) -> list[VectorizedNote]:
        return [
            VectorizedNote(
                note_id=note.id,
                title=note.title,
                content=note.content,
                vector=list(note.embedding.vector),
            )
            for note in self._notes.values()
            if note.owner_id == owner_id and note.embedding is not None and note.embedding.vector
        ]

    def save_embedding(self, owner_id: str, note_id: str, record: EmbeddingRecord) -> None:
        self._require(owner_id, note_id).embedding = record

    def _require(self, owner_id: str, note_id: str) -> Note:
        note = self._notes.get(note_id)
        if note is None or note.owner_id != owner_id:
            raise NoteNotFoundError(f"Note not found: {note_id}")
        return note


class SqliteNoteStore:
    """SQLite-backed note store; vectors are stored as JSON arrays."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._ensure_schema()

    def create(
        self, owner_id: str, *, title: str, content: str = "", is_starred: bool = False
    ) -> Note:
        now = utc_now()
        note = Note(
            id=uuid4().hex,
            owner_id=owner_id,
            title=normalize_title(title),
            content=check_content(content),
            is_starred=is_starred,
            created_at=now,
            updated_at=now,
        )
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                "INSERT INTO notes(id, owner_id, title, content, is_starred, created_at, updated_at) "
                "VALUES(?, ?, ?, ?, ?, ?, ?)",
                (
                    note.id,
                    owner_id,
                    note.title,
                    note.content,
                    int(note.is_starred),
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
            conn.commit()
        return note

    def get(self, owner_id: str, note_id: str) -> Note:
        with sqlite3.connect(self._path) as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM notes WHERE id = ? AND owner_id = ?",
                (note_id, owner_id),
            ).fetchone()
        if row is None:
            raise NoteNotFoundError(f"Note not found: {note_id}")
        return _row_to_note(row)

    def list(
        self, owner_id: str, *, is_starred: bool | None = None, search: str | None = None
    ) -> list[Note]:
        with sqlite3.connect(self._path) as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM notes WHERE owner_id = ? ORDER BY created_at DESC",
                (owner_id,),
            ).fetchall()
        notes = [_row_to_note(row) for row in rows]
        return [note for note in notes if _matches(note, is_starred, search)]

    def update(
        self,
        owner_id: str,
        note_id: str,
        *,
        title: str | None = None,
        content: str | None = None,
        is_starred: bool | None = None,
    ) -> Note:
        if title is None and content is None and is_starred is None:
            raise InvalidRequestError("No fields to update")
        note = self.get(owner_id, note_id)
        if title is not None:
            note.title = normalize_title(title)
        if content is not None:
            note.content = check_content(content)
        if is_starred is not None:
            note.is_starred = is_starred
        note.updated_at = utc_now()
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                "UPDATE notes SET title = ?, content = ?, is_starred = ?, updated_at = ? "
                "WHERE id = ? AND owner_id = ?",
                (
                    note.title,
                    note.content,
                    int(note.is_starred),
                    note.updated_at.isoformat(),
                    note_id,
                    owner_id,
                ),
            )
            conn.commit()
        return note

    def delete(self, owner_id: str, note_id: str) -> None:
        with sqlite3.connect(self._path) as conn:
            cur = conn.execute(
                "DELETE FROM notes WHERE id = ? AND owner_id = ?", (note_id, owner_id)
            )
            conn.commit()
        if cur.rowcount == 0:
            raise NoteNotFoundError(f"Note not found: {note_id}")

    def list_vectorized(self, owner_id: str) -> list[VectorizedNote]:
        with sqlite3.connect(self._path) as conn:
            rows = conn.execute(
                "SELECT id, title, content, embedding FROM notes "
                "WHERE owner_id = ? AND embedding IS NOT NULL ORDER BY created_at",
                (owner_id,),
            ).fetchall()
        return [
            VectorizedNote(note_id=row[0], title=row[1], content=row[2], vector=json.loads(row[3]))
            for row in rows
        ]

    def save_embedding(self, owner_id: str, note_id: str, record: EmbeddingRecord) -> None:
        with sqlite3.connect(self._path) as conn:
            cur = conn.execute(
                "UPDATE notes SET embedding = ?, embedding_model = ?, embedded_at = ? "
                "WHERE id = ? AND owner_id = ?",
                (
                    json.dumps(record.vector),
                    record.model,
                    record.embedded_at.isoformat(),
                    note_id,
                    owner_id,
                ),
            )
            conn.commit()
        if cur.rowcount == 0:
            raise NoteNotFoundError(f"Note not found: {note_id}")

    def _ensure_schema(self) -> None:
        with sqlite3.connect(self._path) as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS notes ("
                "id TEXT PRIMARY KEY, owner_id TEXT NOT NULL, title TEXT NOT NULL, "
                "content TEXT NOT NULL, is_starred INTEGER NOT NULL DEFAULT 0, "
                "created_at TEXT NOT NULL, updated_at TEXT NOT NULL, "
                "embedding TEXT, embedding_model TEXT, embedded_at TEXT)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS notes_owner ON notes(owner_id)")
            conn.commit()


_COLUMNS = (
    "id, owner_id, title, content, is_starred, created_at, updated_at, "
    "embedding, embedding_model, embedded_at"
)


def _row_to_note(row: tuple) -> Note:
    embedding = None
    if row[7] is not None:
        embedding = EmbeddingRecord(
            vector=json.loads(row[7]),
            model=row[8] or "",
            embedded_at=datetime.fromisoformat(row[9]),
        )
    return Note(
        id=row[0],
        owner_id=row[1],
        title=row[2],
        content=row[3],
        is_starred=bool(row[4]),
        created_at=datetime.fromisoformat(row[5]),
        updated_at=datetime.fromisoformat(row[6]),
        embedding=embedding,
    )
