"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

MessageRole = Literal["user", "assistant"]
ExecutionStatus = Literal["pending", "executing", "completed"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ToolCall:
    """A model-synthesized request to run one tool.

    `name` is kept raw as produced by the provider; `arguments` is the JSON
    string exactly as received.
    """

    name: str
    arguments: str = "{}"
    id: str | None = None

    def to_openai(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }
        if self.id is not None:
            payload["id"] = self.id
        return payload


@dataclass(slots=True)
class CommandResult:
    """Outcome of one executed tool call."""

    tool_name: str
    success: bool
    data: Any = None
    error: str | None = None
    latency_ms: float = 0.0


@dataclass(slots=True)
class ToolExecutionStatus:
    """One status transition emitted while dispatching tool calls."""

    index: int
    tool_name: str
    display_name: str
    status: ExecutionStatus


@dataclass(slots=True)
class EmbeddingRecord:
    """A stored note vector with its provenance."""

    vector: list[float]
    model: str
    embedded_at: datetime


@dataclass(slots=True)
class Note:
    id: str
    owner_id: str
    title: str
    content: str = ""
    is_starred: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    embedding: EmbeddingRecord | None = None


@dataclass(slots=True)
class VectorizedNote:
    """Projection used by similarity search; the only place vectors travel."""

    note_id: str
    title: str
    content: str
    vector: list[float]


@dataclass(slots=True)
class ReferencedNote:
    """A note retrieved for one query, with its similarity score."""

    note_id: str
    title: str
    content: str
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "noteId": self.note_id,
            "title": self.title,
            "content": self.content,
            "similarity": self.similarity,
        }


@dataclass(slots=True)
class ConversationMessage:
    id: str
    owner_id: str
    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=utc_now)
    references: list[ReferencedNote] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.references is not None:
            payload["references"] = [ref.to_dict() for ref in self.references]
        return payload
