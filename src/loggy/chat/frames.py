"""Named stream frames and their server-sent-event encoding."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, ClassVar

from loggy.types import ReferencedNote


@dataclass(slots=True)
class StartFrame:
    type: ClassVar[str] = "start"
    references: list[ReferencedNote] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "references": [ref.to_dict() for ref in self.references]}


@dataclass(slots=True)
class ContentFrame:
    type: ClassVar[str] = "content"
    data: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}


@dataclass(slots=True)
class DoneFrame:
    type: ClassVar[str] = "done"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass(slots=True)
class ErrorFrame:
    type: ClassVar[str] = "error"
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "error": self.error}


StreamFrame = StartFrame | ContentFrame | DoneFrame | ErrorFrame


def to_sse(frame: StreamFrame) -> str:
    """Encode one frame as `event: <type>\\ndata: <json>\\n\\n`."""
    payload = json.dumps(frame.to_dict(), ensure_ascii=False)
    return f"event: {frame.type}\ndata: {payload}\n\n"
