"""Streaming conversation controller with retrieval augmentation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field

from loggy.chat.frames import ContentFrame, DoneFrame, ErrorFrame, StartFrame, StreamFrame
from loggy.config import ChatConfig, RagConfig
from loggy.errors import InvalidRequestError
from loggy.llm.provider import CompletionProvider
from loggy.retrieval.vector_store import NoteRetriever, snippet
from loggy.storage.conversations import ConversationStore, new_message
from loggy.types import ReferencedNote, ToolCall

logger = logging.getLogger(__name__)

_RAG_PREAMBLE = (
    "The user has personal notes that may help answer the next question. "
    "Use them when they are relevant and say which note you relied on; "
    "ignore them otherwise."
)


class ChatMessageIn(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    messages: list[ChatMessageIn] = Field(min_length=1)
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    stream: bool = True
    surface_id: str | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | None = None


@dataclass(slots=True)
class ChatCompletion:
    content: str | None
    references: list[ReferencedNote] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None
    message_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "references": [ref.to_dict() for ref in self.references],
            "tool_calls": [call.to_openai() for call in self.tool_calls],
            "finish_reason": self.finish_reason,
            "message_id": self.message_id,
        }


class StreamSession:
    """Per-request frame buffer and cancellation handle; never persisted."""

    def __init__(self, owner_id: str, surface_id: str) -> None:
        self.owner_id = owner_id
        self.surface_id = surface_id
        self.chunks: list[str] = []
        self.cancelled = False
        self.finished = False
        self.task: asyncio.Task[None] | None = None
        self._queue: asyncio.Queue[StreamFrame | None] = asyncio.Queue()

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    def put(self, frame: StreamFrame) -> None:
        if not self.cancelled:
            self._queue.put_nowait(frame)

    async def next_frame(self) -> StreamFrame | None:
        return await self._queue.get()

    def finish(self) -> None:
        self.finished = True

    def cancel(self) -> None:
        if self.cancelled or self.finished:
            return
        self.cancelled = True
        if self.task is not None:
            self.task.cancel()
        self._queue.put_nowait(None)


def validate_request(request: ChatRequest, config: ChatConfig) -> str:
    """Check the request and return the latest user text."""

    if not request.messages:
        raise InvalidRequestError("messages must be a non-empty list")
    latest = request.messages[-1]
    if latest.role != "user":
        raise InvalidRequestError("the last message must be a user turn")
    if not latest.content.strip():
        raise InvalidRequestError("message content must not be empty")
    for message in request.messages:
        if len(message.content) > config.max_message_chars:
            raise InvalidRequestError(
                f"message content exceeds {config.max_message_chars} characters"
            )
    return latest.content


def reference_prompt(references: list[ReferencedNote], max_chars: int = 500) -> str:
    lines = [_RAG_PREAMBLE, ""]
    for number, ref in enumerate(references, start=1):
        lines.append(f"[{number}] {ref.title}")
        lines.append(snippet(ref.content, max_chars))
        lines.append("")
    return "\n".join(lines).rstrip()


class ConversationController:
    """Runs one conversational turn: persist, augment, stream, finalize.

    Streams are keyed by (owner, surface). Starting a stream on a surface
    aborts the one already running there; an aborted stream emits no more
    frames and persists nothing.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        conversation_store: ConversationStore,
        retriever: NoteRetriever | None = None,
        config: ChatConfig | None = None,
        rag_config: RagConfig | None = None,
    ) -> None:
        self.provider = provider
        self.conversation_store = conversation_store
        self.retriever = retriever
        self.config = config or ChatConfig()
        self.rag_config = rag_config or RagConfig()
        self._sessions: dict[tuple[str, str], StreamSession] = {}

    async def stream(self, owner_id: str, request: ChatRequest) -> AsyncIterator[StreamFrame]:
        """Validate and start a turn; returns the frame iterator.

        Validation errors raise here, before anything is persisted.
        """

        query = validate_request(request, self.config)
        surface_id = request.surface_id or owner_id
        self.abort(owner_id, surface_id)

        self.conversation_store.append(new_message(owner_id, "user", query))
        session = StreamSession(owner_id, surface_id)
        self._sessions[(owner_id, surface_id)] = session
        history = self._history(request)
        logger.info(
            "Stream started for owner %s on surface %s with %d messages",
            owner_id,
            surface_id,
            len(history),
        )
        session.task = asyncio.get_running_loop().create_task(
            self._produce(session, query, history, self._options(request))
        )
        return self._frames(session)

    async def complete(self, owner_id: str, request: ChatRequest) -> ChatCompletion:
        """Non-streaming turn; provider errors propagate to the caller."""

        query = validate_request(request, self.config)
        self.conversation_store.append(new_message(owner_id, "user", query))
        references = await self._references(query, owner_id)
        outgoing = self._augment(self._history(request), references)

        completion = await self.provider.complete(
            outgoing,
            tools=request.tools,
            tool_choice=request.tool_choice if request.tools else None,
            **self._options(request),
        )
        message_id = None
        if completion.content:
            message_id = self._persist_answer(owner_id, completion.content, references)
        return ChatCompletion(
            content=completion.content,
            references=references,
            tool_calls=completion.tool_calls,
            finish_reason=completion.finish_reason,
            message_id=message_id,
        )

    def abort(self, owner_id: str, surface_id: str) -> bool:
        session = self._sessions.pop((owner_id, surface_id), None)
        if session is None or session.finished:
            return False
        session.cancel()
        logger.info("Stream aborted for owner %s on surface %s", owner_id, surface_id)
        return True

    def active_sessions(self) -> int:
        return sum(1 for session in self._sessions.values() if not session.finished)

    async def _produce(
        self,
        session: StreamSession,
        query: str,
        history: list[dict[str, Any]],
        options: dict[str, Any],
    ) -> None:
        try:
            references = await self._references(query, session.owner_id)
            session.put(StartFrame(references=references))
            chunks = self.provider.stream(self._augment(history, references), **options)
            async with aclosing(chunks):
                async for text in chunks:
                    if not text:
                        continue
                    session.chunks.append(text)
                    session.put(ContentFrame(data=text))

            if session.cancelled:
                return
            if session.text:
                self._persist_answer(session.owner_id, session.text, references)
            session.put(DoneFrame())
        except asyncio.CancelledError:
            logger.debug("Producer for surface %s cancelled", session.surface_id)
            raise
        except Exception as exc:
            logger.exception("Stream failed for surface %s", session.surface_id)
            session.put(ErrorFrame(error=str(exc) or type(exc).__name__))
        finally:
            session.finish()

    async def _frames(self, session: StreamSession) -> AsyncIterator[StreamFrame]:
        try:
            while True:
                frame = await session.next_frame()
                if frame is None or session.cancelled:
                    return
                yield frame
                if isinstance(frame, (DoneFrame, ErrorFrame)):
                    return
        finally:
            # Consumer gone before a terminal frame: treat as abort.
            if not session.finished:
                session.cancel()
            key = (session.owner_id, session.surface_id)
            if self._sessions.get(key) is session:
                del self._sessions[key]

    async def _references(self, query: str, owner_id: str) -> list[ReferencedNote]:
        if not self.rag_config.enabled or self.retriever is None:
            return []
        try:
            return await self.retriever.retrieve(query, owner_id)
        except Exception:
            logger.exception("Retrieval failed, continuing without notes")
            return []

    def _history(self, request: ChatRequest) -> list[dict[str, Any]]:
        messages = request.messages[-self.config.history_limit :]
        return [{"role": message.role, "content": message.content} for message in messages]

    def _augment(
        self, history: list[dict[str, Any]], references: list[ReferencedNote]
    ) -> list[dict[str, Any]]:
        if not references:
            return history
        system = {
            "role": "system",
            "content": reference_prompt(references, self.rag_config.snippet_chars),
        }
        return [system, *history]

    def _options(self, request: ChatRequest) -> dict[str, Any]:
        return {
            "model": request.model or self.config.model,
            "temperature": (
                request.temperature if request.temperature is not None else self.config.temperature
            ),
            "max_tokens": request.max_tokens,
        }

    def _persist_answer(
        self, owner_id: str, text: str, references: list[ReferencedNote]
    ) -> str | None:
        try:
            message = self.conversation_store.append(
                new_message(
                    owner_id,
                    "assistant",
                    text[: self.config.max_message_chars],
                    references=references or None,
                )
            )
        except Exception:
            logger.exception("Could not persist assistant message for owner %s", owner_id)
            return None
        return message.id
