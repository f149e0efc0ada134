"""FastAPI entrypoint for chat, notes, messages and assistant surfaces."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from loggy.agent.commands import FormSpec
from loggy.agent.surface import SurfaceManager
from loggy.chat.controller import ChatRequest, ConversationController
from loggy.chat.frames import to_sse
from loggy.config import Settings, configure_logging
from loggy.errors import (
    EmbeddingProviderError,
    InvalidRequestError,
    NoteNotFoundError,
    ProviderError,
    SurfaceNotFoundError,
)
from loggy.ingest.embedder import EmbeddingProvider, EmbeddingService, create_embedding_provider
from loggy.ingest.pipeline import NoteEmbeddingPipeline
from loggy.llm.provider import CompletionProvider, create_completion_provider
from loggy.retrieval.vector_store import NoteRetriever
from loggy.storage.conversations import (
    ConversationStore,
    InMemoryConversationStore,
    SqliteConversationStore,
    new_message,
)
from loggy.storage.notes import InMemoryNoteStore, NoteStore, SqliteNoteStore
from loggy.types import Note

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class MessageCreateRequest(BaseModel):
    role: str
    content: str = Field(min_length=1)


class NoteCreateRequest(BaseModel):
    title: str
    content: str = ""
    is_starred: bool = False


class NoteUpdateRequest(BaseModel):
    title: str | None = None
    content: str | None = None
    is_starred: bool | None = None


class NoteSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1, le=50)
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)


class SurfaceOpenRequest(BaseModel):
    surface_id: str = Field(min_length=1)
    forms: list[FormSpec] = Field(default_factory=list)
    text_targets: list[str] = Field(default_factory=list)


class AssistRequest(BaseModel):
    query: str = Field(min_length=1)


def get_owner_id(x_owner_id: str | None = Header(default=None)) -> str:
    """Owner id set by the upstream authenticator."""
    if not x_owner_id:
        raise HTTPException(status_code=401, detail="Missing X-Owner-Id header")
    return x_owner_id


def note_to_dict(note: Note) -> dict[str, Any]:
    return {
        "id": note.id,
        "title": note.title,
        "content": note.content,
        "isStarred": note.is_starred,
        "createdAt": note.created_at.isoformat(),
        "updatedAt": note.updated_at.isoformat(),
    }


def embedding_status(note: Note) -> dict[str, Any]:
    record = note.embedding
    vector = record.vector if record is not None else []
    return {
        "noteId": note.id,
        "title": note.title,
        "hasEmbedding": bool(vector),
        "embeddingDimensions": len(vector),
        "embeddingModel": record.model if record is not None else None,
        "lastEmbeddedAt": record.embedded_at.isoformat() if record is not None else None,
        "embeddingSample": vector[:5],
        "createdAt": note.created_at.isoformat(),
        "updatedAt": note.updated_at.isoformat(),
    }


def _build_embedding_service(
    settings: Settings, provider: EmbeddingProvider | None
) -> EmbeddingService | None:
    config = settings.embedding_config()
    if provider is None:
        try:
            provider = create_embedding_provider(config)
        except EmbeddingProviderError as exc:
            logger.warning("Embedding disabled: %s", exc)
            return None
    return EmbeddingService(provider, config)


def create_app(
    settings: Settings | None = None,
    *,
    completion_provider: CompletionProvider | None = None,
    embedding_provider: EmbeddingProvider | None = None,
    note_store: NoteStore | None = None,
    conversation_store: ConversationStore | None = None,
) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level)

    if completion_provider is None:
        completion_provider = create_completion_provider(settings)
    if completion_provider is None:
        logger.warning("No completion provider configured; chat and assist return 503")

    if note_store is None:
        note_store = (
            SqliteNoteStore(settings.database_path)
            if settings.database_path
            else InMemoryNoteStore()
        )
    if conversation_store is None:
        conversation_store = (
            SqliteConversationStore(settings.database_path)
            if settings.database_path
            else InMemoryConversationStore()
        )

    rag_config = settings.rag_config()
    embedding_service = _build_embedding_service(settings, embedding_provider)
    retriever = (
        NoteRetriever(note_store, embedding_service, rag_config) if embedding_service else None
    )
    pipeline = (
        NoteEmbeddingPipeline(embedding_service, note_store, enabled=rag_config.enabled)
        if embedding_service
        else None
    )
    controller = (
        ConversationController(
            completion_provider,
            conversation_store,
            retriever,
            settings.chat_config(),
            rag_config,
        )
        if completion_provider is not None
        else None
    )
    surfaces = SurfaceManager()
    agent_config = settings.agent_config()

    app = FastAPI(title="Loggy Assistant", version="0.1.0")
    app.state.note_store = note_store
    app.state.conversation_store = conversation_store
    app.state.embedding_pipeline = pipeline
    app.state.controller = controller
    app.state.surfaces = surfaces

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        return JSONResponse(
            status_code=400,
            content={"error": f"{location}: {message}" if location else message},
        )

    @app.exception_handler(InvalidRequestError)
    async def _invalid_request(request: Request, exc: InvalidRequestError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(NoteNotFoundError)
    @app.exception_handler(SurfaceNotFoundError)
    async def _not_found(request: Request, exc: LookupError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(ProviderError)
    async def _provider_failed(request: Request, exc: ProviderError) -> JSONResponse:
        logger.error("Provider failure on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=502, content={"error": str(exc)})

    def require_controller() -> ConversationController:
        if controller is None:
            raise HTTPException(status_code=503, detail="Completion provider is not configured")
        return controller

    def require_completion_provider() -> CompletionProvider:
        if completion_provider is None:
            raise HTTPException(status_code=503, detail="Completion provider is not configured")
        return completion_provider

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "llm_configured": completion_provider is not None,
            "embedding": embedding_service.model_info() if embedding_service else None,
            "rag_enabled": rag_config.enabled,
            "active_streams": controller.active_sessions() if controller else 0,
        }

    @app.post("/chat")
    async def chat(
        request: ChatRequest,
        owner_id: str = Depends(get_owner_id),
        chat_controller: ConversationController = Depends(require_controller),
    ) -> Any:
        if not request.stream:
            completion = await chat_controller.complete(owner_id, request)
            return completion.to_dict()

        frames = await chat_controller.stream(owner_id, request)

        async def event_stream():
            async for frame in frames:
                yield to_sse(frame)

        return StreamingResponse(
            event_stream(), media_type="text/event-stream", headers=SSE_HEADERS
        )

    @app.post("/chat/{surface_id}/abort")
    async def abort_chat(
        surface_id: str,
        owner_id: str = Depends(get_owner_id),
        chat_controller: ConversationController = Depends(require_controller),
    ) -> dict[str, Any]:
        return {"aborted": chat_controller.abort(owner_id, surface_id)}

    @app.get("/messages")
    def list_messages(owner_id: str = Depends(get_owner_id)) -> dict[str, Any]:
        return {"items": [message.to_dict() for message in conversation_store.list(owner_id)]}

    @app.post("/messages")
    def create_message(
        request: MessageCreateRequest, owner_id: str = Depends(get_owner_id)
    ) -> dict[str, Any]:
        message = conversation_store.append(
            new_message(owner_id, request.role, request.content)  # type: ignore[arg-type]
        )
        return message.to_dict()

    @app.delete("/messages")
    def clear_messages(owner_id: str = Depends(get_owner_id)) -> dict[str, Any]:
        return {"deleted": conversation_store.clear(owner_id)}

    @app.get("/notes")
    def list_notes(
        is_starred: bool | None = None,
        search: str | None = None,
        owner_id: str = Depends(get_owner_id),
    ) -> dict[str, Any]:
        notes = note_store.list(owner_id, is_starred=is_starred, search=search)
        return {"items": [note_to_dict(note) for note in notes]}

    @app.post("/notes")
    async def create_note(
        request: NoteCreateRequest, owner_id: str = Depends(get_owner_id)
    ) -> dict[str, Any]:
        note = note_store.create(
            owner_id,
            title=request.title,
            content=request.content,
            is_starred=request.is_starred,
        )
        if pipeline is not None:
            pipeline.schedule(note)
        return note_to_dict(note)

    @app.get("/notes/{note_id}")
    def get_note(note_id: str, owner_id: str = Depends(get_owner_id)) -> dict[str, Any]:
        return note_to_dict(note_store.get(owner_id, note_id))

    @app.patch("/notes/{note_id}")
    async def update_note(
        note_id: str, request: NoteUpdateRequest, owner_id: str = Depends(get_owner_id)
    ) -> dict[str, Any]:
        note = note_store.update(
            owner_id,
            note_id,
            title=request.title,
            content=request.content,
            is_starred=request.is_starred,
        )
        if pipeline is not None and (request.title is not None or request.content is not None):
            pipeline.schedule(note)
        return note_to_dict(note)

    @app.delete("/notes/{note_id}")
    def delete_note(note_id: str, owner_id: str = Depends(get_owner_id)) -> dict[str, Any]:
        note_store.delete(owner_id, note_id)
        return {"deleted": note_id}

    @app.get("/notes/{note_id}/embedding")
    def note_embedding(note_id: str, owner_id: str = Depends(get_owner_id)) -> dict[str, Any]:
        return embedding_status(note_store.get(owner_id, note_id))

    @app.post("/notes/search")
    async def search_notes(
        request: NoteSearchRequest, owner_id: str = Depends(get_owner_id)
    ) -> dict[str, Any]:
        if embedding_service is None or retriever is None:
            raise HTTPException(status_code=503, detail="Embedding provider is not configured")
        query_vector = await embedding_service.generate_embedding(request.query)
        hits = await retriever.search_similar_notes(
            query_vector, owner_id, limit=request.limit, threshold=request.threshold
        )
        return {"items": [hit.to_dict() for hit in hits]}

    @app.post("/surfaces")
    def open_surface(
        request: SurfaceOpenRequest, owner_id: str = Depends(get_owner_id)
    ) -> dict[str, Any]:
        surface = surfaces.open(
            owner_id,
            request.surface_id,
            forms=request.forms,
            text_targets=request.text_targets,
        )
        return {"surface_id": surface.surface_id, "tools": surface.registry.get_command_names()}

    @app.get("/surfaces/{surface_id}/tools")
    def surface_tools(surface_id: str, owner_id: str = Depends(get_owner_id)) -> dict[str, Any]:
        surface = surfaces.get(owner_id, surface_id)
        return {"items": [tool.model_dump() for tool in surface.registry.get_tools()]}

    @app.post("/surfaces/{surface_id}/assist")
    async def assist(
        surface_id: str,
        request: AssistRequest,
        owner_id: str = Depends(get_owner_id),
        provider: CompletionProvider = Depends(require_completion_provider),
    ) -> dict[str, Any]:
        surface = surfaces.get(owner_id, surface_id)
        run = await surface.assist(request.query, provider, agent_config)
        return {
            "answer": run.outcome.answer,
            "error": run.outcome.error,
            "tool_calls": [asdict(call) for call in run.outcome.tool_calls],
            "results": [asdict(result) for result in run.outcome.results],
            "statuses": [asdict(status) for status in run.statuses],
            "events": [asdict(event) for event in run.events],
        }

    @app.delete("/surfaces/{surface_id}")
    def close_surface(surface_id: str, owner_id: str = Depends(get_owner_id)) -> dict[str, Any]:
        surfaces.close(owner_id, surface_id)
        return {"closed": surface_id}

    return app


app = create_app()
