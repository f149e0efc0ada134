"""Note re-embedding: generate a vector and write it back with provenance."""

from __future__ import annotations

import asyncio
import logging

from loggy.ingest.embedder import EmbeddingService
from loggy.storage.notes import NoteStore
from loggy.types import EmbeddingRecord, Note, utc_now

logger = logging.getLogger(__name__)


class NoteEmbeddingPipeline:
    """Coordinates embedding service and note store writes.

    Note create/update paths call `schedule()` so the user-visible request
    returns before the embedding round trip finishes. A failed embedding is
    logged and leaves the previous vector in place.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        note_store: NoteStore,
        *,
        enabled: bool = True,
    ) -> None:
        self._service = embedding_service
        self._note_store = note_store
        self.enabled = enabled
        self._tasks: set[asyncio.Task[None]] = set()

    async def embed_note(self, note: Note) -> EmbeddingRecord:
        """Embed a note now and overwrite its stored vector."""

        vector = await self._service.generate_note_embedding(note.title, note.content)
        record = EmbeddingRecord(
            vector=vector,
            model=self._service.provider.model_name,
            embedded_at=utc_now(),
        )
        self._note_store.save_embedding(note.owner_id, note.id, record)
        logger.info("Note %s embedded with %s", note.id, record.model)
        return record

    def schedule(self, note: Note) -> asyncio.Task[None] | None:
        """Re-embed in the background; returns the task, or None when disabled."""

        if not self.enabled:
            return None
        task = asyncio.get_running_loop().create_task(self._run(note))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled embedding to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _run(self, note: Note) -> None:
        try:
            await self.embed_note(note)
        except Exception:
            logger.exception("Embedding note %s failed", note.id)
