"""Cosine scoring and owner-scoped similarity search over note vectors."""

from __future__ import annotations

import logging
from math import sqrt

from loggy.config import RagConfig
from loggy.errors import DimensionMismatchError
from loggy.ingest.embedder import EmbeddingService
from loggy.storage.notes import NoteStore
from loggy.types import ReferencedNote

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise DimensionMismatchError(f"Vector dimensions differ: {len(a)} != {len(b)}")
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)


def snippet(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


class NoteRetriever:
    """Finds an owner's notes that are semantically close to a query.

    Only `ReferencedNote` projections leave this class; stored vectors never
    do. Search failures degrade to an empty result so callers can continue
    without augmentation.
    """

    def __init__(
        self,
        note_store: NoteStore,
        embedding_service: EmbeddingService,
        config: RagConfig | None = None,
    ) -> None:
        self.note_store = note_store
        self.embedding_service = embedding_service
        self.config = config or RagConfig()

    async def search_similar_notes(
        self,
        query_vector: list[float],
        owner_id: str,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[ReferencedNote]:
        limit = self.config.limit if limit is None else limit
        threshold = self.config.threshold if threshold is None else threshold
        # Similarity scores are reported in [0, 1].
        threshold = max(threshold, 0.0)
        try:
            candidates = self.note_store.list_vectorized(owner_id)
        except Exception:
            logger.exception("Could not load vectorized notes for owner %s", owner_id)
            return []

        if not candidates:
            logger.info("No vectorized notes for owner %s", owner_id)
            return []

        scored: list[ReferencedNote] = []
        for note in candidates:
            if len(note.vector) != len(query_vector):
                logger.warning(
                    "Skipping note %s: vector has %d dimensions, query has %d",
                    note.note_id,
                    len(note.vector),
                    len(query_vector),
                )
                continue
            scored.append(
                ReferencedNote(
                    note_id=note.note_id,
                    title=note.title,
                    content=snippet(note.content, self.config.snippet_chars),
                    similarity=cosine_similarity(query_vector, note.vector),
                )
            )

        # sorted() is stable, so equal scores keep store order.
        hits = sorted(
            (item for item in scored if item.similarity >= threshold),
            key=lambda item: item.similarity,
            reverse=True,
        )[:limit]
        logger.info(
            "Similarity search scored %d notes, %d at or above %.2f",
            len(scored),
            len(hits),
            threshold,
        )
        return hits

    async def retrieve(self, text: str, owner_id: str) -> list[ReferencedNote]:
        """Embed `text` and search; any failure yields no references."""

        try:
            query_vector = await self.embedding_service.generate_embedding(text)
        except Exception as exc:
            logger.warning("Retrieval skipped, query embedding failed: %s", exc)
            return []
        return await self.search_similar_notes(query_vector, owner_id)
