import asyncio
import logging

import pytest
from pydantic import ValidationError

from loggy.config import EmbeddingConfig, RagConfig
from loggy.errors import EmbeddingProviderError
from loggy.ingest.embedder import EmbeddingProvider, EmbeddingService
from loggy.retrieval.vector_store import NoteRetriever
from loggy.storage.notes import InMemoryNoteStore
from loggy.types import EmbeddingRecord, utc_now


class FailingProvider(EmbeddingProvider):
    name = "failing"

    async def embed(self, text: str) -> list[float]:
        raise EmbeddingProviderError("quota exceeded")


class QueryProvider(EmbeddingProvider):
    name = "query"
    model_name = "query-v1"

    async def embed(self, text: str) -> list[float]:
        return [1.0, 0.0]


class BrokenStore(InMemoryNoteStore):
    def list_vectorized(self, owner_id):
        raise RuntimeError("database offline")


def _store_with(vectors: dict[str, list[float]], owner_id: str = "owner-a") -> InMemoryNoteStore:
    store = InMemoryNoteStore()
    for title, vector in vectors.items():
        note = store.create(owner_id, title=title, content=f"{title} body")
        store.save_embedding(
            owner_id, note.id, EmbeddingRecord(vector=vector, model="test", embedded_at=utc_now())
        )
    return store


def _retriever(store, provider: EmbeddingProvider | None = None, **rag) -> NoteRetriever:
    service = EmbeddingService(
        provider or QueryProvider(), EmbeddingConfig(provider="hashing", dimensions=2)
    )
    return NoteRetriever(store, service, RagConfig(**rag))


def test_results_are_filtered_sorted_and_truncated() -> None:
    store = _store_with(
        {
            "exact": [1.0, 0.0],
            "close": [0.9, 0.1],
            "far": [0.0, 1.0],
            "closer": [0.95, 0.05],
        }
    )
    retriever = _retriever(store)

    hits = asyncio.run(retriever.search_similar_notes([1.0, 0.0], "owner-a", limit=2, threshold=0.7))

    assert [hit.title for hit in hits] == ["exact", "closer"]
    assert hits[0].similarity >= hits[1].similarity >= 0.7


def test_threshold_excludes_everything_below() -> None:
    store = _store_with({"far": [0.0, 1.0], "opposite": [-1.0, 0.0]})

    assert asyncio.run(_retriever(store).search_similar_notes([1.0, 0.0], "owner-a")) == []


def test_ties_keep_store_order() -> None:
    store = _store_with({"first": [2.0, 0.0], "second": [1.0, 0.0], "third": [3.0, 0.0]})

    hits = asyncio.run(_retriever(store).search_similar_notes([1.0, 0.0], "owner-a"))

    assert [hit.title for hit in hits] == ["first", "second", "third"]


def test_search_never_crosses_owners() -> None:
    store = _store_with({"shared": [1.0, 0.0]}, owner_id="owner-a")
    [own] = store.list("owner-a")
    other = store.create("owner-b", title="shared")
    store.save_embedding(
        "owner-b", other.id, EmbeddingRecord(vector=[1.0, 0.0], model="t", embedded_at=utc_now())
    )
    retriever = _retriever(store)

    mine = asyncio.run(retriever.search_similar_notes([1.0, 0.0], "owner-a"))
    theirs = asyncio.run(retriever.search_similar_notes([1.0, 0.0], "owner-b"))
    nobody = asyncio.run(retriever.search_similar_notes([1.0, 0.0], "owner-c"))

    assert [hit.note_id for hit in mine] == [own.id]
    assert [hit.note_id for hit in theirs] == [other.id]
    assert nobody == []


def test_results_are_projections_with_snippets() -> None:
    store = InMemoryNoteStore()
    note = store.create("owner-a", title="long", content="word " * 200)
    store.save_embedding(
        "owner-a", note.id, EmbeddingRecord(vector=[1.0, 0.0], model="t", embedded_at=utc_now())
    )

    [hit] = asyncio.run(_retriever(store, snippet_chars=50).search_similar_notes([1.0, 0.0], "owner-a"))

    assert hit.note_id == note.id
    assert len(hit.content) == 50
    assert hit.content.endswith("...")
    assert set(hit.to_dict()) == {"noteId", "title", "content", "similarity"}


def test_wrong_dimension_vectors_are_skipped(caplog) -> None:
    store = _store_with({"stale": [1.0, 0.0, 0.0], "fresh": [1.0, 0.0]})

    with caplog.at_level(logging.WARNING, logger="loggy.retrieval.vector_store"):
        hits = asyncio.run(_retriever(store).search_similar_notes([1.0, 0.0], "owner-a"))

    assert [hit.title for hit in hits] == ["fresh"]
    assert "Skipping note" in caplog.text


def test_store_failure_degrades_to_empty() -> None:
    assert asyncio.run(_retriever(BrokenStore()).search_similar_notes([1.0, 0.0], "owner-a")) == []


def test_retrieve_embeds_the_query_and_swallows_embedding_failures() -> None:
    store = _store_with({"exact": [1.0, 0.0]})

    hits = asyncio.run(_retriever(store).retrieve("anything", "owner-a"))
    degraded = asyncio.run(_retriever(store, FailingProvider()).retrieve("anything", "owner-a"))

    assert [hit.title for hit in hits] == ["exact"]
    assert degraded == []


def test_negative_threshold_is_rejected_by_config() -> None:
    with pytest.raises(ValidationError):
        RagConfig(threshold=-1.0)


def test_explicit_negative_threshold_never_returns_negative_scores() -> None:
    store = _store_with({"opposite": [-1.0, 0.0], "orthogonal": [0.0, 1.0]})

    hits = asyncio.run(_retriever(store).search_similar_notes([1.0, 0.0], "owner-a", threshold=-1.0))

    assert [hit.title for hit in hits] == ["orthogonal"]
    assert all(0.0 <= hit.similarity <= 1.0 for hit in hits)
