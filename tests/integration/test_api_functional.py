import asyncio
import json
from datetime import datetime

from fastapi.testclient import TestClient

from loggy.api.main import create_app
from loggy.chat.controller import ChatRequest
from loggy.config import Settings
from loggy.errors import EmbeddingProviderError
from loggy.ingest.embedder import HashingEmbeddingProvider
from loggy.llm.provider import Completion
from loggy.types import ToolCall

ALICE = {"X-Owner-Id": "alice"}
BOB = {"X-Owner-Id": "bob"}


class MockLLM:
    def __init__(self, chunks=("Hel", "lo"), completions=()) -> None:
        self.chunks = list(chunks)
        self.completions = list(completions)

    async def complete(self, messages, *, tools=None, tool_choice=None, **options):
        if self.completions:
            return self.completions.pop(0)
        return Completion(content="plain answer", finish_reason="stop")

    async def stream(self, messages, **options):
        for chunk in self.chunks:
            yield chunk


class GatedLLM(MockLLM):
    """Streams one chunk, then waits until cancelled."""

    async def stream(self, messages, **options):
        yield "Hel"
        await asyncio.Event().wait()


class FlakyEmbedder(HashingEmbeddingProvider):
    def __init__(self, dimension: int) -> None:
        super().__init__(dimension)
        self.broken = False

    async def embed(self, text: str) -> list[float]:
        if self.broken:
            raise EmbeddingProviderError("provider down")
        return await super().embed(text)


def _settings(**overrides) -> Settings:
    values = {
        "deepseek_api_key": None,
        "embedding_provider": "hashing",
        "embedding_dimensions": 128,
        "rag_threshold": 0.6,
        "database_path": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _frames(body: str) -> list[tuple[str, dict]]:
    frames = []
    for block in body.strip().split("\n\n"):
        event_line, data_line = block.split("\n")
        frames.append((event_line.removeprefix("event: "), json.loads(data_line.removeprefix("data: "))))
    return frames


def test_owner_header_is_required() -> None:
    client = TestClient(create_app(_settings(), completion_provider=MockLLM()))

    assert client.get("/messages").status_code == 401
    assert client.get("/health").status_code == 200


def test_chat_streams_sse_frames_and_persists_messages() -> None:
    app = create_app(_settings(), completion_provider=MockLLM())

    with TestClient(app) as client:
        response = client.post(
            "/chat", json={"messages": [{"role": "user", "content": "hi"}]}, headers=ALICE
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-accel-buffering"] == "no"
        assert _frames(response.text) == [
            ("start", {"type": "start", "references": []}),
            ("content", {"type": "content", "data": "Hel"}),
            ("content", {"type": "content", "data": "lo"}),
            ("done", {"type": "done"}),
        ]

        messages = client.get("/messages", headers=ALICE).json()["items"]
        assert [(m["role"], m["content"]) for m in messages] == [
            ("user", "hi"),
            ("assistant", "Hello"),
        ]
        assert client.get("/messages", headers=BOB).json()["items"] == []


def test_chat_rejects_invalid_bodies_with_400() -> None:
    client = TestClient(create_app(_settings(), completion_provider=MockLLM()))

    missing = client.post("/chat", json={"messages": []}, headers=ALICE)
    wrong_turn = client.post(
        "/chat", json={"messages": [{"role": "assistant", "content": "hi"}]}, headers=ALICE
    )

    assert missing.status_code == 400
    assert "error" in missing.json()
    assert wrong_turn.status_code == 400
    assert "user turn" in wrong_turn.json()["error"]
    assert client.get("/messages", headers=ALICE).json()["items"] == []


def test_chat_without_provider_is_unavailable() -> None:
    client = TestClient(create_app(_settings()))

    response = client.post(
        "/chat", json={"messages": [{"role": "user", "content": "hi"}]}, headers=ALICE
    )

    assert response.status_code == 503


def test_non_streaming_chat_returns_json() -> None:
    client = TestClient(create_app(_settings(), completion_provider=MockLLM()))

    response = client.post(
        "/chat",
        json={"messages": [{"role": "user", "content": "hi"}], "stream": False},
        headers=ALICE,
    )

    assert response.status_code == 200
    assert response.json()["content"] == "plain answer"
    assert response.json()["message_id"]


def test_message_endpoints() -> None:
    client = TestClient(create_app(_settings(), completion_provider=MockLLM()))

    created = client.post("/messages", json={"role": "user", "content": "note to self"}, headers=ALICE)
    bad_role = client.post("/messages", json={"role": "system", "content": "x"}, headers=ALICE)

    assert created.status_code == 200
    assert bad_role.status_code == 400
    assert len(client.get("/messages", headers=ALICE).json()["items"]) == 1
    assert client.delete("/messages", headers=ALICE).json() == {"deleted": 1}
    assert client.get("/messages", headers=ALICE).json()["items"] == []


def test_notes_crud_embedding_status_and_search() -> None:
    app = create_app(_settings(), completion_provider=MockLLM())

    with TestClient(app) as client:
        created = client.post(
            "/notes",
            json={"title": "kyoto trip", "content": "visit temples in spring"},
            headers=ALICE,
        )
        assert created.status_code == 200
        note_id = created.json()["id"]
        client.portal.call(app.state.embedding_pipeline.drain)

        status = client.get(f"/notes/{note_id}/embedding", headers=ALICE).json()
        assert status["hasEmbedding"] is True
        assert status["embeddingDimensions"] == 128
        assert status["embeddingModel"] == "hashing-128"
        assert len(status["embeddingSample"]) == 5

        hits = client.post(
            "/notes/search", json={"query": "kyoto trip visit temples in spring"}, headers=ALICE
        ).json()["items"]
        assert [hit["noteId"] for hit in hits] == [note_id]
        assert client.post("/notes/search", json={"query": "kyoto"}, headers=BOB).json() == {
            "items": []
        }

        updated = client.patch(f"/notes/{note_id}", json={"is_starred": True}, headers=ALICE)
        assert updated.json()["isStarred"] is True
        assert app.state.embedding_pipeline.pending == 0

        assert client.get(f"/notes/{note_id}", headers=BOB).status_code == 404
        assert client.post("/notes", json={"title": " "}, headers=ALICE).status_code == 400
        assert client.patch(f"/notes/{note_id}", json={}, headers=ALICE).status_code == 400

        assert client.delete(f"/notes/{note_id}", headers=ALICE).status_code == 200
        assert client.get(f"/notes/{note_id}", headers=ALICE).status_code == 404


def test_chat_answers_reference_owner_notes() -> None:
    app = create_app(_settings(), completion_provider=MockLLM(chunks=["Go in April."]))

    with TestClient(app) as client:
        note_id = client.post(
            "/notes",
            json={"title": "kyoto trip", "content": "visit temples in spring"},
            headers=ALICE,
        ).json()["id"]
        client.portal.call(app.state.embedding_pipeline.drain)

        response = client.post(
            "/chat",
            json={"messages": [{"role": "user", "content": "kyoto trip visit temples in spring"}]},
            headers=ALICE,
        )

        start = _frames(response.text)[0][1]
        assert [ref["noteId"] for ref in start["references"]] == [note_id]
        answer = client.get("/messages", headers=ALICE).json()["items"][-1]
        assert answer["references"][0]["noteId"] == note_id


def test_surface_lifecycle_and_assist() -> None:
    llm = MockLLM(
        completions=[
            Completion(
                tool_calls=[
                    ToolCall(
                        name="judge_tool",
                        arguments=json.dumps({"tools": ["change_form_values-profile"]}),
                    )
                ]
            ),
            Completion(
                tool_calls=[
                    ToolCall(
                        name="change_form_values-profile'",
                        arguments=json.dumps({"name": "Ada", "age": 36}),
                        id="call_1",
                    )
                ],
                finish_reason="tool_calls",
            ),
        ]
    )
    client = TestClient(create_app(_settings(), completion_provider=llm))

    opened = client.post(
        "/surfaces",
        json={
            "surface_id": "profile-page",
            "forms": [
                {
                    "form_id": "profile",
                    "fields": [{"name": "name", "label": "Name"}, {"name": "age", "type": "number"}],
                }
            ],
            "text_targets": ["title"],
        },
        headers=ALICE,
    )
    assert opened.status_code == 200
    assert "change_form_values-profile" in opened.json()["tools"]

    tools = client.get("/surfaces/profile-page/tools", headers=ALICE).json()["items"]
    form_tool = next(t for t in tools if t["name"] == "change_form_values-profile")
    assert form_tool["parameters"]["properties"]["age"]["type"] == "number"
    assert client.get("/surfaces/profile-page/tools", headers=BOB).status_code == 404

    run = client.post(
        "/surfaces/profile-page/assist", json={"query": "my name is Ada, 36"}, headers=ALICE
    ).json()
    assert run["answer"] is None
    assert [r["success"] for r in run["results"]] == [True]
    assert [s["status"] for s in run["statuses"]] == ["pending", "executing", "completed"]
    assert run["events"] == [{"name": "profile", "payload": {"name": "Ada", "age": 36}}]

    assert client.delete("/surfaces/profile-page", headers=ALICE).status_code == 200
    assert client.get("/surfaces/profile-page/tools", headers=ALICE).status_code == 404


def test_abort_endpoint_reports_when_nothing_is_running() -> None:
    client = TestClient(create_app(_settings(), completion_provider=MockLLM()))

    response = client.post("/chat/tab-1/abort", headers=ALICE)

    assert response.json() == {"aborted": False}


def test_abort_endpoint_stops_a_running_stream() -> None:
    app = create_app(_settings(), completion_provider=GatedLLM())
    request = ChatRequest(messages=[{"role": "user", "content": "hi"}], surface_id="tab-1")

    async def _drain(frames):
        return [frame async for frame in frames]

    with TestClient(app) as client:
        controller = app.state.controller
        frames = client.portal.call(controller.stream, "alice", request)
        assert controller.active_sessions() == 1

        response = client.post("/chat/tab-1/abort", headers=ALICE)

        assert response.json() == {"aborted": True}
        assert client.portal.call(_drain, frames) == []
        assert controller.active_sessions() == 0
        messages = client.get("/messages", headers=ALICE).json()["items"]
        assert [m["role"] for m in messages] == ["user"]


def test_editing_note_text_reembeds_in_background() -> None:
    app = create_app(_settings(), completion_provider=MockLLM())

    with TestClient(app) as client:
        note_id = client.post(
            "/notes", json={"title": "garden", "content": "plant tomatoes"}, headers=ALICE
        ).json()["id"]
        client.portal.call(app.state.embedding_pipeline.drain)
        before = client.get(f"/notes/{note_id}/embedding", headers=ALICE).json()
        old_vector = app.state.note_store.get("alice", note_id).embedding.vector

        updated = client.patch(
            f"/notes/{note_id}", json={"content": "prune the roses in winter"}, headers=ALICE
        )
        assert updated.status_code == 200
        client.portal.call(app.state.embedding_pipeline.drain)

        after = client.get(f"/notes/{note_id}/embedding", headers=ALICE).json()
        assert datetime.fromisoformat(after["lastEmbeddedAt"]) > datetime.fromisoformat(
            before["lastEmbeddedAt"]
        )
        assert after["embeddingModel"] == "hashing-128"
        assert app.state.note_store.get("alice", note_id).embedding.vector != old_vector


def test_failed_reembedding_keeps_previous_vector() -> None:
    embedder = FlakyEmbedder(128)
    app = create_app(_settings(), completion_provider=MockLLM(), embedding_provider=embedder)

    with TestClient(app) as client:
        note_id = client.post(
            "/notes", json={"title": "garden", "content": "plant tomatoes"}, headers=ALICE
        ).json()["id"]
        client.portal.call(app.state.embedding_pipeline.drain)
        before = client.get(f"/notes/{note_id}/embedding", headers=ALICE).json()
        old_vector = app.state.note_store.get("alice", note_id).embedding.vector

        embedder.broken = True
        updated = client.patch(f"/notes/{note_id}", json={"title": "orchard"}, headers=ALICE)
        client.portal.call(app.state.embedding_pipeline.drain)

        assert updated.status_code == 200
        assert updated.json()["title"] == "orchard"
        after = client.get(f"/notes/{note_id}/embedding", headers=ALICE).json()
        assert after["lastEmbeddedAt"] == before["lastEmbeddedAt"]
        assert app.state.note_store.get("alice", note_id).embedding.vector == old_vector
