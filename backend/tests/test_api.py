"""HTTP tests for request validation, resume and thread management."""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from chatzo_models import Message, TextPart
from chatzo.api import app, get_media, get_model_resolver, get_store, shutdown_event
from chatzo.providers.base import TextDelta
from chatzo.services.background import spawn_background

from conftest import FakeLanguageModel, FakeMediaStore, FakeStore, resolved_text

HEADERS = {"X-Clerk-Id": "clerk_test"}


@pytest.fixture
def api_store() -> FakeStore:
    store = FakeStore()
    store.add_user("clerk_test")
    return store


@pytest.fixture
def client(api_store, monkeypatch):
    monkeypatch.setattr(
        "chatzo.services.chat_stream.trigger_title_generation", lambda *args: None
    )
    app.dependency_overrides[get_store] = lambda: api_store
    app.dependency_overrides[get_media] = lambda: FakeMediaStore()
    yield TestClient(app)
    app.dependency_overrides.clear()


def owner_id(store: FakeStore) -> str:
    return store.users["clerk_test"].id


def chat_body(**overrides) -> dict:
    body = {
        "message": {"parts": [{"type": "text", "text": "hello"}]},
        "model": "gemini-2.5-flash",
    }
    body.update(overrides)
    return body


class TestChatValidation:
    """Errors raised before any stream opens."""

    def test_missing_identity(self, client):
        """Test requests without an identity header are rejected."""
        response = client.post("/chat", json=chat_body())

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "unauthorized:chat"

    def test_unknown_identity(self, client):
        response = client.post("/chat", json=chat_body(), headers={"X-Clerk-Id": "stranger"})

        assert response.status_code == 401

    def test_edit_without_thread(self, client):
        """Test editFromMessageId without threadId is a bad request."""
        response = client.post(
            "/chat", json=chat_body(editFromMessageId="msg_1", editMode="edit"), headers=HEADERS
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "bad_request:chat"

    def test_unknown_model(self, client, api_store):
        """Test an unknown model is rejected without creating a thread."""
        response = client.post("/chat", json=chat_body(model="no-such-model"), headers=HEADERS)

        assert response.status_code == 400
        assert api_store.threads == {}

    def test_foreign_thread(self, client, api_store):
        other = api_store.add_user("other")
        thread = api_store.add_thread(other.id)

        response = client.post("/chat", json=chat_body(threadId=thread.id), headers=HEADERS)

        assert response.status_code == 403


class TestChatStreaming:
    def test_streams_data_protocol(self, client, api_store):
        """Test a turn streams protocol lines and persists the answer."""
        model = FakeLanguageModel([[TextDelta("Hi!")]])
        app.dependency_overrides[get_model_resolver] = lambda: (lambda model_id: resolved_text(model))

        response = client.post("/chat", json=chat_body(), headers=HEADERS)

        assert response.status_code == 200
        assert response.headers["x-vercel-ai-data-stream"] == "v1"
        lines = response.text.splitlines()
        assert lines[0].startswith('2:[{"type":"thread_id"')
        assert '0:"Hi!"' in lines
        assert lines[-1].startswith("d:")

        thread_id = json.loads(lines[0][2:])[0]["content"]
        messages = api_store.live(thread_id)
        assert messages[-1].parts[0].text == "Hi!"


class TestResume:
    """GET /chat replays the last assistant message."""

    def test_missing_thread(self, client):
        response = client.get("/chat", params={"chatId": "missing"}, headers=HEADERS)

        assert response.status_code == 404

    def test_foreign_thread(self, client, api_store):
        other = api_store.add_user("other")
        thread = api_store.add_thread(other.id)

        response = client.get("/chat", params={"chatId": thread.id}, headers=HEADERS)

        assert response.status_code == 403

    def test_empty_when_last_is_user(self, client, api_store):
        """Test nothing is replayed while the last message is a user turn."""
        thread = api_store.add_thread(
            owner_id(api_store),
            [Message(id="u1", thread_id="", role="user", parts=[TextPart(text="hi")])],
        )

        response = client.get("/chat", params={"chatId": thread.id}, headers=HEADERS)

        assert response.status_code == 200
        assert response.text == ""

    def test_empty_thread(self, client, api_store):
        thread = api_store.add_thread(owner_id(api_store))

        response = client.get("/chat", params={"chatId": thread.id}, headers=HEADERS)

        assert response.text == ""

    def test_replays_last_assistant(self, client, api_store):
        """Test the last assistant message is sent as one append-message frame."""
        thread = api_store.add_thread(
            owner_id(api_store),
            [
                Message(id="u1", thread_id="", role="user", parts=[TextPart(text="hi")]),
                Message(id="a1", thread_id="", role="assistant", parts=[TextPart(text="hello")]),
            ],
        )

        response = client.get("/chat", params={"chatId": thread.id}, headers=HEADERS)

        lines = response.text.splitlines()
        assert len(lines) == 1
        payload = json.loads(lines[0][2:])[0]
        assert payload["type"] == "append-message"
        message = json.loads(payload["message"])
        assert message["id"] == "a1"
        assert message["parts"] == [{"type": "text", "text": "hello"}]


class TestThreads:
    """Thread and message management."""

    def test_rename_validation(self, client, api_store):
        """Test titles must be 1 to 100 characters."""
        thread = api_store.add_thread(owner_id(api_store))

        blank = client.patch(f"/threads/{thread.id}", json={"title": "   "}, headers=HEADERS)
        long = client.patch(f"/threads/{thread.id}", json={"title": "x" * 101}, headers=HEADERS)
        ok = client.patch(f"/threads/{thread.id}", json={"title": " Trip plans "}, headers=HEADERS)

        assert blank.status_code == 400
        assert long.status_code == 400
        assert ok.status_code == 200
        assert ok.json()["title"] == "Trip plans"

    def test_pin_toggles(self, client, api_store):
        thread = api_store.add_thread(owner_id(api_store))

        first = client.post(f"/threads/{thread.id}/pin", headers=HEADERS)
        second = client.post(f"/threads/{thread.id}/pin", headers=HEADERS)

        assert first.json()["pinned"] is True
        assert second.json()["pinned"] is False

    def test_list_and_search(self, client, api_store):
        thread = api_store.add_thread(owner_id(api_store))
        api_store.threads[thread.id].title = "Python Data Analysis"
        api_store.add_thread(owner_id(api_store))

        listed = client.get("/threads", headers=HEADERS).json()
        found = client.get("/threads/search", params={"q": "python"}, headers=HEADERS).json()

        assert listed["total"] == 2
        assert [t["id"] for t in found["threads"]] == [thread.id]

    def test_soft_delete_after(self, client, api_store):
        """Test deleting after a message soft-deletes the rest of the thread."""
        thread = api_store.add_thread(
            owner_id(api_store),
            [
                Message(id="u1", thread_id="", role="user", parts=[TextPart(text="a")]),
                Message(id="a1", thread_id="", role="assistant", parts=[TextPart(text="b")]),
                Message(id="u2", thread_id="", role="user", parts=[TextPart(text="c")]),
            ],
        )

        response = client.delete(
            f"/threads/{thread.id}/messages", params={"after": "u1"}, headers=HEADERS
        )

        assert response.json() == {"deleted": 2}
        assert [m.id for m in api_store.live(thread.id)] == ["u1"]

    def test_soft_delete_unknown_message(self, client, api_store):
        thread = api_store.add_thread(owner_id(api_store))

        response = client.delete(
            f"/threads/{thread.id}/messages", params={"after": "nope"}, headers=HEADERS
        )

        assert response.status_code == 404

    def test_unknown_message_uses_error_code(self, client, api_store):
        """Test a missing message returns the structured not_found payload."""
        thread = api_store.add_thread(owner_id(api_store))

        response = client.get(f"/threads/{thread.id}/messages/nope", headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "not_found:message"

    def test_delete_thread(self, client, api_store):
        thread = api_store.add_thread(owner_id(api_store))

        response = client.delete(f"/threads/{thread.id}", headers=HEADERS)

        assert response.status_code == 200
        assert thread.id not in api_store.threads

    def test_models_catalogue(self, client):
        models = client.get("/models").json()

        assert any(m["id"] == "gpt-image-1" and m["mode"] == "image" for m in models)


class TestShutdown:
    """Application shutdown."""

    @pytest.mark.asyncio
    async def test_waits_for_background_tasks(self, monkeypatch):
        """Test running background jobs finish before the pool is closed."""
        events = []

        async def job():
            await asyncio.sleep(0.01)
            events.append("job")

        class FakeDatabase:
            async def disconnect(self):
                events.append("disconnect")

        monkeypatch.setattr("chatzo.api.db", FakeDatabase())
        spawn_background(job(), name="slow-job")

        await shutdown_event()

        assert events == ["job", "disconnect"]
