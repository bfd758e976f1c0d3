"""
Tests for SheetChat API endpoints.
"""

import json

import pytest
from fastapi.testclient import TestClient

from sheetchat.context import AppContext
from sheetchat.main import create_app

from conftest import SALES_CSV, ScriptedModelClient, call, text, usage


def _sse_events(body: str) -> list[dict]:
    """JSON payloads of the data: lines of an SSE body."""
    return [
        json.loads(line[len("data:"):].strip())
        for line in body.splitlines()
        if line.startswith("data:")
    ]


def _upload(client, content: bytes = SALES_CSV, filename: str = "sales.csv") -> dict:
    response = client.post("/api/files", files={"file": (filename, content, "text/csv")})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def model():
    return ScriptedModelClient([[text("Hello.")]])


@pytest.fixture
def context(settings, model):
    return AppContext(settings=settings, model=model)


@pytest.fixture
def client(context):
    """Create test client around an isolated app context."""
    with TestClient(create_app(context)) as test_client:
        yield test_client


class TestHealth:
    """Health check tests."""

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert data["functions"][0] == "read_file"
        assert "value_counts" in data["functions"]

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


class TestOpenAPI:
    """OpenAPI schema tests."""

    def test_openapi_available(self, client):
        response = client.get("/openapi.json")
        assert response.status_code == 200

        data = response.json()
        assert data["openapi"].startswith("3.")
        assert data["info"]["title"] == "SheetChat API"


class TestFiles:
    """Upload, listing and deletion."""

    def test_upload_and_get(self, client):
        uploaded = _upload(client)

        assert uploaded["filename"] == "sales.csv"
        assert uploaded["sheets"][0]["row_count"] == 3
        assert uploaded["sheets"][0]["columns"] == [
            {"name": "region", "type": "string"},
            {"name": "amount", "type": "number"},
        ]

        response = client.get(f"/api/files/{uploaded['id']}")
        assert response.status_code == 200
        assert response.json()["content_hash"] == uploaded["content_hash"]

    def test_list_in_upload_order(self, client):
        first = _upload(client, filename="a.csv")
        second = _upload(client, b"x\n1\n", "b.csv")

        data = client.get("/api/files").json()
        assert data["total"] == 2
        assert [f["id"] for f in data["items"]] == [first["id"], second["id"]]

    def test_unsupported_upload(self, client):
        response = client.post("/api/files", files={"file": ("notes.txt", b"hello", "text/plain")})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNSUPPORTED_FILE"

    def test_delete(self, client):
        uploaded = _upload(client)

        assert client.delete(f"/api/files/{uploaded['id']}").status_code == 204
        response = client.get(f"/api/files/{uploaded['id']}")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "FILE_NOT_FOUND"
        assert client.delete(f"/api/files/{uploaded['id']}").status_code == 404

    def test_delete_while_reading_conflicts(self, client, context):
        uploaded = _upload(client)

        with context.store.reading(uploaded["id"]):
            response = client.delete(f"/api/files/{uploaded['id']}")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "FILE_IN_USE"
        assert client.delete(f"/api/files/{uploaded['id']}").status_code == 204


class TestDeduplication:
    """Duplicate detection and removal endpoints."""

    def test_duplicates_and_deduplicate(self, client):
        first = _upload(client, filename="sales.csv")
        second = _upload(client, filename="sales copy.csv")
        other = _upload(client, b"x\n1\n", "other.csv")

        report = client.get("/api/files/duplicates", params={"keep": "oldest"}).json()
        assert report["policy"] == "oldest"
        assert report["removable"] == 1
        assert report["groups"][0]["file_ids"] == [first["id"], second["id"]]
        assert report["groups"][0]["keep_id"] == first["id"]

        result = client.post("/api/files/deduplicate", params={"keep": "oldest"}).json()
        assert result == {"policy": "oldest", "deleted_ids": [second["id"]], "deleted": 1}

        remaining = [f["id"] for f in client.get("/api/files").json()["items"]]
        assert remaining == [first["id"], other["id"]]

    def test_unknown_policy_rejected(self, client):
        assert client.get("/api/files/duplicates", params={"keep": "largest"}).status_code == 422


class TestChat:
    """Streaming chat turns."""

    @pytest.fixture
    def model(self):
        return ScriptedModelClient([[text("Checking.")], [text("Hi.")]])

    def test_tool_calling_turn_streams_events(self, client, context, model):
        uploaded = _upload(client)
        model._script = [
            [call("c1", "head", file_id=uploaded["id"], n=2), usage(12, 3)],
            [text("The first two regions are east and west."), usage(20, 8)],
        ]

        response = client.post("/api/chat", json={"message": "Show me two rows", "file_ids": [uploaded["id"]]})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        conversation_id = response.headers["X-Conversation-ID"]

        events = _sse_events(response.text)
        assert [e["type"] for e in events] == ["tool_call", "tool_result", "chunk", "done"]
        assert events[1]["result"]["rows"] == [
            {"region": "east", "amount": 10},
            {"region": "west", "amount": 20},
        ]
        assert events[-1]["usage"] == {"input_tokens": 32, "output_tokens": 11}

        conversation = client.get(f"/api/chat/{conversation_id}").json()
        assert conversation["file_ids"] == [uploaded["id"]]
        assert conversation["turn_in_progress"] is False
        assert [m["role"] for m in conversation["messages"]] == ["user", "assistant", "tool", "assistant"]
        assert conversation["messages"][1]["tool_calls"][0]["status"] == "executed"

        checkpoints = client.get(f"/api/chat/{conversation_id}/checkpoints").json()
        assert checkpoints["total"] == 1
        assert checkpoints["items"][0]["tool"] == "head"
        assert checkpoints["items"][0]["tool_call_id"] == "c1"

    def test_follow_up_continues_conversation(self, client, model):
        first = client.post("/api/chat", json={"message": "hi"})
        conversation_id = first.headers["X-Conversation-ID"]

        second = client.post("/api/chat", json={"message": "again", "conversation_id": conversation_id})

        assert _sse_events(second.text)[-1]["type"] == "done"
        assert [m.role for m in model.submissions[1]] == ["user", "assistant", "user"]

    def test_too_many_files(self, client, settings):
        uploaded = _upload(client)
        file_ids = [uploaded["id"]] * (settings.orchestrator.max_files_per_turn + 1)

        response = client.post("/api/chat", json={"message": "hi", "file_ids": file_ids})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "TOO_MANY_FILES"

    def test_unknown_file(self, client):
        response = client.post("/api/chat", json={"message": "hi", "file_ids": ["file_missing"]})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "FILE_NOT_FOUND"

    def test_empty_message_rejected(self, client):
        assert client.post("/api/chat", json={"message": ""}).status_code == 422

    def test_unknown_conversation(self, client):
        assert client.get("/api/chat/conv_missing").status_code == 404
        assert client.get("/api/chat/conv_missing/checkpoints").status_code == 404

        response = client.post("/api/chat/conv_missing/cancel")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_cancel_idle_conversation(self, client):
        conversation_id = client.post("/api/chat", json={"message": "hi"}).headers["X-Conversation-ID"]

        response = client.post(f"/api/chat/{conversation_id}/cancel")

        assert response.status_code == 200
        assert response.json() == {"conversation_id": conversation_id, "cancelled": False}
