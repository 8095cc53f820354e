"""Tests for the HTTP routes and the mesh WebSocket."""

import json

import pytest
from fastapi.testclient import TestClient

from agent_mesh.application.api.api_server import create_app
from agent_mesh.domain.orchestration.subagent.resource_manager import NO_EVICTION_MESSAGE

PLAN_PROMPT = "Break the following request into tasks."


@pytest.fixture
def client(mesh, settings, generator):
    generator.reply(PLAN_PROMPT, json.dumps({
        "analysis": "one step",
        "tasks": [{"description": "Describe tea history", "satellite": "edison"}],
    }))
    generator.reply("Create high-quality content", "Tea content")
    generator.reply("The user asked:", "Final answer")
    with TestClient(create_app(mesh, settings)) as test_client:
        yield test_client


class TestRoutes:
    """REST surface over one mesh."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["processing"] is False

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    def test_chat(self, client):
        response = client.post("/api/v1/mesh/chat", json={"message": "Tell me about tea"})

        assert response.status_code == 200
        assert response.json() == {"response": "Final answer"}

    def test_chat_while_busy(self, client, mesh):
        mesh._processing = True

        response = client.post("/api/v1/mesh/chat", json={"message": "Tell me about tea"})

        assert response.status_code == 409
        mesh._processing = False

    def test_empty_chat_message_is_rejected(self, client):
        assert client.post("/api/v1/mesh/chat", json={"message": ""}).status_code == 422

    def test_documents_and_search(self, client):
        created = client.post("/api/v1/documents", json={
            "content": "Oolong is partially oxidized",
            "metadata": {"title": "Oolong", "type": "text"},
        })
        assert created.status_code == 201
        doc_id = created.json()["ids"][0]

        hits = client.get("/api/v1/documents/search", params={"q": "oolong", "mode": "keyword"}).json()

        assert [hit["id"] for hit in hits] == [doc_id]
        assert hits[0]["match_type"] == "keyword"
        assert hits[0]["metadata"]["title"] == "Oolong"

    def test_chunked_document(self, client):
        response = client.post("/api/v1/documents", json={"content": "word " * 300, "chunk": True})

        assert response.status_code == 201
        assert len(response.json()["ids"]) > 1

    def test_context_routes(self, client):
        assert client.post("/api/v1/context/evict").json() == {"message": NO_EVICTION_MESSAGE}

        client.post("/api/v1/mesh/chat", json={"message": "Tell me about tea"})
        context = client.get("/api/v1/context").json()
        assert context["summary"]["current_turns"] == 2
        assert [m["role"] for m in context["messages"]] == ["user", "assistant"]

        assert client.delete("/api/v1/context").status_code == 204
        assert client.get("/api/v1/context").json()["summary"]["current_turns"] == 0

    def test_mesh_state(self, client):
        client.post("/api/v1/mesh/chat", json={"message": "Tell me about tea"})
        state = client.get("/api/v1/mesh/state").json()

        assert state["processing"] is False
        assert "documents" in state["data"]
        assert "shaka" in state["satellites"]
        assert state["metrics"]["mesh_requests"] >= 1


class TestMeshWebSocket:
    def test_user_message_streams_progress_and_answer(self, client):
        with client.websocket_connect("/ws/mesh/session-1") as ws:
            assert ws.receive_json()["type"] == "connection"
            assert ws.receive_json()["payload"]["data"]["status"] == "Mesh ready"

            ws.send_json({"type": "user_message", "content": "Tell me about tea"})

            components = []
            while True:
                event = ws.receive_json()
                if event["type"] == "markdown":
                    break
                components.append((event["payload"]["component"], event["payload"]["data"]))
            statuses = [data["status"] for kind, data in components if kind == "progress"]
            plans = [data for kind, data in components if kind == "plan"]
            task_results = [data for kind, data in components if kind == "task_result"]

            assert event["payload"] == "Final answer"
            assert statuses[0] == "Processing your request..."
            assert "Planned 1 tasks" in statuses
            assert "edison done" in statuses
            assert plans[0]["tasks"][0]["satellite"] == "edison"
            assert task_results[0]["output"] == "Tea content"
            assert ws.receive_json()["payload"]["data"]["status"] == "_workflow_finish"

    def test_unsupported_event_type(self, client):
        with client.websocket_connect("/ws/mesh/session-2") as ws:
            ws.receive_json()
            ws.receive_json()

            ws.send_json({"type": "markdown", "payload": "hi"})

            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["error_code"] == "unsupported_event"

    def test_invalid_user_message(self, client):
        with client.websocket_connect("/ws/mesh/session-3") as ws:
            ws.receive_json()
            ws.receive_json()

            ws.send_json({"type": "user_message"})

            assert ws.receive_json()["error_code"] == "invalid_message"
