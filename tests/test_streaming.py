"""Tests for WebSocket session tracking and mesh event streaming."""

from datetime import datetime, timedelta

import pytest
from unittest.mock import AsyncMock

from agent_mesh.application.websocket.connection_manager import ConnectionManager
from agent_mesh.domain.models.events import MeshEvent, MeshEventType
from agent_mesh.domain.streaming.streaming_handler import StreamingHandler


def fake_socket():
    websocket = AsyncMock()
    websocket.sent = []
    websocket.send_json.side_effect = websocket.sent.append
    return websocket


@pytest.fixture
def manager():
    return ConnectionManager(stale_after_seconds=60)


class TestConnectionManager:
    """Session lifecycle."""

    @pytest.mark.asyncio
    async def test_connect_confirms_session(self, manager):
        websocket = fake_socket()

        await manager.connect(websocket, "s1")

        websocket.accept.assert_awaited_once()
        assert websocket.sent[0]["type"] == "connection"
        assert websocket.sent[0]["session_id"] == "s1"
        assert manager.get_session_info("s1").events_sent == 1

    @pytest.mark.asyncio
    async def test_reconnect_replaces_socket(self, manager):
        old, new = fake_socket(), fake_socket()
        await manager.connect(old, "s1")
        await manager.connect(new, "s1")

        old.close.assert_awaited_once()
        await manager.disconnect("s1", old)

        assert manager.get_active_sessions() == {"s1"}

    @pytest.mark.asyncio
    async def test_failed_send_drops_session(self, manager):
        websocket = fake_socket()
        await manager.connect(websocket, "s1")
        websocket.send_json.side_effect = RuntimeError("closed")

        await manager.send_error("s1", "boom")

        assert manager.get_active_sessions() == set()
        websocket.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stale_sessions_are_closed(self, manager):
        await manager.connect(fake_socket(), "idle")
        await manager.connect(fake_socket(), "busy")
        manager.sessions["idle"].last_activity = datetime.utcnow() - timedelta(minutes=5)
        manager.touch("busy")

        assert await manager.disconnect_stale() == {"idle"}
        assert manager.get_active_sessions() == {"busy"}
        assert manager.get_session_info("busy").messages_received == 1


class TestStreamingHandler:
    @pytest.mark.asyncio
    async def test_run_events_become_components(self, manager):
        websocket = fake_socket()
        await manager.connect(websocket, "s1")
        handler = StreamingHandler(manager)
        forward = handler.for_session("s1")

        await forward(MeshEvent(type=MeshEventType.PLAN_CREATED, data={
            "plan_id": "p1",
            "analysis": "one step",
            "tasks": [{"id": "t1", "satellite": "edison", "description": "write"}],
        }))
        await forward(MeshEvent(type=MeshEventType.TASK_COMPLETED, data={
            "node_id": "node_0", "satellite": "edison", "success": False, "output": "", "error": "boom",
        }))
        await forward(MeshEvent(type=MeshEventType.ALL_COMPLETE, data={"response": "Done"}))

        payloads = [e["payload"] for e in websocket.sent[1:]]
        assert payloads[0]["component"] == "plan"
        assert payloads[1]["data"] == {"status": "Planned 1 tasks", "step_index": 0, "total_steps": 1}
        assert payloads[2]["data"]["error"] == "boom"
        assert payloads[3]["data"] == {"status": "edison failed", "step_index": 1, "total_steps": 1}
        assert payloads[4] == "Done"
        assert payloads[5]["data"]["status"] == "_workflow_finish"

    @pytest.mark.asyncio
    async def test_mesh_error_becomes_error_event(self, manager):
        websocket = fake_socket()
        await manager.connect(websocket, "s1")

        await StreamingHandler(manager).handle_mesh_event("s1", MeshEvent(
            type=MeshEventType.ERROR,
            data={"error": "Planning failed"},
        ))

        assert websocket.sent[-1]["type"] == "error"
        assert websocket.sent[-1]["payload"] == {"message": "Planning failed"}
