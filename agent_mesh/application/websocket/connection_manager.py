from typing import Dict, Set, Optional
from fastapi import WebSocket
from pydantic import BaseModel, Field
import asyncio
from datetime import datetime
import structlog

from .schema.events import BaseEvent, ConnectionEvent, ErrorEvent

logger = structlog.get_logger(__name__)


class SessionInfo(BaseModel):
    connected_at: datetime = Field(default_factory=datetime.utcnow)
    last_activity: datetime = Field(default_factory=datetime.utcnow)
    messages_received: int = 0
    events_sent: int = 0


class ConnectionManager:
    """Tracks mesh WebSocket sessions.

    Every session is one socket keyed by the client-chosen session id. A
    second connect with the same id replaces the first socket. Sessions
    with no traffic for ``stale_after_seconds`` are closed by
    ``health_check``.
    """

    def __init__(self, stale_after_seconds: int = 300):
        self.active_connections: Dict[str, WebSocket] = {}
        self.sessions: Dict[str, SessionInfo] = {}
        self.stale_after_seconds = stale_after_seconds
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, session_id: str):
        await websocket.accept()

        async with self._lock:
            previous = self.active_connections.get(session_id)
            self.active_connections[session_id] = websocket
            self.sessions[session_id] = SessionInfo()

        if previous is not None:
            logger.warning("Replacing existing session socket", session_id=session_id)
            await self._close(previous, session_id)

        await self.send_event(session_id, ConnectionEvent(status="connected"))
        logger.info("WebSocket connected", session_id=session_id)

    async def disconnect(self, session_id: str, websocket: Optional[WebSocket] = None):
        """Drop a session; with ``websocket`` only if that socket is still current"""
        async with self._lock:
            current = self.active_connections.get(session_id)
            if current is None or (websocket is not None and current is not websocket):
                return
            del self.active_connections[session_id]
            self.sessions.pop(session_id, None)

        await self._close(current, session_id)
        logger.info("WebSocket disconnected", session_id=session_id)

    @staticmethod
    async def _close(websocket: WebSocket, session_id: str):
        try:
            await websocket.close()
        except Exception as e:
            logger.debug("WebSocket already closed", session_id=session_id, error=str(e))

    def touch(self, session_id: str):
        """Record an inbound message"""
        info = self.sessions.get(session_id)
        if info is not None:
            info.messages_received += 1
            info.last_activity = datetime.utcnow()

    async def send_event(self, session_id: str, event: BaseEvent) -> bool:
        websocket = self.active_connections.get(session_id)
        if websocket is None:
            logger.warning("Attempted to send to disconnected session", session_id=session_id)
            return False

        if event.session_id is None:
            event.session_id = session_id

        try:
            await websocket.send_json(event.model_dump(mode="json"))
        except Exception as e:
            logger.error("Failed to send event", session_id=session_id, error=str(e))
            await self.disconnect(session_id, websocket)
            return False

        info = self.sessions.get(session_id)
        if info is not None:
            info.events_sent += 1
            info.last_activity = datetime.utcnow()
        return True

    async def send_error(self, session_id: str, error_message: str, error_code: Optional[str] = None):
        await self.send_event(
            session_id,
            ErrorEvent(payload={"message": error_message}, error_code=error_code),
        )

    def get_active_sessions(self) -> Set[str]:
        return set(self.active_connections.keys())

    def get_session_info(self, session_id: str) -> Optional[SessionInfo]:
        return self.sessions.get(session_id)

    async def disconnect_stale(self) -> Set[str]:
        current_time = datetime.utcnow()
        stale_sessions = {
            session_id
            for session_id, info in list(self.sessions.items())
            if (current_time - info.last_activity).total_seconds() > self.stale_after_seconds
        }

        for session_id in stale_sessions:
            logger.warning("Disconnecting stale session", session_id=session_id)
            await self.disconnect(session_id)
        return stale_sessions

    async def health_check(self, interval_seconds: float = 60):
        while True:
            try:
                await self.disconnect_stale()
            except Exception as e:
                logger.error("Health check error", error=str(e))

            await asyncio.sleep(interval_seconds)

    async def close_all(self):
        for session_id in list(self.active_connections.keys()):
            await self.disconnect(session_id)
