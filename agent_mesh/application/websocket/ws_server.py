from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
import structlog

from .connection_manager import ConnectionManager
from .schema.events import UserMessage, EventType
from agent_mesh.domain.models.errors import MeshBusyError
from agent_mesh.domain.orchestration.core.main_agent import AgentMesh
from agent_mesh.domain.streaming.streaming_handler import StreamingHandler

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.websocket("/ws/mesh/{session_id}")
async def mesh_websocket(websocket: WebSocket, session_id: str):
    """Runs user messages through the mesh and streams its events back"""

    mesh: AgentMesh = websocket.app.state.mesh
    connection_manager: ConnectionManager = websocket.app.state.connection_manager
    streaming_handler = StreamingHandler(connection_manager)

    await connection_manager.connect(websocket, session_id)

    try:
        await streaming_handler.send_progress(session_id, "Mesh ready")

        while True:
            data = await websocket.receive_json()
            connection_manager.touch(session_id)

            if data.get("type") != EventType.USER_MESSAGE.value:
                await connection_manager.send_error(
                    session_id,
                    f"Unsupported event type: {data.get('type')}",
                    error_code="unsupported_event",
                )
                continue

            try:
                message = UserMessage(**data)
            except ValidationError as e:
                await connection_manager.send_error(session_id, f"Invalid message: {e}", error_code="invalid_message")
                continue

            await process_user_message(mesh, streaming_handler, session_id, message)

    except WebSocketDisconnect:
        logger.info("Client disconnected", session_id=session_id)
    except Exception as e:
        logger.error("WebSocket error", error=str(e), session_id=session_id)
    finally:
        await connection_manager.disconnect(session_id, websocket)


async def process_user_message(
    mesh: AgentMesh,
    streaming_handler: StreamingHandler,
    session_id: str,
    message: UserMessage,
):
    """Process one message; mesh events for the run go to this session only"""

    await streaming_handler.send_progress(session_id, "Processing your request...")
    unsubscribe = mesh.on_event(streaming_handler.for_session(session_id))

    try:
        with structlog.contextvars.bound_contextvars(session_id=session_id):
            await mesh.process_request(message.content)
    except MeshBusyError as e:
        await streaming_handler.connection_manager.send_error(session_id, str(e), error_code="busy")
    except Exception as e:
        # Already delivered to the session as a mesh error event
        logger.error("Error in mesh processing", error=str(e), session_id=session_id)
    finally:
        unsubscribe()
