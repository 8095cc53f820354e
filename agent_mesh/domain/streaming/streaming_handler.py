from typing import Awaitable, Callable, Dict, Optional
import structlog

from agent_mesh.application.websocket.connection_manager import ConnectionManager
from agent_mesh.application.websocket.schema.events import (
    ComponentEvent,
    ComponentPayload,
    ComponentType,
    MarkdownEvent,
    PlanData,
    PlanStep,
    ProgressData,
    TaskResultData,
)
from agent_mesh.domain.models.events import MeshEvent, MeshEventType

logger = structlog.get_logger(__name__)


class StreamingHandler:
    """Streams mesh events to a WebSocket session.

    Progress events carry ``step_index``/``total_steps`` counted per session
    from the plan size and the completed tasks.
    """

    def __init__(self, connection_manager: Optional[ConnectionManager] = None):
        self.connection_manager = connection_manager or ConnectionManager()
        self._progress: Dict[str, Dict[str, int]] = {}

    def for_session(self, session_id: str) -> Callable[[MeshEvent], Awaitable[None]]:
        """Subscriber that forwards every mesh event to ``session_id``"""

        async def forward(event: MeshEvent) -> None:
            await self.handle_mesh_event(session_id, event)

        return forward

    async def handle_mesh_event(self, session_id: str, event: MeshEvent):
        logger.debug("Processing mesh event", session_id=session_id, event_type=event.type.value)

        data = event.data
        if event.type == MeshEventType.PLAN_CREATED:
            total = len(data.get("tasks", []))
            self._progress[session_id] = {"done": 0, "total": total}
            await self.send_component(session_id, ComponentType.PLAN, PlanData(
                plan_id=data.get("plan_id", ""),
                analysis=data.get("analysis", ""),
                tasks=[PlanStep(**task) for task in data.get("tasks", [])],
            ))
            await self.send_progress(session_id, f"Planned {total} tasks", step_index=0, total_steps=total)

        elif event.type == MeshEventType.TASK_STARTED:
            progress = self._progress.get(session_id, {})
            await self.send_progress(
                session_id,
                f"{data.get('satellite')}: {data.get('description', '')}",
                step_index=progress.get("done"),
                total_steps=progress.get("total"),
            )

        elif event.type == MeshEventType.TASK_COMPLETED:
            progress = self._progress.setdefault(session_id, {"done": 0, "total": 0})
            progress["done"] += 1
            await self.send_component(session_id, ComponentType.TASK_RESULT, TaskResultData(
                node_id=data.get("node_id", ""),
                satellite=data.get("satellite", ""),
                success=bool(data.get("success")),
                output=data.get("output") or "",
                error=data.get("error"),
            ))
            status = "done" if data.get("success") else "failed"
            await self.send_progress(
                session_id,
                f"{data.get('satellite')} {status}",
                step_index=progress["done"],
                total_steps=progress["total"],
            )

        elif event.type == MeshEventType.ALL_COMPLETE:
            self._progress.pop(session_id, None)
            response = data.get("response")
            if response:
                await self.send_markdown(session_id, response)
            await self.send_workflow_complete(session_id)

        elif event.type == MeshEventType.ERROR:
            self._progress.pop(session_id, None)
            await self.connection_manager.send_error(session_id, str(data.get("error", "Unknown error")))

    async def send_progress(
        self,
        session_id: str,
        status: str,
        step_index: Optional[int] = None,
        total_steps: Optional[int] = None
    ):
        await self.send_component(
            session_id,
            ComponentType.PROGRESS,
            ProgressData(status=status, step_index=step_index, total_steps=total_steps),
        )

    async def send_component(self, session_id: str, component: ComponentType, data):
        await self.connection_manager.send_event(
            session_id,
            ComponentEvent(payload=ComponentPayload(component=component, data=data)),
        )

    async def send_markdown(self, session_id: str, content: str):
        await self.connection_manager.send_event(
            session_id,
            MarkdownEvent(payload=content)
        )

    async def send_workflow_complete(self, session_id: str):
        await self.send_progress(session_id, "_workflow_finish")
