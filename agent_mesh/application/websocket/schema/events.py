from typing import Dict, Any, Optional, List, Literal, Union
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum


class EventType(str, Enum):
    """WebSocket event types"""
    MARKDOWN = "markdown"
    COMPONENT = "component"
    ERROR = "error"
    CONNECTION = "connection"
    USER_MESSAGE = "user_message"


class ComponentType(str, Enum):
    PROGRESS = "progress"
    PLAN = "plan"
    TASK_RESULT = "task_result"


class BaseEvent(BaseModel):
    type: EventType
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    session_id: Optional[str] = None


class MarkdownEvent(BaseEvent):
    """Final mesh answer"""
    type: Literal[EventType.MARKDOWN] = EventType.MARKDOWN
    payload: str


class ProgressData(BaseModel):
    status: str
    step_index: Optional[int] = None
    total_steps: Optional[int] = None


class PlanStep(BaseModel):
    id: str
    satellite: str
    description: str


class PlanData(BaseModel):
    """Execution plan as shown to the client before dispatch starts"""
    plan_id: str
    analysis: str
    tasks: List[PlanStep]


class TaskResultData(BaseModel):
    node_id: str
    satellite: str
    success: bool
    output: str = ""
    error: Optional[str] = None


class ComponentPayload(BaseModel):
    component: ComponentType
    data: Union[ProgressData, PlanData, TaskResultData, Dict[str, Any]]


class ComponentEvent(BaseEvent):
    type: Literal[EventType.COMPONENT] = EventType.COMPONENT
    payload: ComponentPayload


class ErrorEvent(BaseEvent):
    type: Literal[EventType.ERROR] = EventType.ERROR
    payload: Dict[str, Any]
    error_code: Optional[str] = None


class ConnectionEvent(BaseEvent):
    type: Literal[EventType.CONNECTION] = EventType.CONNECTION
    status: Literal["connected", "disconnected"]


class UserMessage(BaseEvent):
    """A request for the mesh. ``content`` must not be blank."""
    type: Literal[EventType.USER_MESSAGE] = EventType.USER_MESSAGE
    content: str = Field(min_length=1)
    metadata: Optional[Dict[str, Any]] = None
