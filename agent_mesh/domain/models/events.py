from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

from agent_mesh.domain.models.agent_state import SatelliteId


class SatelliteEventType(str, Enum):
    STARTED = "started"
    THINKING = "thinking"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"
    MESSAGE = "message"


class SatelliteEvent(BaseModel):
    type: SatelliteEventType
    satellite_id: SatelliteId
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class MeshEventType(str, Enum):
    PLAN_CREATED = "plan_created"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    ALL_COMPLETE = "all_complete"
    ERROR = "error"
    MESSAGE = "message"


class MeshEvent(BaseModel):
    type: MeshEventType
    request_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
