import asyncio
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, PrivateAttr
from datetime import datetime
from enum import Enum
import uuid


class SatelliteId(str, Enum):
    """Identifiers of the specialized satellites in the mesh"""
    PLANNER = "shaka"
    CRITIC = "lilith"
    INVENTOR = "edison"
    RESEARCHER = "pythagoras"
    EXECUTOR = "atlas"
    RESOURCE_MANAGER = "york"


class SatelliteStatus(str, Enum):
    """Satellite execution status"""
    IDLE = "idle"
    THINKING = "thinking"
    EXECUTING = "executing"
    WAITING = "waiting"
    COMPLETED = "completed"
    ERROR = "error"


class TaskStatus(str, Enum):
    """Task execution status"""
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class NodeStatus(str, Enum):
    """DAG node status"""
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.COMPLETED, NodeStatus.FAILED)


class ArtifactType(str, Enum):
    CODE = "code"
    TEXT = "text"
    DATA = "data"
    ANALYSIS = "analysis"
    SUMMARY = "summary"


def new_id() -> str:
    return str(uuid.uuid4())


class SatelliteConfig(BaseModel):
    """Static description of a satellite"""
    id: SatelliteId
    name: str
    archetype: str
    description: str
    role: str
    system_prompt: str
    capabilities: List[str] = Field(default_factory=list)
    max_iterations: int = 10
    temperature: float = 0.7
    priority: int = 1


class SatelliteState(BaseModel):
    """Observable runtime state of a satellite"""
    id: SatelliteId
    status: SatelliteStatus = Field(default=SatelliteStatus.IDLE)
    current_task: Optional[str] = None
    progress: float = 0.0
    output: Optional[str] = None
    error: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    iterations: int = 0
    tokens_used: int = 0


class Task(BaseModel):
    """A unit of work assigned to a single satellite"""
    id: str = Field(default_factory=new_id, description="Unique task identifier")
    satellite_id: SatelliteId
    description: str
    input: str
    context: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list, description="Descriptions of prerequisite tasks")
    priority: int = Field(default=5)
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Artifact(BaseModel):
    id: str = Field(default_factory=new_id)
    type: ArtifactType
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExecutionMetrics(BaseModel):
    """Per-execution accounting. Duration is in milliseconds."""
    duration: float = 0.0
    tokens_used: int = 0
    iteration_count: int = 0
    tool_call_count: int = 0
    memory_accesses: int = 0


class SatelliteResult(BaseModel):
    """Outcome of one satellite execution"""
    task_id: str
    satellite_id: SatelliteId
    success: bool
    output: str = ""
    artifacts: List[Artifact] = Field(default_factory=list)
    metrics: ExecutionMetrics = Field(default_factory=ExecutionMetrics)
    error: Optional[str] = None


class DAGNode(BaseModel):
    """Scheduling wrapper around a task"""
    id: str
    task_id: str
    satellite_id: SatelliteId
    status: NodeStatus = Field(default=NodeStatus.PENDING)
    dependencies: List[str] = Field(default_factory=list)
    dependents: List[str] = Field(default_factory=list)
    result: Optional[SatelliteResult] = None


class TaskDAG(BaseModel):
    """Dependency graph over the tasks of one plan.

    Node state changes go through the planner, which holds ``lock`` while
    mutating so concurrent completions in a batch never interleave.
    """
    nodes: Dict[str, DAGNode] = Field(default_factory=dict)
    root_nodes: List[str] = Field(default_factory=list)
    leaf_nodes: List[str] = Field(default_factory=list)

    _lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    def count_by_status(self) -> Dict[str, int]:
        counts: Dict[str, int] = {status.value: 0 for status in NodeStatus}
        for node in self.nodes.values():
            counts[node.status.value] += 1
        return counts


class ExecutionPlan(BaseModel):
    """Planner output for one user request"""
    id: str = Field(default_factory=new_id)
    user_intent: str
    analysis: str
    tasks: List[Task] = Field(default_factory=list)
    dag: TaskDAG = Field(default_factory=TaskDAG)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def get_state_summary(self) -> Dict[str, Any]:
        return {
            "plan_id": self.id,
            "analysis": self.analysis,
            "tasks": len(self.tasks),
            "nodes": self.dag.count_by_status(),
        }


class ConversationRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ConversationTurn(BaseModel):
    id: str = Field(default_factory=new_id)
    role: ConversationRole
    content: str
    satellite_id: Optional[SatelliteId] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    token_count: int = 0


class EvictionPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EvictionDecision(BaseModel):
    should_evict: bool
    tokens_to_free: int = 0
    messages_to_summarize: int = 0
    priority: EvictionPriority = EvictionPriority.LOW


class ResourceMetrics(BaseModel):
    """Snapshot of resource usage. ``memory_usage`` is an estimate in MB."""
    memory_usage: float = 0.0
    context_tokens: int = 0
    max_context_tokens: int = 0
    active_agents: int = 0
    inference_speed: float = 0.0


class IssueType(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    SUGGESTION = "suggestion"
    SECURITY = "security"
    HALLUCINATION = "hallucination"


class IssueSeverity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    INFO = "info"


class CritiqueTarget(str, Enum):
    CODE = "code"
    TEXT = "text"
    PLAN = "plan"
    OUTPUT = "output"


class CritiqueIssue(BaseModel):
    type: IssueType
    severity: IssueSeverity
    description: str
    location: Optional[str] = None
    suggestion: Optional[str] = None


class Critique(BaseModel):
    """Critic verdict on a piece of content"""
    id: str = Field(default_factory=new_id)
    target_id: str
    target_type: CritiqueTarget
    issues: List[CritiqueIssue] = Field(default_factory=list)
    score: int = Field(ge=0, le=100)
    recommendation: str
    approved: bool


class SearchSource(BaseModel):
    document_id: str
    content: str
    relevance: float
    title: Optional[str] = None


class ResearchFinding(BaseModel):
    source_index: int
    excerpt: str
    relevance: float
    confidence: float = 0.5


class ResearchQuery(BaseModel):
    question: str
    search_variations: List[str] = Field(default_factory=list)
    sources: List[SearchSource] = Field(default_factory=list)
    findings: List[ResearchFinding] = Field(default_factory=list)
    synthesis: str = ""


class ConnectionState(str, Enum):
    """Tool channel state shown while the executor talks to tools"""
    IDLE = "idle"
    CALLING = "calling"
    SIGNAL = "signal"


class ToolExecutionRequest(BaseModel):
    """A tool call with its retry policy. ``timeout`` is in seconds."""
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    retry_count: int = 0
    max_retries: int = 3
    timeout: float = 30.0


class ToolExecutionResult(BaseModel):
    success: bool
    output: Any = None
    error: Optional[str] = None
    attempts: int = 0
    total_duration: float = 0.0
