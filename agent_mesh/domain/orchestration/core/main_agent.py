from typing import Annotated, Any, Callable, Dict, List, Mapping, Optional, TypedDict
from datetime import datetime
import asyncio
import operator
import time

import structlog
from langgraph.graph import END, StateGraph

from agent_mesh.domain.context.hybrid_store import HybridStore
from agent_mesh.domain.context.memory.record_store import RecordStore
from agent_mesh.domain.models.agent_state import (
    ConnectionState,
    ConversationRole,
    Critique,
    CritiqueTarget,
    DAGNode,
    ExecutionPlan,
    NodeStatus,
    ResourceMetrics,
    SatelliteId,
    SatelliteResult,
    Task,
    new_id,
)
from agent_mesh.domain.models.errors import MeshBusyError, MeshError
from agent_mesh.domain.models.events import MeshEvent, MeshEventType, SatelliteEvent
from agent_mesh.domain.models.llm import ChatMessage
from agent_mesh.domain.models.records import DocumentMetadata, DocumentType, SearchResult
from agent_mesh.domain.orchestration.core import task_dag
from agent_mesh.domain.orchestration.subagent.base_subagent import BaseSatellite
from agent_mesh.domain.orchestration.subagent.critic import Critic
from agent_mesh.domain.orchestration.subagent.executor import Executor
from agent_mesh.domain.orchestration.subagent.inventor import Inventor
from agent_mesh.domain.orchestration.subagent.planner import Planner
from agent_mesh.domain.orchestration.subagent.researcher import Researcher
from agent_mesh.domain.orchestration.subagent.resource_manager import ResourceManager
from agent_mesh.domain.streaming.event_emitter import EventEmitter
from agent_mesh.domain.tool.tool_transport import ToolTransport
from agent_mesh.infrastructure.config.settings import SchedulerSettings, Settings, get_settings
from agent_mesh.infrastructure.llm.embedder import Embedder
from agent_mesh.infrastructure.llm.text_generator import TextGenerator
from agent_mesh.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)


class MeshRunState(TypedDict):
    """State for the request pipeline graph"""
    request_id: str
    user_input: str
    plan: Optional[ExecutionPlan]
    results: Annotated[List[SatelliteResult], operator.add]
    deadlocked: bool
    critique: Optional[Critique]
    response: str


def quality_notes(plan: ExecutionPlan, deadlocked: bool, critique: Optional[Critique]) -> List[str]:
    """In-band notes describing what went wrong in an otherwise finished run"""

    notes = []
    counts = plan.dag.count_by_status()
    total = len(plan.dag.nodes)

    failed = counts[NodeStatus.FAILED.value]
    if failed:
        notes.append(f"Quality Note: {failed} of {total} tasks failed.")

    if deadlocked:
        blocked = total - counts[NodeStatus.COMPLETED.value] - failed
        notes.append(
            f"Quality Note: Execution stopped early; {blocked} tasks could not run "
            "because their dependencies did not complete."
        )

    if critique is not None and not critique.approved:
        notes.append(f"Quality Note: Some issues were detected (score: {critique.score}/100)")

    return notes


class AgentMesh:
    """Runs one user request through the satellites.

    The pipeline is a compiled LangGraph graph:
    ``record_input -> plan -> dispatch -> review -> synthesize -> record_output``.
    ``dispatch`` runs every ready DAG node of a batch concurrently and repeats
    until the DAG is complete or no node can make progress.
    """

    def __init__(
        self,
        store: HybridStore,
        satellites: Mapping[SatelliteId, BaseSatellite],
        settings: Optional[SchedulerSettings] = None,
    ):
        for required in (SatelliteId.PLANNER, SatelliteId.RESOURCE_MANAGER):
            if required not in satellites:
                raise ValueError(f"Mesh requires a {required.value} satellite")

        self.store = store
        self.satellites: Dict[SatelliteId, BaseSatellite] = dict(satellites)
        self.settings = settings or SchedulerSettings()
        self.events: EventEmitter[MeshEvent] = EventEmitter("mesh")
        self.active_plan: Optional[ExecutionPlan] = None
        self.last_update = datetime.utcnow()
        self._processing = False
        self._current_request: Optional[str] = None

        for satellite in self.satellites.values():
            satellite.on_event(self._forward_satellite_event)
        self.resource_manager.set_active_agents(len(self.satellites))

        self.workflow = self._create_workflow()
        logger.info("Agent mesh initialized", satellites=[s.value for s in self.satellites])

    @property
    def planner(self) -> Planner:
        return self.satellites[SatelliteId.PLANNER]

    @property
    def resource_manager(self) -> ResourceManager:
        return self.satellites[SatelliteId.RESOURCE_MANAGER]

    @property
    def critic(self) -> Optional[Critic]:
        return self.satellites.get(SatelliteId.CRITIC)

    @property
    def executor(self) -> Optional[Executor]:
        return self.satellites.get(SatelliteId.EXECUTOR)

    @property
    def is_processing(self) -> bool:
        return self._processing

    def _create_workflow(self):
        workflow = StateGraph(MeshRunState)

        workflow.add_node("record_input", self.record_input_node)
        workflow.add_node("plan", self.planning_node)
        workflow.add_node("dispatch", self.dispatch_node)
        workflow.add_node("review", self.review_node)
        workflow.add_node("synthesize", self.synthesis_node)
        workflow.add_node("record_output", self.record_output_node)

        workflow.set_entry_point("record_input")
        workflow.add_edge("record_input", "plan")
        workflow.add_edge("plan", "dispatch")
        workflow.add_edge("dispatch", "review")
        workflow.add_edge("review", "synthesize")
        workflow.add_edge("synthesize", "record_output")
        workflow.add_edge("record_output", END)

        return workflow.compile()

    async def initialize(self) -> None:
        await self.store.initialize()
        logger.info("Agent mesh fully initialized")

    async def process_request(self, user_input: str) -> str:
        """Plan, execute, review and synthesize one request.

        Only one request runs at a time; a second caller gets
        ``MeshBusyError``. Planning failures propagate after the busy flag
        is released.
        """
        if self._processing:
            raise MeshBusyError()

        self._processing = True
        request_id = new_id()
        self._current_request = request_id
        started = time.monotonic()

        try:
            with structlog.contextvars.bound_contextvars(request_id=request_id):
                logger.info("Processing request", input_length=len(user_input))
                final_state = await self.workflow.ainvoke(
                    {
                        "request_id": request_id,
                        "user_input": user_input,
                        "plan": None,
                        "results": [],
                        "deadlocked": False,
                        "critique": None,
                        "response": "",
                    },
                    config={"recursion_limit": self.settings.recursion_limit},
                )
            metrics.record_latency("mesh_request", (time.monotonic() - started) * 1000)
            metrics.increment_counter("mesh_requests", tags={"status": "success"})
            return final_state["response"]

        except Exception as e:
            logger.error("Mesh request failed", request_id=request_id, error=str(e))
            metrics.increment_counter("mesh_requests", tags={"status": "error"})
            await self.emit_event(MeshEventType.ERROR, {"error": str(e)})
            raise
        finally:
            self._processing = False
            self._current_request = None
            self.active_plan = None

    async def record_input_node(self, state: MeshRunState) -> Dict[str, Any]:
        await self.resource_manager.add_conversation_turn(ConversationRole.USER, state["user_input"])
        return {}

    async def planning_node(self, state: MeshRunState) -> Dict[str, Any]:
        plan = await self.planner.plan(Task(
            satellite_id=SatelliteId.PLANNER,
            description="Create execution plan",
            input=state["user_input"],
            priority=10,
        ))
        self.active_plan = plan

        await self.emit_event(MeshEventType.PLAN_CREATED, {
            "plan_id": plan.id,
            "analysis": plan.analysis,
            "tasks": [
                {"id": t.id, "satellite": t.satellite_id.value, "description": t.description}
                for t in plan.tasks
            ],
        })
        logger.info("Execution plan ready", plan_id=plan.id, task_count=len(plan.tasks))
        return {"plan": plan}

    async def dispatch_node(self, state: MeshRunState) -> Dict[str, Any]:
        """Run batches of ready nodes until the DAG completes or stalls.

        Nodes within a batch run concurrently. Batches run inside this one
        graph step, so plan depth does not count against the recursion limit.
        """
        plan = state["plan"]
        results: List[SatelliteResult] = []

        while not task_dag.is_dag_complete(plan.dag):
            ready = task_dag.get_ready_nodes(plan.dag)
            if not ready:
                cycle = task_dag.find_cycle(plan.dag)
                logger.warning(
                    "No ready nodes but DAG not complete",
                    counts=plan.dag.count_by_status(),
                    cycle=cycle,
                )
                return {"results": results, "deadlocked": True}

            logger.debug("Dispatching batch", nodes=[node.id for node in ready])
            batch = await asyncio.gather(*(self._run_node(plan, node) for node in ready))
            results.extend(batch)
            self.last_update = datetime.utcnow()

        return {"results": results}

    def _dependency_context(self, plan: ExecutionPlan, node: DAGNode) -> Optional[str]:
        outputs = []
        for dep_id in node.dependencies:
            dep = plan.dag.nodes[dep_id]
            if dep.result is not None and dep.result.success and dep.result.output:
                outputs.append(f"[{dep.satellite_id.value.upper()}]: {dep.result.output}")
        return "\n\n".join(outputs) or None

    async def _run_node(self, plan: ExecutionPlan, node: DAGNode) -> SatelliteResult:
        task = plan.get_task(node.task_id)
        if task is None or not task_dag.mark_node_running(plan.dag, node.id, task):
            result = SatelliteResult(
                task_id=node.task_id,
                satellite_id=node.satellite_id,
                success=False,
                error=f"Node {node.id} could not be started",
            )
            await task_dag.mark_node_complete(plan.dag, node.id, result, task)
            return result

        if task.context is None:
            task.context = self._dependency_context(plan, node)

        await self.emit_event(MeshEventType.TASK_STARTED, {
            "node_id": node.id,
            "task_id": task.id,
            "satellite": task.satellite_id.value,
            "description": task.description,
        })

        satellite = self.satellites.get(task.satellite_id)
        if satellite is None:
            result = SatelliteResult(
                task_id=task.id,
                satellite_id=task.satellite_id,
                success=False,
                error=f"Unknown satellite: {task.satellite_id.value}",
            )
        else:
            try:
                result = await satellite.execute(task)
            except Exception as e:
                logger.error("Satellite raised outside its contract", satellite_id=task.satellite_id.value, error=str(e))
                result = SatelliteResult(task_id=task.id, satellite_id=task.satellite_id, success=False, error=str(e))

        await task_dag.mark_node_complete(plan.dag, node.id, result, task)
        metrics.increment_counter("mesh_tasks", tags={"satellite": task.satellite_id.value, "success": str(result.success).lower()})
        await self.emit_event(MeshEventType.TASK_COMPLETED, {
            "node_id": node.id,
            "task_id": task.id,
            "satellite": task.satellite_id.value,
            "success": result.success,
            "output": result.output,
            "error": result.error,
        })
        return result

    async def review_node(self, state: MeshRunState) -> Dict[str, Any]:
        """Critique the joined outputs; a failing review is logged and skipped"""

        critic = self.critic
        joined = "\n\n".join(r.output for r in state["results"] if r.success and r.output)
        if critic is None or not self.settings.review_output or not joined:
            return {}

        try:
            critique = await critic.critique(joined, CritiqueTarget.OUTPUT, state["request_id"])
        except Exception as e:
            logger.error("Output review failed", error=str(e))
            return {}
        return {"critique": critique}

    async def synthesis_node(self, state: MeshRunState) -> Dict[str, Any]:
        plan = state["plan"]
        response = await self.planner.synthesize_results(plan.dag, state["user_input"])

        notes = quality_notes(plan, state.get("deadlocked", False), state.get("critique"))
        if notes:
            response = "\n\n".join([response, *notes])
        return {"response": response}

    async def record_output_node(self, state: MeshRunState) -> Dict[str, Any]:
        await self.resource_manager.add_conversation_turn(
            ConversationRole.ASSISTANT,
            state["response"],
            SatelliteId.PLANNER,
        )
        await self.emit_event(MeshEventType.ALL_COMPLETE, {
            "response": state["response"],
            "results": [r.model_dump(mode="json") for r in state["results"]],
        })
        return {}

    async def send_to_satellite(self, satellite_id: SatelliteId, user_input: str) -> SatelliteResult:
        satellite = self.satellites.get(satellite_id)
        if satellite is None:
            raise MeshError(f"Unknown satellite: {satellite_id.value}")

        return await satellite.execute(Task(
            satellite_id=satellite_id,
            description=user_input,
            input=user_input,
        ))

    async def add_document(self, content: str, metadata: Optional[Dict[str, Any]] = None):
        return await self.store.add_document(
            content,
            DocumentMetadata.model_validate({"source": "user", "type": DocumentType.TEXT, **(metadata or {})}),
        )

    async def search(self, query: str, limit: int = 10) -> List[SearchResult]:
        return await self.store.search(query, limit=limit)

    async def trigger_eviction(self) -> str:
        return await self.resource_manager.perform_context_eviction()

    def get_context_for_llm(self) -> List[ChatMessage]:
        return self.resource_manager.get_context_for_llm()

    async def clear_context(self) -> None:
        await self.resource_manager.clear_context()

    def get_resource_metrics(self) -> ResourceMetrics:
        return self.resource_manager.get_resource_metrics()

    def get_context_summary(self) -> Dict[str, Any]:
        return self.resource_manager.get_context_summary()

    async def get_data_stats(self) -> Dict[str, Any]:
        return await self.store.get_stats()

    @property
    def connection_state(self) -> ConnectionState:
        executor = self.executor
        return executor.connection_state if executor is not None else ConnectionState.IDLE

    def get_state(self) -> Dict[str, Any]:
        return {
            "satellites": {
                satellite_id.value: satellite.state.model_dump(mode="json")
                for satellite_id, satellite in self.satellites.items()
            },
            "active_plan": self.active_plan.get_state_summary() if self.active_plan else None,
            "roster": {satellite_id.value: satellite.get_info() for satellite_id, satellite in self.satellites.items()},
            "resources": self.get_resource_metrics().model_dump(),
            "connection_state": self.connection_state.value,
            "processing": self._processing,
            "last_update": self.last_update.isoformat(),
        }

    def on_event(self, callback: Callable[[MeshEvent], Any]) -> Callable[[], None]:
        return self.events.subscribe(callback)

    async def emit_event(self, event_type: MeshEventType, data: Optional[Dict[str, Any]] = None) -> None:
        await self.events.emit(MeshEvent(type=event_type, request_id=self._current_request, data=data or {}))

    async def _forward_satellite_event(self, event: SatelliteEvent) -> None:
        self.last_update = datetime.utcnow()
        await self.emit_event(MeshEventType.MESSAGE, {
            "satellite": event.satellite_id.value,
            "type": event.type.value,
            "data": event.data,
        })


def build_mesh(
    generator: TextGenerator,
    embedder: Embedder,
    settings: Optional[Settings] = None,
    transport: Optional[ToolTransport] = None,
    record_store: Optional[RecordStore] = None,
) -> AgentMesh:
    """Wire the six satellites around one shared hybrid store"""

    settings = settings or get_settings()
    store = HybridStore(embedder, record_store=record_store, settings=settings.retrieval)
    satellites: List[BaseSatellite] = [
        Planner(generator, store, settings.generator, settings.scheduler),
        Critic(generator, store, settings.generator),
        Inventor(generator, store, settings.generator),
        Researcher(generator, store, settings.generator),
        Executor(generator, store, settings.generator, settings.executor, transport=transport),
        ResourceManager(generator, store, settings.generator, settings.context),
    ]
    return AgentMesh(store, {s.id: s for s in satellites}, settings.scheduler)
