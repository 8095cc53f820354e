from typing import Any, Dict, List, Optional, Tuple
import json

import structlog

from agent_mesh.domain.context.hybrid_store import HybridStore
from agent_mesh.domain.models.agent_state import (
    Artifact,
    ArtifactType,
    DAGNode,
    ExecutionPlan,
    NodeStatus,
    SatelliteConfig,
    SatelliteId,
    SatelliteResult,
    SatelliteStatus,
    Task,
    TaskDAG,
)
from agent_mesh.domain.models.errors import PlanningError
from agent_mesh.domain.models.parse_result import ParseOk, extract_json_object
from agent_mesh.domain.orchestration.core import task_dag
from agent_mesh.domain.orchestration.subagent.base_subagent import BaseSatellite
from agent_mesh.infrastructure.config.settings import GeneratorSettings, SchedulerSettings
from agent_mesh.infrastructure.llm.text_generator import TextGenerator

logger = structlog.get_logger(__name__)

FALLBACK_ANALYSIS = "Direct execution of user request"

ROLE_ALIASES = {
    "planner": SatelliteId.PLANNER,
    "critic": SatelliteId.CRITIC,
    "inventor": SatelliteId.INVENTOR,
    "researcher": SatelliteId.RESEARCHER,
    "executor": SatelliteId.EXECUTOR,
    "resource_manager": SatelliteId.RESOURCE_MANAGER,
}

PLANNER_CONFIG = SatelliteConfig(
    id=SatelliteId.PLANNER,
    name="Shaka",
    archetype="Strategist",
    description="Decomposes requests into dependency-ordered tasks and synthesizes the results",
    role="planner",
    system_prompt=(
        "You are Shaka, the planning satellite of a multi-agent system. You break user "
        "requests into small tasks, assign each to the best-suited satellite and state "
        "which tasks must finish first. You answer with JSON when asked for a plan."
    ),
    capabilities=["task_decomposition", "dependency_analysis", "result_synthesis"],
    temperature=0.3,
    priority=10,
)

SATELLITE_ROSTER = """Available satellites:
- edison: creates code, content and designs
- pythagoras: researches questions against the knowledge store
- atlas: executes tools (calculation, time, uuid, text analysis, JSON validation, external tools)
- lilith: reviews code, plans or text for errors, security and accuracy"""


def resolve_satellite(value: Any) -> SatelliteId:
    """Map a generator-provided satellite name to an id, defaulting to the inventor"""

    if isinstance(value, str):
        key = value.strip().lower()
        for satellite_id in SatelliteId:
            if satellite_id.value == key:
                return satellite_id
        if key in ROLE_ALIASES:
            return ROLE_ALIASES[key]
    return SatelliteId.INVENTOR


class Planner(BaseSatellite):
    """Builds execution plans and turns node results into one answer"""

    def __init__(
        self,
        generator: TextGenerator,
        store: HybridStore,
        settings: Optional[GeneratorSettings] = None,
        scheduler_settings: Optional[SchedulerSettings] = None,
    ):
        super().__init__(PLANNER_CONFIG, generator, store, settings)
        self.scheduler_settings = scheduler_settings or SchedulerSettings()
        self._plans: Dict[str, ExecutionPlan] = {}

    async def _run(self, task: Task) -> Tuple[str, List[Artifact]]:
        plan = await self.create_execution_plan(task.input)
        self._plans[task.id] = plan

        summary = json.dumps({
            "analysis": plan.analysis,
            "tasks": [
                {"description": t.description, "satellite": t.satellite_id.value, "dependencies": t.dependencies}
                for t in plan.tasks
            ],
        }, indent=2)
        artifact = Artifact(
            type=ArtifactType.DATA,
            content=plan.model_dump_json(),
            metadata={"plan_id": plan.id},
        )
        return summary, [artifact]

    async def plan(self, task: Task) -> ExecutionPlan:
        """Run planning under the satellite contract; raise if it failed"""

        result = await self.execute(task)
        plan = self._plans.pop(task.id, None)
        if not result.success or plan is None:
            raise PlanningError(f"Planning failed: {result.error or 'no plan produced'}")
        return plan

    def _fallback_tasks(self, user_input: str) -> List[Task]:
        return [Task(
            satellite_id=SatelliteId.INVENTOR,
            description=user_input,
            input=user_input,
            priority=5,
        )]

    def _parse_tasks(self, raw_tasks: Any, user_input: str) -> List[Task]:
        tasks: List[Task] = []
        if not isinstance(raw_tasks, list):
            return tasks

        for raw in raw_tasks:
            if not isinstance(raw, dict):
                continue
            description = raw.get("description")
            if not isinstance(description, str) or not description.strip():
                continue

            dependencies = raw.get("dependencies") or []
            if not isinstance(dependencies, list):
                dependencies = []

            try:
                priority = int(raw.get("priority", 5))
            except (TypeError, ValueError):
                priority = 5

            tasks.append(Task(
                satellite_id=resolve_satellite(raw.get("satellite")),
                description=description.strip(),
                input=f"{description.strip()}\n\nOriginal request: {user_input}",
                dependencies=[d.strip() for d in dependencies if isinstance(d, str)],
                priority=max(1, min(priority, 10)),
            ))
        return tasks

    async def create_execution_plan(self, user_input: str) -> ExecutionPlan:
        """Decompose ``user_input`` into tasks and a DAG.

        Unparsable generator output falls back to a single inventor task
        covering the whole request.
        """
        await self.set_status(SatelliteStatus.THINKING, 0.1)
        context = await self.search_context(user_input, limit=3)

        prompt = f"""Break the following request into tasks.

{SATELLITE_ROSTER}

Relevant context:
{context}

Request: {user_input}

Respond with JSON only:
{{
  "analysis": "short analysis of the request",
  "tasks": [
    {{"description": "what to do", "satellite": "edison", "dependencies": ["description of a prerequisite task"], "priority": 5}}
  ]
}}
Dependencies must repeat the exact description of an earlier task."""

        response = await self.generate(prompt)
        parsed = extract_json_object(response, source="planner")

        analysis = FALLBACK_ANALYSIS
        tasks: List[Task] = []
        if isinstance(parsed, ParseOk):
            tasks = self._parse_tasks(parsed.value.get("tasks"), user_input)
            if tasks:
                analysis = str(parsed.value.get("analysis") or FALLBACK_ANALYSIS)
        if not tasks:
            logger.warning("Plan output unusable, using single-task fallback")
            tasks = self._fallback_tasks(user_input)

        await self.set_status(SatelliteStatus.THINKING, 0.6)

        if len(tasks) >= self.scheduler_settings.reflection_min_tasks:
            revised = await self._reflect(user_input, analysis, tasks)
            if revised:
                tasks = revised

        plan = ExecutionPlan(
            user_intent=user_input,
            analysis=analysis,
            tasks=tasks,
            dag=task_dag.build_dag(tasks),
        )

        await self.store_result(
            json.dumps({
                "intent": user_input,
                "analysis": analysis,
                "tasks": [t.description for t in tasks],
            }),
            tags=[self.id.value, "plan"],
        )
        logger.info("Execution plan created", plan_id=plan.id, tasks=len(tasks), roots=len(plan.dag.root_nodes))
        return plan

    async def _reflect(self, user_input: str, analysis: str, tasks: List[Task]) -> Optional[List[Task]]:
        """Ask for a revised plan; only a parsable revision with tasks replaces the original"""

        listing = "\n".join(
            f"- {t.description} (satellite: {t.satellite_id.value}, depends on: {t.dependencies or 'nothing'})"
            for t in tasks
        )
        prompt = f"""Review this plan for the request "{user_input}".

Analysis: {analysis}
Tasks:
{listing}

{SATELLITE_ROSTER}

If the plan has missing steps, wrong assignments or wrong dependencies, return a corrected plan as JSON in the
same format ({{"analysis": ..., "tasks": [...]}}). If it is fine, return the same plan."""

        response = await self.generate(prompt)
        parsed = extract_json_object(response, source="planner_reflection")
        if not isinstance(parsed, ParseOk):
            return None

        revised = self._parse_tasks(parsed.value.get("tasks"), user_input)
        if not revised:
            return None
        logger.debug("Plan revised by reflection", before=len(tasks), after=len(revised))
        return revised

    def get_ready_tasks(self, dag: TaskDAG) -> List[DAGNode]:
        return task_dag.get_ready_nodes(dag)

    async def mark_task_complete(
        self,
        dag: TaskDAG,
        node_id: str,
        result: SatelliteResult,
        task: Optional[Task] = None,
    ) -> None:
        await task_dag.mark_node_complete(dag, node_id, result, task)

    def is_dag_complete(self, dag: TaskDAG) -> bool:
        return task_dag.is_dag_complete(dag)

    async def synthesize_results(self, dag: TaskDAG, user_intent: str) -> str:
        """Merge successful node outputs into one answer"""

        outputs = [
            f"[{node.satellite_id.value.upper()}]: {node.result.output}"
            for node in dag.nodes.values()
            if node.status == NodeStatus.COMPLETED and node.result and node.result.success
        ]
        if not outputs:
            return "I was not able to complete any part of this request."

        joined = "\n\n".join(outputs)
        prompt = f"""The user asked: {user_intent}

Results from the satellites:
{joined}

Combine these results into one clear, complete answer for the user. Do not mention the satellites."""

        return await self.generate(prompt)
