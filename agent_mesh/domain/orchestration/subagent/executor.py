from typing import Any, Dict, List, Optional, Tuple
import json

import structlog

from agent_mesh.domain.context.context_ranker import ContextRanker
from agent_mesh.domain.context.hybrid_store import HybridStore
from agent_mesh.domain.models.agent_state import (
    Artifact,
    ArtifactType,
    ConnectionState,
    SatelliteConfig,
    SatelliteId,
    SatelliteStatus,
    Task,
    ToolExecutionRequest,
    ToolExecutionResult,
)
from agent_mesh.domain.models.errors import ToolExecutionError
from agent_mesh.domain.models.llm import ToolSpec
from agent_mesh.domain.models.parse_result import ParseOk, extract_json_object
from agent_mesh.domain.models.events import SatelliteEventType
from agent_mesh.domain.orchestration.subagent.base_subagent import BaseSatellite
from agent_mesh.domain.tool.tool_executor import ToolExecutor
from agent_mesh.domain.tool.tool_registry import ToolRegistry
from agent_mesh.domain.tool.tool_transport import ToolTransport
from agent_mesh.infrastructure.config.settings import ExecutorSettings, GeneratorSettings
from agent_mesh.infrastructure.llm.text_generator import TextGenerator

logger = structlog.get_logger(__name__)

EXECUTOR_CONFIG = SatelliteConfig(
    id=SatelliteId.EXECUTOR,
    name="Atlas",
    archetype="Warrior",
    description="Selects and runs tools, recovering from transient and parameter errors",
    role="executor",
    system_prompt=(
        "You are Atlas, the tool executor of a multi-agent system. You choose the right tool "
        "for a task, prepare its arguments exactly as its schema requires and fix arguments "
        "when a call is rejected. Answer with JSON when asked to choose a tool."
    ),
    capabilities=["tool_selection", "tool_execution", "error_recovery", "parameter_validation"],
    max_iterations=5,
    temperature=0.1,
    priority=8,
)


class Executor(BaseSatellite):
    """Tool selection by the generator, execution through ``ToolExecutor``"""

    def __init__(
        self,
        generator: TextGenerator,
        store: HybridStore,
        settings: Optional[GeneratorSettings] = None,
        executor_settings: Optional[ExecutorSettings] = None,
        transport: Optional[ToolTransport] = None,
        registry: Optional[ToolRegistry] = None,
    ):
        super().__init__(EXECUTOR_CONFIG, generator, store, settings)
        self.executor_settings = executor_settings or ExecutorSettings()
        self.ranker = ContextRanker()
        self.tools = ToolExecutor(
            registry=registry,
            transport=transport,
            settings=self.executor_settings,
            repair=self.attempt_parameter_fix,
        )
        self.tools.state_events.subscribe(self._on_connection_state)

    @property
    def connection_state(self) -> ConnectionState:
        return self.tools.connection_state

    def set_transport(self, transport: Optional[ToolTransport]) -> None:
        self.tools.set_transport(transport)

    def get_available_tools(self) -> List[ToolSpec]:
        return self.tools.get_available_tools()

    def get_execution_stats(self) -> Dict[str, float]:
        return self.tools.get_execution_stats()

    async def _on_connection_state(self, state: ConnectionState) -> None:
        await self.emit_event(SatelliteEventType.MESSAGE, {"connection_state": state.value})

    async def _run(self, task: Task) -> Tuple[str, List[Artifact]]:
        await self.set_status(SatelliteStatus.EXECUTING)

        request = await self.parse_tool_request(task.input)
        if request is None:
            raise ToolExecutionError("Could not determine tool to execute from task input", retryable=False)

        result = await self.execute_tool_with_retry(request)
        if not result.success:
            raise ToolExecutionError(result.error or "Tool execution failed", retryable=False)

        output = json.dumps(result.output, default=str)
        artifact = Artifact(
            type=ArtifactType.DATA,
            content=output,
            metadata={
                "type": "tool_result",
                "tool_name": request.tool_name,
                "attempts": result.attempts,
                "duration": result.total_duration,
            },
        )
        return output, [artifact]

    async def parse_tool_request(self, task_input: str) -> Optional[ToolExecutionRequest]:
        """Ask the generator which tool to call; None when nothing fits"""

        tools = self.tools.get_available_tools()
        if not tools:
            logger.warning("No tools available for execution")
            return None

        ordered = self.ranker.order_tools(task_input, tools)
        descriptions = "\n".join(f"- {tool.name}: {tool.description}" for tool in ordered)
        prompt = f"""Determine which tool to use and what arguments to pass:

TASK: {task_input}

AVAILABLE TOOLS:
{descriptions}

Respond in JSON format:
{{"toolName": "name of the tool to use", "arguments": {{"arg1": "value1"}}, "reasoning": "why this tool"}}

If no tool is suitable, respond with:
{{"toolName": null, "reasoning": "explanation"}}"""

        response = await self.generate(prompt)
        parsed = extract_json_object(response, source="executor")
        if not isinstance(parsed, ParseOk):
            return None

        tool_name = parsed.value.get("toolName")
        if not isinstance(tool_name, str) or not tool_name:
            logger.info("No suitable tool selected", reasoning=str(parsed.value.get("reasoning", ""))[:200])
            return None

        arguments = parsed.value.get("arguments")
        return ToolExecutionRequest(
            tool_name=tool_name,
            arguments=arguments if isinstance(arguments, dict) else {},
            max_retries=self.executor_settings.max_retries,
            timeout=self.executor_settings.timeout,
        )

    async def execute_tool_with_retry(self, request: ToolExecutionRequest) -> ToolExecutionResult:
        self._count_tool_call()
        result = await self.tools.execute_tool_with_retry(request)
        logger.info(
            "Tool request finished",
            tool_name=request.tool_name,
            success=result.success,
            attempts=result.attempts,
        )
        return result

    async def attempt_parameter_fix(
        self,
        tool: ToolSpec,
        current_arguments: Dict[str, Any],
        error: str,
    ) -> Optional[Dict[str, Any]]:
        prompt = f"""Fix the tool parameters based on this error:

TOOL: {tool.name}
SCHEMA: {json.dumps(tool.input_schema)}
CURRENT ARGUMENTS: {json.dumps(current_arguments, default=str)}
ERROR: {error}

Return the corrected arguments as a JSON object, or null if they cannot be fixed."""

        response = await self.generate(prompt)
        parsed = extract_json_object(response, source="executor_repair")
        if isinstance(parsed, ParseOk):
            return parsed.value
        return None
