"""Tool invocation with timeouts, retry classification and argument repair.

A call goes to the connected transport when there is one and to the local
registry otherwise. Each attempt is bounded by ``asyncio.wait_for``; failed
attempts are classified from their error text, retryable ones back off
exponentially, and parameter-shaped errors get one repair pass before the
next attempt.
"""
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional
import asyncio
import time

import structlog
from pydantic import BaseModel

from agent_mesh.domain.models.agent_state import (
    ConnectionState,
    ToolExecutionRequest,
    ToolExecutionResult,
)
from agent_mesh.domain.models.errors import ToolExecutionError, ToolParameterError
from agent_mesh.domain.models.llm import ToolCallResult, ToolSpec
from agent_mesh.domain.streaming.event_emitter import EventEmitter
from agent_mesh.domain.tool.tool_registry import ToolRegistry
from agent_mesh.domain.tool.tool_transport import ToolTransport
from agent_mesh.domain.tool.tool_validator import ToolParameterValidator
from agent_mesh.infrastructure.config.settings import ExecutorSettings
from agent_mesh.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

RETRYABLE_MARKERS = ("500", "502", "503", "timeout", "ETIMEDOUT", "ECONNREFUSED", "ENOTFOUND", "429", "rate limit")
NON_RETRYABLE_MARKERS = ("400", "401", "403")
PARAMETER_ERROR_MARKERS = (
    "invalid parameter",
    "missing required",
    "type error",
    "validation failed",
    "invalid argument",
)

# (tool, current arguments, error) -> corrected arguments or None
ParameterRepair = Callable[[ToolSpec, Dict[str, Any], str], Awaitable[Optional[Dict[str, Any]]]]


class ExecutionRecord(BaseModel):
    tool_name: str
    success: bool
    duration: float
    timestamp: datetime


def classify_error(error: str, attempt: int, max_retries: int) -> bool:
    """Whether a failed attempt should be retried"""

    if attempt >= max_retries:
        return False
    if any(marker in error for marker in RETRYABLE_MARKERS):
        return True
    if any(marker in error for marker in NON_RETRYABLE_MARKERS):
        return False
    return True


def is_parameter_error(error: str) -> bool:
    lowered = error.lower()
    return any(marker in lowered for marker in PARAMETER_ERROR_MARKERS)


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    return min(base * (2 ** (attempt - 1)), maximum)


class ToolExecutor:
    def __init__(
        self,
        registry: Optional[ToolRegistry] = None,
        transport: Optional[ToolTransport] = None,
        settings: Optional[ExecutorSettings] = None,
        repair: Optional[ParameterRepair] = None,
    ):
        self.registry = registry or ToolRegistry()
        self.transport = transport
        self.settings = settings or ExecutorSettings()
        self.repair = repair
        self.validator = ToolParameterValidator()
        self.connection_state = ConnectionState.SIGNAL if self._transport_connected() else ConnectionState.IDLE
        self.state_events: EventEmitter[ConnectionState] = EventEmitter("tool_connection")
        self.history: Deque[ExecutionRecord] = deque(maxlen=self.settings.history_size)

    def set_transport(self, transport: Optional[ToolTransport]) -> None:
        self.transport = transport
        connected = self._transport_connected()
        self.connection_state = ConnectionState.SIGNAL if connected else ConnectionState.IDLE
        logger.info("Tool transport configured", connected=connected)

    def _transport_connected(self) -> bool:
        return self.transport is not None and self.transport.is_connected()

    async def _set_state(self, state: ConnectionState) -> None:
        if state != self.connection_state:
            self.connection_state = state
            await self.state_events.emit(state)

    def get_available_tools(self) -> List[ToolSpec]:
        """Transport tools first, then built-ins whose names are not shadowed"""

        remote = self.transport.list_tools() if self._transport_connected() else []
        names = {tool.name for tool in remote}
        return [*remote, *(tool for tool in self.registry.get_available_tools() if tool.name not in names)]

    def find_tool(self, name: str) -> Optional[ToolSpec]:
        for tool in self.get_available_tools():
            if tool.name == name:
                return tool
        return None

    async def _call_once(self, request: ToolExecutionRequest) -> Any:
        tool = self.find_tool(request.tool_name)
        if tool is None:
            raise ToolExecutionError(f"Unknown tool: {request.tool_name}", retryable=False)

        validation = self.validator.validate_tool_call(tool, request.arguments)
        if not validation.is_valid:
            raise ToolParameterError("; ".join(validation.errors))

        if self._transport_connected() and self.registry.get_tool_info(tool.name) is not tool:
            call = self.transport.call_tool(tool.name, request.arguments)
        else:
            call = self.registry.call(tool.name, request.arguments)

        try:
            result: ToolCallResult = await asyncio.wait_for(call, timeout=request.timeout)
        except asyncio.TimeoutError:
            raise ToolExecutionError(f"Tool call timeout after {request.timeout}s")

        if not result.success:
            raise ToolExecutionError(result.error or "Tool reported failure")
        return result.content

    async def execute_tool_with_retry(self, request: ToolExecutionRequest) -> ToolExecutionResult:
        started = time.monotonic()
        last_error: Optional[str] = None
        attempt = 0

        while attempt < max(1, request.max_retries):
            attempt += 1
            await self._set_state(ConnectionState.CALLING)
            attempt_started = time.monotonic()

            try:
                output = await self._call_once(request)
                duration = (time.monotonic() - attempt_started) * 1000
                agent_logger.log_tool_execution(request.tool_name, request.arguments, attempt, duration, True)
                self._record(request.tool_name, True, started)
                await self._set_state(ConnectionState.SIGNAL)
                return ToolExecutionResult(
                    success=True,
                    output=output,
                    attempts=attempt,
                    total_duration=(time.monotonic() - started) * 1000,
                )

            except ToolExecutionError as e:
                last_error = str(e)
                retryable = e.retryable
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
                retryable = True

            duration = (time.monotonic() - attempt_started) * 1000
            agent_logger.log_tool_execution(request.tool_name, request.arguments, attempt, duration, False, last_error)
            logger.warning("Tool execution failed", tool_name=request.tool_name, attempt=attempt, error=last_error)

            if not retryable or not classify_error(last_error, attempt, request.max_retries):
                break

            await asyncio.sleep(backoff_delay(attempt, self.settings.backoff_base, self.settings.backoff_max))

            if is_parameter_error(last_error):
                await self._repair_arguments(request, last_error)

        self._record(request.tool_name, False, started)
        await self._set_state(ConnectionState.IDLE)
        return ToolExecutionResult(
            success=False,
            error=last_error or "Unknown error",
            attempts=attempt,
            total_duration=(time.monotonic() - started) * 1000,
        )

    async def _repair_arguments(self, request: ToolExecutionRequest, error: str) -> None:
        tool = self.find_tool(request.tool_name)
        if self.repair is None or tool is None:
            return

        fixed = await self.repair(tool, request.arguments, error)
        if fixed is not None:
            logger.info("Tool arguments repaired", tool_name=request.tool_name)
            request.arguments = fixed

    def _record(self, tool_name: str, success: bool, started: float) -> None:
        duration = (time.monotonic() - started) * 1000
        self.history.append(ExecutionRecord(
            tool_name=tool_name,
            success=success,
            duration=duration,
            timestamp=datetime.utcnow(),
        ))
        metrics.record_latency("tool_execution", duration, {"tool": tool_name})
        metrics.increment_counter("tool_executions", tags={"tool": tool_name, "success": str(success).lower()})

    def get_execution_stats(self) -> Dict[str, float]:
        if not self.history:
            return {"total_executions": 0, "success_rate": 0.0, "average_duration": 0.0}

        total = len(self.history)
        successful = sum(1 for record in self.history if record.success)
        return {
            "total_executions": total,
            "success_rate": successful / total,
            "average_duration": sum(record.duration for record in self.history) / total,
        }
