from abc import ABC, abstractmethod
from contextvars import ContextVar
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple
from datetime import datetime
import time

import structlog

from agent_mesh.domain.context.hybrid_store import HybridStore
from agent_mesh.domain.models.agent_state import (
    Artifact,
    ExecutionMetrics,
    SatelliteConfig,
    SatelliteId,
    SatelliteResult,
    SatelliteState,
    SatelliteStatus,
    Task,
)
from agent_mesh.domain.models.events import SatelliteEvent, SatelliteEventType
from agent_mesh.domain.models.llm import ChatMessage
from agent_mesh.domain.models.records import Document, DocumentMetadata, DocumentType
from agent_mesh.domain.streaming.event_emitter import EventEmitter
from agent_mesh.infrastructure.config.settings import GeneratorSettings
from agent_mesh.infrastructure.llm.text_generator import TextGenerator
from agent_mesh.infrastructure.observability.logging import agent_logger

logger = structlog.get_logger(__name__)

# Metrics of the execution running in the current asyncio task. Two tasks
# dispatched to the same satellite in one batch each get their own copy.
_run_metrics: ContextVar[Optional[ExecutionMetrics]] = ContextVar("satellite_run_metrics", default=None)


class BaseSatellite(ABC):
    """Base class for the specialized satellites.

    ``execute`` implements the shared result contract; subclasses provide
    ``_run`` and may raise freely, any exception becomes a failed
    ``SatelliteResult``.
    """

    def __init__(
        self,
        config: SatelliteConfig,
        generator: TextGenerator,
        store: HybridStore,
        settings: Optional[GeneratorSettings] = None,
    ):
        self.config = config
        self.generator = generator
        self.store = store
        self.settings = settings or GeneratorSettings()
        self.state = SatelliteState(id=config.id)
        self.events: EventEmitter[SatelliteEvent] = EventEmitter(f"satellite:{config.id.value}")
        self.created_at = datetime.utcnow()

    @property
    def id(self) -> SatelliteId:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    @abstractmethod
    async def _run(self, task: Task) -> Tuple[str, List[Artifact]]:
        """Do the role-specific work and return ``(output, artifacts)``"""

    async def execute(self, task: Task) -> SatelliteResult:
        metrics = ExecutionMetrics()
        token = _run_metrics.set(metrics)
        started = time.monotonic()

        self.state.status = SatelliteStatus.THINKING
        self.state.current_task = task.description
        self.state.progress = 0.0
        self.state.error = None
        self.state.start_time = datetime.utcnow()
        self.state.end_time = None
        await self.emit_event(SatelliteEventType.STARTED, {"task_id": task.id, "description": task.description})

        try:
            output, artifacts = await self._run(task)
            metrics.duration = (time.monotonic() - started) * 1000

            self.state.status = SatelliteStatus.COMPLETED
            self.state.output = output
            self.state.progress = 1.0
            self.state.end_time = datetime.utcnow()
            await self.emit_event(SatelliteEventType.COMPLETED, {"task_id": task.id, "duration": metrics.duration})

            return SatelliteResult(
                task_id=task.id,
                satellite_id=self.id,
                success=True,
                output=output,
                artifacts=artifacts,
                metrics=metrics,
            )

        except Exception as e:
            metrics.duration = (time.monotonic() - started) * 1000
            logger.error("Satellite execution failed", satellite_id=self.id.value, task_id=task.id, error=str(e))

            self.state.status = SatelliteStatus.ERROR
            self.state.error = str(e)
            self.state.end_time = datetime.utcnow()
            await self.emit_event(SatelliteEventType.ERROR, {"task_id": task.id, "error": str(e)})

            return SatelliteResult(
                task_id=task.id,
                satellite_id=self.id,
                success=False,
                output="",
                metrics=metrics,
                error=str(e),
            )
        finally:
            _run_metrics.reset(token)

    def _build_messages(self, prompt: str, context: Optional[List[ChatMessage]]) -> List[ChatMessage]:
        return [
            ChatMessage(role="system", content=self.config.system_prompt),
            *(context or []),
            ChatMessage(role="user", content=prompt),
        ]

    def _count_iteration(self, tokens: int) -> None:
        self.state.iterations += 1
        self.state.tokens_used += tokens
        metrics = _run_metrics.get()
        if metrics is not None:
            metrics.iteration_count += 1
            metrics.tokens_used += tokens

    async def generate(
        self,
        prompt: str,
        context: Optional[List[ChatMessage]] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """One text generator call with this satellite's system prompt"""

        completion = await self.generator.complete(
            self._build_messages(prompt, context),
            temperature=self.config.temperature if temperature is None else temperature,
            max_tokens=self.settings.max_tokens,
        )
        self._count_iteration(completion.usage.total_tokens if completion.usage else 0)
        return completion.content

    async def generate_stream(
        self,
        prompt: str,
        context: Optional[List[ChatMessage]] = None,
    ) -> AsyncIterator[str]:
        self._count_iteration(0)
        async for chunk in self.generator.stream(
            self._build_messages(prompt, context),
            temperature=self.config.temperature,
            max_tokens=self.settings.max_tokens,
        ):
            yield chunk

    def _count_memory_access(self) -> None:
        metrics = _run_metrics.get()
        if metrics is not None:
            metrics.memory_accesses += 1

    def _count_tool_call(self) -> None:
        metrics = _run_metrics.get()
        if metrics is not None:
            metrics.tool_call_count += 1

    async def search_context(self, query: str, limit: int = 5) -> str:
        """Top hybrid hits formatted as numbered lines for a prompt"""

        self._count_memory_access()
        results = await self.store.search(query, limit=limit)
        if not results:
            return "No relevant context found."
        return "\n\n".join(f"[{i + 1}] {r.document.content}" for i, r in enumerate(results))

    async def store_result(
        self,
        content: str,
        doc_type: DocumentType = DocumentType.AGENT_OUTPUT,
        tags: Optional[List[str]] = None,
        **metadata: Any,
    ) -> Document:
        self._count_memory_access()
        return await self.store.add_document(
            content,
            DocumentMetadata(
                source=f"satellite:{self.id.value}",
                type=doc_type,
                tags=tags or [self.id.value, doc_type.value],
                **metadata,
            ),
        )

    async def set_status(self, status: SatelliteStatus, progress: Optional[float] = None) -> None:
        self.state.status = status
        if progress is not None:
            self.state.progress = progress
        if status == SatelliteStatus.THINKING:
            await self.emit_event(SatelliteEventType.THINKING, {"progress": self.state.progress})
        elif status == SatelliteStatus.EXECUTING:
            await self.emit_event(SatelliteEventType.EXECUTING, {"progress": self.state.progress})

    def on_event(self, callback: Callable[[SatelliteEvent], Any]) -> Callable[[], None]:
        return self.events.subscribe(callback)

    async def emit_event(self, event_type: SatelliteEventType, data: Optional[Dict[str, Any]] = None) -> None:
        agent_logger.log_satellite_event(event_type.value, self.id.value, task_id=(data or {}).get("task_id"), data=data)
        await self.events.emit(SatelliteEvent(type=event_type, satellite_id=self.id, data=data or {}))

    def reset(self) -> None:
        self.state = SatelliteState(id=self.id)

    def get_info(self) -> Dict[str, Any]:
        return {
            "id": self.id.value,
            "name": self.name,
            "archetype": self.config.archetype,
            "role": self.config.role,
            "description": self.config.description,
            "capabilities": self.config.capabilities,
            "status": self.state.status.value,
            "created_at": self.created_at.isoformat(),
        }
