from typing import Any, Dict, List, Optional, Tuple
import asyncio

import structlog

from agent_mesh.domain.context.context_manager import ContextManager, estimate_tokens
from agent_mesh.domain.context.hybrid_store import HybridStore
from agent_mesh.domain.models.agent_state import (
    Artifact,
    ConversationRole,
    ConversationTurn,
    EvictionDecision,
    ResourceMetrics,
    SatelliteConfig,
    SatelliteId,
    SatelliteStatus,
    Task,
)
from agent_mesh.domain.models.llm import ChatMessage
from agent_mesh.domain.models.records import ContextSlice, SliceMessage
from agent_mesh.domain.orchestration.subagent.base_subagent import BaseSatellite
from agent_mesh.infrastructure.config.settings import ContextSettings, GeneratorSettings
from agent_mesh.infrastructure.llm.text_generator import TextGenerator
from agent_mesh.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

RESOURCE_MANAGER_CONFIG = SatelliteConfig(
    id=SatelliteId.RESOURCE_MANAGER,
    name="York",
    archetype="Manager",
    description="Keeps the conversation inside its token budget by summarizing old turns",
    role="resource_manager",
    system_prompt=(
        "You are York, the resource manager of a multi-agent system. You compress old "
        "conversation into dense summaries that keep facts, decisions and open questions, "
        "and you recommend how to use memory and context efficiently."
    ),
    capabilities=["context_eviction", "summarization", "resource_monitoring", "model_recommendation"],
    max_iterations=2,
    temperature=0.2,
    priority=10,
)

NO_EVICTION_MESSAGE = "No eviction needed - context usage is within limits."

# Memory estimate thresholds in MB
HIGH_MEMORY_MB = 500
MEDIUM_MODEL_MB = 400
SMALL_MODEL_MB = 800
SLOW_INFERENCE_TPS = 10


def parse_task_type(task_input: str) -> str:
    lowered = task_input.lower()
    if "evict" in lowered or "clear" in lowered or "cut" in lowered:
        return "eviction"
    if "summar" in lowered:
        return "summarize"
    if "optim" in lowered:
        return "optimize"
    return "status"


class ResourceManager(BaseSatellite):
    """Conversation budget owner.

    Every turn of the user-facing conversation passes through
    ``add_conversation_turn``. When usage crosses the eviction threshold the
    oldest turns are summarized into a ``ContextSlice``, persisted in the
    hybrid store and dropped from the live history.
    """

    def __init__(
        self,
        generator: TextGenerator,
        store: HybridStore,
        settings: Optional[GeneratorSettings] = None,
        context_settings: Optional[ContextSettings] = None,
    ):
        super().__init__(RESOURCE_MANAGER_CONFIG, generator, store, settings)
        self.context = ContextManager(context_settings)
        self.active_agents = 0
        self.inference_speed = 0.0
        self._eviction_lock = asyncio.Lock()

    async def _run(self, task: Task) -> Tuple[str, List[Artifact]]:
        task_type = parse_task_type(task.input)
        await self.set_status(SatelliteStatus.EXECUTING)

        if task_type == "eviction":
            output = await self.perform_context_eviction()
        elif task_type == "summarize":
            output = await self.summarize_content(task.context or task.input)
        elif task_type == "optimize":
            output = await self.optimize_resources()
        else:
            output = self.get_resource_metrics().model_dump_json()
        return output, []

    async def add_conversation_turn(
        self,
        role: ConversationRole,
        content: str,
        satellite_id: Optional[SatelliteId] = None,
    ) -> ConversationTurn:
        """Record a turn and evict inline when the budget threshold is crossed.

        Eviction failures are logged; the turn itself is always kept.
        """
        turn = await self.context.add_turn(role, content, satellite_id)

        decision = self.context.evaluate_eviction()
        if decision.should_evict:
            logger.info(
                "Triggering automatic eviction",
                current_tokens=self.context.current_tokens,
                priority=decision.priority.value,
            )
            try:
                await self.perform_context_eviction()
            except Exception as e:
                logger.error("Automatic eviction failed", error=str(e))

        return turn

    def evaluate_eviction(self) -> EvictionDecision:
        return self.context.evaluate_eviction()

    async def perform_context_eviction(self) -> str:
        async with self._eviction_lock:
            decision = self.context.evaluate_eviction()
            if not decision.should_evict:
                return NO_EVICTION_MESSAGE

            evicted = self.context.runtime_memory.oldest(decision.messages_to_summarize)
            if not evicted:
                return "No messages to evict."

            logger.info(
                "Performing context eviction",
                tokens_to_free=decision.tokens_to_free,
                messages=len(evicted),
                priority=decision.priority.value,
            )

            summary = await self.generate_summary(evicted)
            embedding = await self._embed_summary(summary)

            original_tokens = sum(turn.token_count for turn in evicted)
            compressed_tokens = estimate_tokens(summary)
            context_slice = ContextSlice(
                summary=summary,
                original_token_count=original_tokens,
                compressed_token_count=compressed_tokens,
                embedding=embedding,
                messages=[SliceMessage(role=turn.role.value, content=turn.content) for turn in evicted],
            )

            freed = await self.context.runtime_memory.remove_oldest(evicted)
            self.context.add_slice(context_slice, freed)
            self._count_memory_access()
            await self.store.store_context_slice(context_slice)

            ratio = (1 - compressed_tokens / original_tokens) * 100 if original_tokens else 0.0
            agent_logger.log_context_update(
                "conversation",
                "evicted",
                {
                    "evicted_messages": len(evicted),
                    "original_tokens": original_tokens,
                    "compressed_tokens": compressed_tokens,
                    "compression_ratio": f"{ratio:.1f}%",
                },
            )
            metrics.increment_counter("context_evictions")
            metrics.set_gauge("context_tokens", self.context.current_tokens)

            return (
                f"Context eviction complete: evicted {len(evicted)} messages "
                f"({original_tokens} tokens -> {compressed_tokens} token summary, {ratio:.1f}% compression)"
            )

    async def _embed_summary(self, summary: str) -> List[float]:
        embedding = await self.store.try_embed(summary, "context_slice")
        return embedding or []

    async def generate_summary(self, turns: List[ConversationTurn]) -> str:
        conversation = "\n\n".join(f"{turn.role.value.upper()}: {turn.content}" for turn in turns)
        prompt = f"""Summarize this conversation segment, preserving key information:

CONVERSATION:
{conversation}

Create a dense summary that:
1. Preserves important facts, decisions and context
2. Notes any unresolved questions or tasks
3. Is as concise as possible while retaining meaning

Summary:"""

        return await self.generate(prompt)

    async def summarize_content(self, content: str) -> str:
        return await self.generate(f"Summarize this content concisely:\n\n{content}\n\nSummary:")

    async def optimize_resources(self) -> str:
        current = self.get_resource_metrics()
        recommendations = []

        if current.context_tokens > current.max_context_tokens * 0.7:
            recommendations.append("Consider running context eviction to free context space")
        if current.memory_usage > HIGH_MEMORY_MB:
            recommendations.append("High memory usage detected - consider clearing unused data")
        if current.memory_usage > SMALL_MODEL_MB or current.inference_speed < SLOW_INFERENCE_TPS:
            recommendations.append("Consider switching to a smaller model")

        dropped = self.context.trim_slices()
        if dropped:
            recommendations.append(f"Cleaned up {dropped} old context slices")

        if not recommendations:
            return "System is running optimally. No optimizations needed."
        return "Optimization recommendations:\n" + "\n".join(f"- {r}" for r in recommendations)

    def _memory_estimate(self) -> float:
        conversation_bytes = sum(len(turn.content) * 2 for turn in self.context.runtime_memory.turns)
        slice_bytes = sum(len(s.summary) * 2 + len(s.embedding) * 4 for s in self.context.context_slices)
        return round((conversation_bytes + slice_bytes) / (1024 * 1024), 2)

    def get_resource_metrics(self) -> ResourceMetrics:
        return ResourceMetrics(
            memory_usage=self._memory_estimate(),
            context_tokens=self.context.current_tokens,
            max_context_tokens=self.context.max_tokens,
            active_agents=self.active_agents,
            inference_speed=self.inference_speed,
        )

    def set_active_agents(self, count: int) -> None:
        self.active_agents = count

    def set_inference_speed(self, tokens_per_second: float) -> None:
        self.inference_speed = tokens_per_second

    def get_recommended_model(self) -> str:
        memory_usage = self._memory_estimate()
        if memory_usage > SMALL_MODEL_MB:
            return "small"
        if memory_usage > MEDIUM_MODEL_MB:
            return "medium"
        return "large"

    def get_context_for_llm(self) -> List[ChatMessage]:
        return self.context.build_llm_context()

    async def clear_context(self) -> None:
        await self.context.clear()

    def get_context_summary(self) -> Dict[str, Any]:
        return self.context.get_summary()

