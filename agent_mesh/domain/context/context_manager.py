from typing import Any, Dict, List, Optional
import math

import structlog

from agent_mesh.domain.context.memory.runtime_memory import RuntimeMemory
from agent_mesh.domain.models.agent_state import (
    ConversationRole,
    ConversationTurn,
    EvictionDecision,
    EvictionPriority,
    SatelliteId,
)
from agent_mesh.domain.models.llm import ChatMessage
from agent_mesh.domain.models.records import ContextSlice
from agent_mesh.infrastructure.config.settings import ContextSettings

logger = structlog.get_logger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token count, about four characters per token.

    An approximation only; it does not match any real tokenizer.
    """
    return math.ceil(len(text) / 4)


class ContextManager:
    """Token budget bookkeeping for the live conversation.

    Holds the live turns and the compressed slices produced by eviction,
    decides when eviction is due and assembles the message list sent to
    the text generator.
    """

    def __init__(self, settings: Optional[ContextSettings] = None):
        self.settings = settings or ContextSettings()
        self.runtime_memory = RuntimeMemory()
        self.context_slices: List[ContextSlice] = []
        self.total_evicted_tokens = 0

    @property
    def max_tokens(self) -> int:
        return self.settings.max_context_tokens

    @property
    def current_tokens(self) -> int:
        return self.runtime_memory.current_tokens

    @property
    def usage_ratio(self) -> float:
        return self.current_tokens / self.max_tokens if self.max_tokens else 0.0

    async def add_turn(
        self,
        role: ConversationRole,
        content: str,
        satellite_id: Optional[SatelliteId] = None,
    ) -> ConversationTurn:
        turn = ConversationTurn(
            role=role,
            content=content,
            satellite_id=satellite_id,
            token_count=estimate_tokens(content),
        )
        total = await self.runtime_memory.append(turn)
        logger.debug("Conversation turn added", role=role.value, tokens=turn.token_count, total_tokens=total)
        return turn

    def evaluate_eviction(self) -> EvictionDecision:
        """Decide whether the oldest turns should be compressed.

        Frees enough of the oldest turns to bring usage back down to the
        target ratio. The count is by whole turns so it may overshoot.
        """
        usage = self.usage_ratio

        if usage < self.settings.eviction_threshold:
            return EvictionDecision(should_evict=False, priority=EvictionPriority.LOW)

        tokens_to_free = math.floor(
            self.current_tokens - self.max_tokens * self.settings.target_after_eviction
        )

        freed = 0
        messages_to_summarize = 0
        for turn in self.runtime_memory.turns:
            if freed >= tokens_to_free:
                break
            freed += turn.token_count
            messages_to_summarize += 1

        if usage >= 0.95:
            priority = EvictionPriority.CRITICAL
        elif usage >= 0.9:
            priority = EvictionPriority.HIGH
        else:
            priority = EvictionPriority.MEDIUM

        return EvictionDecision(
            should_evict=True,
            tokens_to_free=tokens_to_free,
            messages_to_summarize=messages_to_summarize,
            priority=priority,
        )

    def add_slice(self, context_slice: ContextSlice, evicted_tokens: int) -> None:
        self.context_slices.append(context_slice)
        self.total_evicted_tokens += evicted_tokens

    def trim_slices(self) -> int:
        """Keep only the most recent local slices; returns how many were dropped"""

        keep = self.settings.max_local_slices
        dropped = max(0, len(self.context_slices) - keep)
        if dropped:
            self.context_slices = self.context_slices[-keep:]
        return dropped

    def build_llm_context(self) -> List[ChatMessage]:
        """Compressed history as one system message, then the live turns in order"""

        messages: List[ChatMessage] = []

        recent = self.context_slices[-self.settings.slices_in_context:]
        if recent:
            summaries = "\n\n---\n\n".join(s.summary for s in recent)
            messages.append(ChatMessage(
                role="system",
                content=f"Previous conversation context:\n{summaries}",
            ))

        for turn in self.runtime_memory.turns:
            messages.append(ChatMessage(role=turn.role.value, content=turn.content))

        return messages

    async def clear(self) -> None:
        await self.runtime_memory.clear()
        self.context_slices = []
        self.total_evicted_tokens = 0
        logger.info("Conversation context cleared")

    def get_summary(self) -> Dict[str, Any]:
        return {
            "current_turns": len(self.runtime_memory),
            "current_tokens": self.current_tokens,
            "max_tokens": self.max_tokens,
            "usage": round(self.usage_ratio, 4),
            "context_slices": len(self.context_slices),
            "total_evicted_tokens": self.total_evicted_tokens,
        }
