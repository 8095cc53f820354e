from typing import AsyncIterator, List, Protocol, runtime_checkable
import structlog
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from agent_mesh.domain.models.llm import ChatCompletion, ChatMessage, TokenUsage

logger = structlog.get_logger(__name__)


@runtime_checkable
class TextGenerator(Protocol):
    """Chat completion boundary used by every satellite"""

    async def complete(
        self,
        messages: List[ChatMessage],
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> ChatCompletion:
        ...

    def stream(
        self,
        messages: List[ChatMessage],
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> AsyncIterator[str]:
        ...


def to_langchain_messages(messages: List[ChatMessage]) -> List[BaseMessage]:
    converted: List[BaseMessage] = []
    for message in messages:
        if message.role == "system":
            converted.append(SystemMessage(content=message.content))
        elif message.role == "assistant":
            converted.append(AIMessage(content=message.content))
        else:
            converted.append(HumanMessage(content=message.content))
    return converted


def _content_to_text(content) -> str:
    if isinstance(content, str):
        return content
    # Multi-part content blocks
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


class LangChainTextGenerator:
    """Adapts any LangChain chat model to the TextGenerator protocol"""

    def __init__(self, model: BaseChatModel):
        self.model = model

    async def complete(
        self,
        messages: List[ChatMessage],
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> ChatCompletion:
        response = await self.model.ainvoke(
            to_langchain_messages(messages),
            temperature=temperature,
            max_tokens=max_tokens,
        )

        usage = None
        usage_metadata = getattr(response, "usage_metadata", None)
        if usage_metadata:
            usage = TokenUsage(
                prompt_tokens=usage_metadata.get("input_tokens", 0),
                completion_tokens=usage_metadata.get("output_tokens", 0),
                total_tokens=usage_metadata.get("total_tokens", 0),
            )

        return ChatCompletion(content=_content_to_text(response.content), usage=usage)

    async def stream(
        self,
        messages: List[ChatMessage],
        temperature: float = 0.7,
        max_tokens: int = 2048,
    ) -> AsyncIterator[str]:
        async for chunk in self.model.astream(
            to_langchain_messages(messages),
            temperature=temperature,
            max_tokens=max_tokens,
        ):
            text = _content_to_text(chunk.content)
            if text:
                yield text
