"""Test doubles for the text generator, embedder and tool transport.

Satellite prompts open with a fixed instruction line, so ``ScriptedGenerator``
answers by matching the start of the last user message against a table of
prefixes. Unmatched prompts get ``default``.
"""

import asyncio
from typing import Any, Dict, List, Optional

from agent_mesh.domain.models.llm import ChatCompletion, ChatMessage, TokenUsage, ToolCallResult, ToolSpec


class ScriptedGenerator:
    """TextGenerator fake keyed on prompt prefixes"""

    def __init__(self, responses: Optional[Dict[str, str]] = None, default: str = "ok"):
        self.responses: Dict[str, str] = dict(responses or {})
        self.default = default
        self.prompts: List[str] = []

    def reply(self, prefix: str, response: str) -> None:
        self.responses[prefix] = response

    def _answer(self, messages: List[ChatMessage]) -> str:
        prompt = messages[-1].content
        self.prompts.append(prompt)
        for prefix, response in self.responses.items():
            if prompt.startswith(prefix):
                return response
        return self.default

    def prompts_starting_with(self, prefix: str) -> List[str]:
        return [p for p in self.prompts if p.startswith(prefix)]

    async def complete(self, messages, temperature=0.7, max_tokens=2048) -> ChatCompletion:
        content = self._answer(messages)
        return ChatCompletion(
            content=content,
            usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15),
        )

    async def stream(self, messages, temperature=0.7, max_tokens=2048):
        content = self._answer(messages)
        for i in range(0, len(content), 4):
            yield content[i:i + 4]


class OverlapTrackingGenerator(ScriptedGenerator):
    """ScriptedGenerator that holds each completion briefly and records peak concurrency"""

    def __init__(self, responses: Optional[Dict[str, str]] = None, default: str = "ok", hold: float = 0.05):
        super().__init__(responses, default)
        self.hold = hold
        self.in_flight = 0
        self.peak = 0

    async def complete(self, messages, temperature=0.7, max_tokens=2048) -> ChatCompletion:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.hold)
            return await super().complete(messages, temperature, max_tokens)
        finally:
            self.in_flight -= 1


class FailingGenerator:
    """TextGenerator whose every call raises"""

    async def complete(self, messages, temperature=0.7, max_tokens=2048):
        raise RuntimeError("generator unavailable")

    async def stream(self, messages, temperature=0.7, max_tokens=2048):
        raise RuntimeError("generator unavailable")
        yield


class FailingEmbedder:
    """Embedder that is always down"""

    async def embed(self, text: str) -> List[float]:
        raise RuntimeError("embedding service down")


class FakeTransport:
    """Connected tool transport answering every call with ``reply``"""

    def __init__(self, tools: List[ToolSpec], reply: Any = "remote", connected: bool = True):
        self.tools = tools
        self.reply = reply
        self.connected = connected
        self.calls: List[tuple] = []

    def is_connected(self) -> bool:
        return self.connected

    def list_tools(self) -> List[ToolSpec]:
        return list(self.tools)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> ToolCallResult:
        self.calls.append((name, arguments))
        return ToolCallResult(success=True, content=self.reply)
