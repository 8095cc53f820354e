from typing import Any, Dict, List, Protocol, runtime_checkable

from agent_mesh.domain.models.llm import ToolCallResult, ToolSpec


@runtime_checkable
class ToolTransport(Protocol):
    """Connection to an external tool server.

    ``call_tool`` reports tool-level failures through
    ``ToolCallResult.success``; transport failures (refused connection,
    HTTP errors) are raised.
    """

    def is_connected(self) -> bool:
        ...

    def list_tools(self) -> List[ToolSpec]:
        ...

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> ToolCallResult:
        ...
