from typing import Dict, Any, Literal, Optional
from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    """Provider-neutral chat message"""
    role: Literal["system", "user", "assistant"]
    content: str


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletion(BaseModel):
    content: str
    usage: Optional[TokenUsage] = None


class ToolSpec(BaseModel):
    """Tool description as advertised by a transport or the built-in catalog"""
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    category: str = "general"


class ToolCallResult(BaseModel):
    """Raw result of one tool invocation. ``execution_time`` is in milliseconds."""
    success: bool
    content: Any = None
    error: Optional[str] = None
    execution_time: float = 0.0
