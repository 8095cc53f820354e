from typing import Any, Awaitable, Callable, Dict, List, Optional
from datetime import datetime, timezone
import ast
import json
import operator
import re
import time
import uuid

import structlog

from agent_mesh.domain.models.llm import ToolCallResult, ToolSpec

logger = structlog.get_logger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]

_BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPERATORS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


_MAX_INT_BITS = 4096


def _check_size(value: float) -> float:
    if isinstance(value, int) and value.bit_length() > _MAX_INT_BITS:
        raise ValueError("number too large")
    return value


def _check_operands(op: ast.operator, left: float, right: float) -> None:
    """Reject integer work whose result would exceed the size bound before doing it"""

    if isinstance(op, ast.Pow):
        if abs(right) > 100:
            raise ValueError("exponent too large")
        if isinstance(left, int) and isinstance(right, int) and right > 0:
            if abs(left).bit_length() * right > _MAX_INT_BITS + right:
                raise ValueError("result too large")
    elif isinstance(op, ast.Mult) and isinstance(left, int) and isinstance(right, int):
        if abs(left).bit_length() + abs(right).bit_length() > _MAX_INT_BITS + 1:
            raise ValueError("result too large")


def _evaluate_node(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return _check_size(node.value)
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
        left, right = _evaluate_node(node.left), _evaluate_node(node.right)
        _check_operands(node.op, left, right)
        return _check_size(_BINARY_OPERATORS[type(node.op)](left, right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
        return _UNARY_OPERATORS[type(node.op)](_evaluate_node(node.operand))
    raise ValueError(f"unsupported element {type(node).__name__}")


def evaluate_expression(expression: str) -> float:
    """Arithmetic only: numbers, + - * / // % ** and parentheses.

    Integers are bounded to a few thousand bits so a nested power cannot
    stall the event loop.
    """

    try:
        return _evaluate_node(ast.parse(expression, mode="eval"))
    except (SyntaxError, ValueError, ZeroDivisionError, OverflowError) as e:
        raise ValueError(f"Invalid expression: {expression} ({e})") from e


async def _calculate(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {"result": evaluate_expression(str(arguments["expression"]))}


async def _get_time(arguments: Dict[str, Any]) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    return {
        "timestamp": int(now.timestamp() * 1000),
        "iso": now.isoformat(),
        "local": now.astimezone().strftime("%Y-%m-%d %H:%M:%S"),
    }


async def _generate_uuid(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {"uuid": str(uuid.uuid4())}


async def _analyze_text(arguments: Dict[str, Any]) -> Dict[str, Any]:
    text = str(arguments["text"])
    return {
        "length": len(text),
        "words": len(text.split()),
        "sentences": len(re.split(r"[.!?]+", text)),
        "paragraphs": len(re.split(r"\n\n+", text)),
    }


async def _validate_json(arguments: Dict[str, Any]) -> Dict[str, Any]:
    try:
        json.loads(str(arguments["json"]))
        return {"valid": True}
    except json.JSONDecodeError as e:
        return {"valid": False, "error": str(e)}


def _string_schema(name: str, description: str) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {name: {"type": "string", "description": description}},
        "required": [name],
    }


_EMPTY_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}}

BUILTIN_TOOLS: List[tuple] = [
    (ToolSpec(
        name="calculate",
        description="Evaluate a mathematical expression",
        input_schema=_string_schema("expression", "Math expression to evaluate"),
        category="math",
    ), _calculate),
    (ToolSpec(
        name="get_time",
        description="Get the current time",
        input_schema=_EMPTY_SCHEMA,
        category="utility",
    ), _get_time),
    (ToolSpec(
        name="generate_uuid",
        description="Generate a random UUID",
        input_schema=_EMPTY_SCHEMA,
        category="utility",
    ), _generate_uuid),
    (ToolSpec(
        name="analyze_text",
        description="Analyze text for length, words, sentences and paragraphs",
        input_schema=_string_schema("text", "Text to analyze"),
        category="text",
    ), _analyze_text),
    (ToolSpec(
        name="validate_json",
        description="Validate if a string is valid JSON",
        input_schema=_string_schema("json", "JSON string to validate"),
        category="text",
    ), _validate_json),
]


class ToolRegistry:
    """Registry of locally executable tools"""

    def __init__(self, include_builtins: bool = True):
        self.tools: Dict[str, ToolSpec] = {}
        self.handlers: Dict[str, ToolHandler] = {}
        self.tool_categories: Dict[str, List[str]] = {}
        if include_builtins:
            for spec, handler in BUILTIN_TOOLS:
                self.register_tool(spec, handler)

    def register_tool(self, spec: ToolSpec, handler: ToolHandler) -> None:
        if spec.name in self.tools:
            logger.warning("Replacing registered tool", tool_name=spec.name)
            self._unindex(spec.name)

        self.tools[spec.name] = spec
        self.handlers[spec.name] = handler
        self.tool_categories.setdefault(spec.category, []).append(spec.name)

    def unregister_tool(self, name: str) -> bool:
        if name not in self.tools:
            return False
        self._unindex(name)
        del self.tools[name]
        del self.handlers[name]
        return True

    def _unindex(self, name: str) -> None:
        category = self.tools[name].category
        names = self.tool_categories.get(category, [])
        if name in names:
            names.remove(name)

    def get_available_tools(self) -> List[ToolSpec]:
        return list(self.tools.values())

    def get_tool_info(self, name: str) -> Optional[ToolSpec]:
        return self.tools.get(name)

    def get_tools_by_category(self, category: str) -> List[ToolSpec]:
        return [self.tools[name] for name in self.tool_categories.get(category, []) if name in self.tools]

    def search_tools(self, query: str) -> List[ToolSpec]:
        """Tools whose name or description contains ``query``"""

        query_lower = query.lower()
        return [
            tool for tool in self.tools.values()
            if query_lower in tool.name.lower() or query_lower in tool.description.lower()
        ]

    async def call(self, name: str, arguments: Dict[str, Any]) -> ToolCallResult:
        """Run a registered tool; handler exceptions become failed results"""

        started = time.monotonic()
        handler = self.handlers.get(name)
        if handler is None:
            return ToolCallResult(success=False, error=f"Unknown tool: {name}")

        try:
            content = await handler(arguments)
            return ToolCallResult(success=True, content=content, execution_time=(time.monotonic() - started) * 1000)
        except Exception as e:
            return ToolCallResult(success=False, error=str(e), execution_time=(time.monotonic() - started) * 1000)
