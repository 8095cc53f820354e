from typing import Dict, List, Optional, Tuple
import re

import structlog
from pydantic import BaseModel, Field

from agent_mesh.domain.context.hybrid_store import HybridStore
from agent_mesh.domain.models.agent_state import (
    Artifact,
    ArtifactType,
    SatelliteConfig,
    SatelliteId,
    SatelliteStatus,
    Task,
)
from agent_mesh.domain.models.records import DocumentType
from agent_mesh.domain.orchestration.subagent.base_subagent import BaseSatellite
from agent_mesh.infrastructure.config.settings import GeneratorSettings
from agent_mesh.infrastructure.llm.text_generator import TextGenerator

logger = structlog.get_logger(__name__)

INVENTOR_CONFIG = SatelliteConfig(
    id=SatelliteId.INVENTOR,
    name="Edison",
    archetype="Inventor",
    description="Generates code, documentation and written content",
    role="inventor",
    system_prompt=(
        "You are Edison, the inventor of a multi-agent system. You write complete, "
        "runnable code and clear written content. Put code in fenced blocks tagged "
        "with the language and explain your approach briefly before the code."
    ),
    capabilities=["code_generation", "refactoring", "documentation", "content_creation"],
    max_iterations=3,
    temperature=0.4,
    priority=7,
)

CODE_KEYWORDS = (
    "code", "function", "implement", "create", "write", "generate", "build", "develop",
    "program", "script", "component", "class", "module", "api", "endpoint",
)

# Checked in order; first language with a whole-word hit wins
LANGUAGE_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("python", ("python", "py", "django", "flask", "fastapi", "pandas")),
    ("typescript", ("typescript", "ts")),
    ("react", ("react", "jsx", "tsx")),
    ("javascript", ("javascript", "js", "node")),
    ("rust", ("rust", "rs")),
    ("go", ("golang", "go")),
]

DEFAULT_LANGUAGE = "python"

LANGUAGE_GUIDELINES: Dict[str, str] = {
    "python": """Python guidelines:
- Follow PEP 8
- Use type hints on public functions
- Raise specific exceptions and handle them where recovery is possible
- Prefer the standard library and well-known packages""",
    "typescript": """TypeScript guidelines:
- Use strict types, avoid 'any'
- Prefer interfaces for object shapes
- Handle errors with try/catch around awaited calls""",
    "javascript": """JavaScript guidelines:
- Use 'const' and 'let', never 'var'
- Handle async errors
- Use destructuring where it helps readability""",
    "react": """React guidelines:
- Function components with hooks
- Keep components small and typed
- Memoize expensive computations""",
}

CODE_BLOCK = re.compile(r"```(\w+)?\n([\s\S]*?)```")
JS_IMPORT = re.compile(r"import\s+.*?\s+from\s+['\"]([^'\"]+)['\"]")
PY_IMPORT = re.compile(r"^(?:from\s+(\S+)|import\s+(\S+))", re.M)


class CodeGenerationResult(BaseModel):
    code: str
    language: str
    explanation: str
    dependencies: List[str] = Field(default_factory=list)


def is_code_request(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in CODE_KEYWORDS)


def detect_language(text: str) -> str:
    words = set(re.findall(r"[a-z0-9+#]+", text.lower()))
    for language, keywords in LANGUAGE_KEYWORDS:
        if words.intersection(keywords):
            return language
    return DEFAULT_LANGUAGE


def detect_language_from_code(code: str) -> str:
    if "def " in code or ("import " in code and ":" in code and "{" not in code):
        return "python"
    if "interface " in code or ": string" in code or ": number" in code:
        return "typescript"
    if "func " in code and "package " in code:
        return "go"
    if "fn " in code and "let mut" in code:
        return "rust"
    return "javascript"


def extract_dependencies(code: str, language: str) -> List[str]:
    """Third-party package names imported by ``code``, first occurrence order"""

    deps: List[str] = []
    if language in ("typescript", "javascript", "react"):
        for match in JS_IMPORT.finditer(code):
            module = match.group(1)
            if not module.startswith(".") and not module.startswith("@/"):
                deps.append(module)
    elif language == "python":
        for match in PY_IMPORT.finditer(code):
            module = match.group(1) or match.group(2)
            if module and not module.startswith("."):
                deps.append(module.split(".")[0].rstrip(","))
    return list(dict.fromkeys(deps))


def extract_code(response: str, default_language: str) -> CodeGenerationResult:
    match = CODE_BLOCK.search(response)
    if not match:
        return CodeGenerationResult(code=response, language=default_language, explanation="Generated code:")

    language = match.group(1) or default_language
    code = match.group(2).strip()
    return CodeGenerationResult(
        code=code,
        language=language,
        explanation=response.split("```")[0].strip(),
        dependencies=extract_dependencies(code, language),
    )


class Inventor(BaseSatellite):
    """Code and content generation"""

    def __init__(
        self,
        generator: TextGenerator,
        store: HybridStore,
        settings: Optional[GeneratorSettings] = None,
    ):
        super().__init__(INVENTOR_CONFIG, generator, store, settings)

    async def _run(self, task: Task) -> Tuple[str, List[Artifact]]:
        if is_code_request(task.input):
            result = await self.generate_code(task.input, existing_code=task.context)
            output = f"{result.explanation}\n\n```{result.language}\n{result.code}\n```"
            artifact = Artifact(
                type=ArtifactType.CODE,
                content=result.code,
                metadata={"language": result.language, "dependencies": result.dependencies},
            )
            return output, [artifact]

        content = await self.generate_content(task.input, task.context)
        return content, [Artifact(type=ArtifactType.TEXT, content=content, metadata={"type": "content"})]

    async def generate_code(
        self,
        requirement: str,
        language: Optional[str] = None,
        existing_code: Optional[str] = None,
    ) -> CodeGenerationResult:
        logger.info("Generating code", requirement=requirement[:100])
        await self.set_status(SatelliteStatus.THINKING, 0.2)

        relevant = await self.search_context(requirement, limit=3)
        language = language or detect_language(requirement)

        sections = [f"Generate code for this requirement:\n\nREQUIREMENT:\n{requirement}"]
        if existing_code:
            sections.append(f"EXISTING CONTEXT:\n```\n{existing_code}\n```")
        if relevant != "No relevant context found.":
            sections.append(f"RELEVANT PATTERNS:\n{relevant}")
        if language in LANGUAGE_GUIDELINES:
            sections.append(f"LANGUAGE GUIDELINES:\n{LANGUAGE_GUIDELINES[language]}")
        sections.append(
            "Respond with:\n1. Brief explanation of approach\n2. Complete, runnable code\n"
            "3. Any dependencies needed\nFormat your code block with the language identifier."
        )

        await self.set_status(SatelliteStatus.EXECUTING, 0.5)
        response = await self.generate("\n\n".join(sections))
        result = extract_code(response, language)

        await self.store_result(
            result.code,
            doc_type=DocumentType.CODE,
            tags=["generated", result.language],
            title=f"Generated: {requirement[:50]}",
            language=result.language,
        )
        return result

    async def generate_content(self, request: str, context: Optional[str] = None) -> str:
        logger.info("Generating content", request=request[:100])

        prompt = f"Create high-quality content for this request:\n\nREQUEST: {request}\n"
        if context:
            prompt += f"\nUse these earlier results:\n{context}\n"
        prompt += (
            "\nGuidelines:\n- Be clear, concise and informative\n- Use headings and lists where they help\n"
            "- Give examples where helpful\n- Be accurate and complete"
        )
        return await self.generate(prompt)

    async def refactor_code(self, code: str, improvements: List[str]) -> CodeGenerationResult:
        language = detect_language_from_code(code)
        numbered = "\n".join(f"{i + 1}. {item}" for i, item in enumerate(improvements))
        prompt = f"""Refactor this code with the following improvements:

ORIGINAL CODE:
```{language}
{code}
```

IMPROVEMENTS NEEDED:
{numbered}

Provide an explanation of the changes, the refactored code, and any breaking changes."""

        response = await self.generate(prompt)
        return extract_code(response, language)

    async def generate_documentation(self, code: str) -> str:
        language = detect_language_from_code(code)
        prompt = f"""Write documentation for this code:

```{language}
{code}
```

Cover what it does, each function with parameters and return values, usage examples and caveats."""

        return await self.generate(prompt)
