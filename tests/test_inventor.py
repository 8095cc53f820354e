"""Tests for the inventor satellite."""

import pytest

from agent_mesh.domain.models.agent_state import ArtifactType, SatelliteId, Task
from agent_mesh.domain.models.records import DocumentType, SearchMode
from agent_mesh.domain.orchestration.subagent.inventor import (
    Inventor,
    detect_language,
    detect_language_from_code,
    extract_code,
    extract_dependencies,
    is_code_request,
)

CODE_PROMPT = "Generate code for this requirement"
CONTENT_PROMPT = "Create high-quality content"

CODE_RESPONSE = """I will fetch the page and print its title.

```python
import requests
from bs4 import BeautifulSoup

print(BeautifulSoup(requests.get(URL).text).title)
```
"""


@pytest.fixture
def inventor(generator, store):
    generator.reply(CODE_PROMPT, CODE_RESPONSE)
    generator.reply(CONTENT_PROMPT, "A short essay about tea.")
    return Inventor(generator, store)


class TestDetection:
    """Request classification and language detection."""

    def test_is_code_request(self):
        assert is_code_request("Write a scraper")
        assert not is_code_request("Describe tea history")

    @pytest.mark.parametrize("text,language", [
        ("a flask service", "python"),
        ("typed helpers in ts", "typescript"),
        ("a react widget", "react"),
        ("a node cli", "javascript"),
        ("a rust crate", "rust"),
        ("a golang worker", "go"),
        ("something generic", "python"),
    ])
    def test_detect_language(self, text, language):
        assert detect_language(text) == language

    def test_detect_language_from_code(self):
        assert detect_language_from_code("def f():\n    return 1") == "python"
        assert detect_language_from_code("interface A { b: string }") == "typescript"
        assert detect_language_from_code("const a = () => 1") == "javascript"


class TestCodeExtraction:
    def test_fenced_block(self):
        result = extract_code(CODE_RESPONSE, "javascript")

        assert result.language == "python"
        assert result.code.startswith("import requests")
        assert result.explanation == "I will fetch the page and print its title."
        assert result.dependencies == ["requests", "bs4"]

    def test_unfenced_response_is_all_code(self):
        result = extract_code("x = 1", "python")

        assert result.code == "x = 1"
        assert result.explanation == "Generated code:"

    def test_js_dependencies_skip_relative_imports(self):
        code = "import React from 'react'\nimport util from './util'\nimport x from '@/lib/x'\nimport React2 from 'react'"

        assert extract_dependencies(code, "react") == ["react"]


class TestInventorExecution:
    """Both execution branches."""

    @pytest.mark.asyncio
    async def test_code_task_returns_code_artifact(self, inventor, generator, store):
        result = await inventor.execute(Task(
            satellite_id=SatelliteId.INVENTOR,
            description="Write a python scraper",
            input="Write a python scraper",
        ))

        assert result.success is True
        assert "```python\nimport requests" in result.output
        artifact = result.artifacts[0]
        assert artifact.type == ArtifactType.CODE
        assert artifact.metadata == {"language": "python", "dependencies": ["requests", "bs4"]}
        assert "Python guidelines" in generator.prompts_starting_with(CODE_PROMPT)[0]

        stored = await store.search("Generated", search_mode=SearchMode.KEYWORD)
        assert stored[0].document.metadata.type == DocumentType.CODE
        assert stored[0].document.metadata.language == "python"

    @pytest.mark.asyncio
    async def test_content_task_uses_dependency_context(self, inventor, generator):
        result = await inventor.execute(Task(
            satellite_id=SatelliteId.INVENTOR,
            description="Describe tea history",
            input="Describe tea history",
            context="[PYTHAGORAS]: Tea originated in China",
        ))

        assert result.output == "A short essay about tea."
        assert result.artifacts[0].type == ArtifactType.TEXT
        assert "[PYTHAGORAS]: Tea originated in China" in generator.prompts_starting_with(CONTENT_PROMPT)[0]

    @pytest.mark.asyncio
    async def test_refactor_detects_language_from_code(self, inventor, generator):
        generator.reply("Refactor this code", "Renamed things.\n```python\ndef better():\n    return 1\n```")

        result = await inventor.refactor_code("def f():\n    return 1", ["better name"])

        assert result.code == "def better():\n    return 1"
        assert "1. better name" in generator.prompts_starting_with("Refactor this code")[0]

    @pytest.mark.asyncio
    async def test_documentation_prompt_carries_language(self, inventor, generator):
        generator.reply("Write documentation", "Adds one.")

        docs = await inventor.generate_documentation("def inc(x):\n    return x + 1")

        assert docs == "Adds one."
        assert "```python\ndef inc(x):" in generator.prompts_starting_with("Write documentation")[0]
