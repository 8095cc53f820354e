"""Tests for the critic satellite."""

import json

import pytest
from unittest.mock import AsyncMock

from agent_mesh.domain.models.agent_state import (
    CritiqueIssue,
    CritiqueTarget,
    IssueSeverity,
    IssueType,
    SatelliteId,
    Task,
)
from agent_mesh.domain.models.records import Document, DocumentMetadata, DocumentType, SearchMode, SearchResult
from agent_mesh.domain.orchestration.subagent.critic import (
    Critic,
    calculate_score,
    detect_content_type,
    extract_claims,
    recommendation_for,
)

ANALYSIS_PROMPT = "Analyze this"

RISKY_CODE = "def run(x):\n    return eval(x)  # TODO tidy up\n"


@pytest.fixture
def critic(generator, store):
    generator.reply(ANALYSIS_PROMPT, '{"issues": []}')
    return Critic(generator, store)


def issue(severity):
    return CritiqueIssue(type=IssueType.WARNING, severity=severity, description="x")


class TestHelpers:
    """Scoring, content detection and claim extraction."""

    def test_detect_content_type(self):
        assert detect_content_type(RISKY_CODE) == CritiqueTarget.CODE
        assert detect_content_type('{"analysis": "x", "tasks": []}') == CritiqueTarget.PLAN
        assert detect_content_type("Tea is a drink made from leaves") == CritiqueTarget.TEXT

    def test_score_subtracts_severity_penalties(self):
        issues = [issue(IssueSeverity.CRITICAL), issue(IssueSeverity.MAJOR), issue(IssueSeverity.MINOR), issue(IssueSeverity.INFO)]

        assert calculate_score(issues) == 100 - 25 - 15 - 5 - 1

    def test_score_never_goes_negative(self):
        assert calculate_score([issue(IssueSeverity.CRITICAL)] * 5) == 0

    @pytest.mark.parametrize("score,prefix", [
        (95, "Minor issues"),
        (75, "Several issues"),
        (55, "Significant issues"),
        (10, "Critical issues"),
    ])
    def test_recommendation_bands(self, score, prefix):
        assert recommendation_for([issue(IssueSeverity.MINOR)], score).startswith(prefix)

    def test_recommendation_without_issues(self):
        assert recommendation_for([], 100).startswith("No issues found")

    def test_extract_claims_skips_questions_and_short_sentences(self):
        text = "Tea originated in southwest China. Short one. How is tea made today? Green tea is not oxidized much."

        assert extract_claims(text) == ["Tea originated in southwest China", "Green tea is not oxidized much"]


class TestCritique:
    """Full critique runs."""

    @pytest.mark.asyncio
    async def test_eval_with_todo_is_rejected(self, critic):
        critique = await critic.critique(RISKY_CODE, CritiqueTarget.CODE, "target-1")

        assert critique.score == 70
        assert critique.approved is False
        severities = sorted(i.severity.value for i in critique.issues)
        assert severities == ["critical", "minor"]
        assert critique.recommendation.startswith("Several issues")

    @pytest.mark.asyncio
    async def test_clean_text_is_approved(self, critic):
        critique = await critic.critique("Fine.", CritiqueTarget.TEXT, "target-2")

        assert critique.score == 100
        assert critique.approved is True

    @pytest.mark.asyncio
    async def test_generator_issues_are_coerced(self, critic, generator):
        generator.reply(ANALYSIS_PROMPT, json.dumps({"issues": [
            {"type": "error", "severity": "MAJOR", "description": "off by one", "location": "line 3"},
            {"type": "bogus", "severity": "minor", "description": "dropped"},
            {"type": "warning", "severity": "minor"},
        ]}))

        critique = await critic.critique("plain words", CritiqueTarget.PLAN, "target-3")

        assert [i.description for i in critique.issues] == ["off by one"]
        assert critique.issues[0].severity == IssueSeverity.MAJOR
        assert critique.score == 85
        assert critique.approved is True

    @pytest.mark.asyncio
    async def test_unparsable_review_means_no_issues(self, critic, generator):
        generator.reply(ANALYSIS_PROMPT, "looks good")

        critique = await critic.critique("plain words", CritiqueTarget.PLAN, "target-4")

        assert critique.issues == []

    @pytest.mark.asyncio
    async def test_async_code_without_error_handling(self, critic):
        issues = critic.static_analysis("async def f():\n    await g()\n")

        assert [i.severity for i in issues] == [IssueSeverity.MAJOR]

    @pytest.mark.asyncio
    async def test_execute_critiques_task_context(self, critic):
        result = await critic.execute(Task(
            satellite_id=SatelliteId.CRITIC,
            description="review code",
            input="Review the generated code",
            context=RISKY_CODE,
        ))

        assert result.success is True
        payload = json.loads(result.output)
        assert payload["target_type"] == "code"
        assert result.artifacts[0].metadata["approved"] is False

    def test_quick_check(self, critic):
        assert critic.quick_check(RISKY_CODE) == {"has_issues": True, "critical_count": 1}
        assert critic.quick_check("print('hi')")["has_issues"] is False


class TestFactCheck:
    @pytest.mark.asyncio
    async def test_no_store_matches_means_no_flags(self, critic):
        assert await critic.fact_check("Tea originated in southwest China long ago.") == []

    @pytest.mark.asyncio
    async def test_weakly_supported_claim_is_flagged(self, critic, store):
        doc = Document(content="Coffee grows in Ethiopia", metadata=DocumentMetadata(source="test", type=DocumentType.TEXT))
        store.search = AsyncMock(return_value=[SearchResult(document=doc, score=0.1, match_type=SearchMode.HYBRID)])

        issues = await critic.fact_check("Tea originated in southwest China long ago.")

        assert len(issues) == 1
        assert issues[0].type == IssueType.HALLUCINATION
        assert issues[0].severity == IssueSeverity.MAJOR
        assert issues[0].suggestion.startswith("Verify against: Coffee grows")

    @pytest.mark.asyncio
    async def test_well_supported_claim_passes(self, critic, store):
        doc = Document(content="Tea originated in China", metadata=DocumentMetadata(source="test", type=DocumentType.TEXT))
        store.search = AsyncMock(return_value=[SearchResult(document=doc, score=0.9, match_type=SearchMode.HYBRID)])

        assert await critic.fact_check("Tea originated in southwest China long ago.") == []
