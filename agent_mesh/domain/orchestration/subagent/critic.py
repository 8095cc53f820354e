from typing import Any, Dict, List, Optional, Pattern, Tuple
import re

import structlog

from agent_mesh.domain.context.hybrid_store import HybridStore
from agent_mesh.domain.models.agent_state import (
    Artifact,
    ArtifactType,
    Critique,
    CritiqueIssue,
    CritiqueTarget,
    IssueSeverity,
    IssueType,
    SatelliteConfig,
    SatelliteId,
    SatelliteStatus,
    Task,
)
from agent_mesh.domain.models.parse_result import ParseOk, extract_json_object
from agent_mesh.domain.orchestration.subagent.base_subagent import BaseSatellite
from agent_mesh.infrastructure.config.settings import GeneratorSettings
from agent_mesh.infrastructure.llm.text_generator import TextGenerator

logger = structlog.get_logger(__name__)

CRITIC_CONFIG = SatelliteConfig(
    id=SatelliteId.CRITIC,
    name="Lilith",
    archetype="Red Teamer",
    description="Finds errors, security risks and unsupported claims in other satellites' output",
    role="critic",
    system_prompt=(
        "You are Lilith, the critic of a multi-agent system. You look for bugs, security "
        "vulnerabilities, flawed reasoning and inaccurate claims. Classify every issue as "
        "critical, major, minor or info and suggest a concrete fix. Be thorough but fair."
    ),
    capabilities=["code_review", "hallucination_detection", "security_scanning", "logic_validation"],
    max_iterations=2,
    temperature=0.2,
    priority=9,
)

SECURITY_PATTERNS: List[Tuple[str, Pattern]] = [
    ("eval call", re.compile(r"eval\s*\(", re.I)),
    ("innerHTML assignment", re.compile(r"innerHTML\s*=", re.I)),
    ("document.write", re.compile(r"document\.write", re.I)),
    ("exec call", re.compile(r"\bexec\s*\(|\.exec\s*\(", re.I)),
    ("child_process", re.compile(r"child_process", re.I)),
    ("os.system", re.compile(r"os\.system\s*\(")),
    ("subprocess with shell=True", re.compile(r"subprocess\.\w+\(.*shell\s*=\s*True")),
    ("pickle.loads", re.compile(r"pickle\.loads?\s*\(")),
    ("hardcoded password", re.compile(r"password\s*[=:]\s*[\"'][^\"']+[\"']", re.I)),
    ("hardcoded API key", re.compile(r"api[_-]?key\s*[=:]\s*[\"'][^\"']+[\"']", re.I)),
    ("hardcoded secret", re.compile(r"secret\s*[=:]\s*[\"'][^\"']+[\"']", re.I)),
    ("SQL built by concatenation", re.compile(r"SELECT\s+\*\s+FROM.*WHERE.*=\s*['\"]\s*\+", re.I)),
    ("dangerouslySetInnerHTML", re.compile(r"dangerouslySetInnerHTML", re.I)),
]

CODE_SMELL_PATTERNS: List[Tuple[str, Pattern]] = [
    ("leftover marker comment", re.compile(r"TODO|FIXME|HACK|XXX")),
    ("console logging", re.compile(r"console\.(log|debug|info)", re.I)),
    ("debugger statement", re.compile(r"\bdebugger\b|\bbreakpoint\(\)")),
    ("suppressed type check", re.compile(r"@ts-ignore|#\s*type:\s*ignore")),
    ("untyped any", re.compile(r":\s*any\b")),
    ("disabled lint rule", re.compile(r"eslint-disable|#\s*noqa", re.I)),
]

CODE_INDICATORS: List[Pattern] = [
    re.compile(r"^(import|export|const|let|var|function|class|interface|type)\s", re.M),
    re.compile(r"^(def|class|import|from)\s", re.M),
    re.compile(r"[{}\[\]();]"),
    re.compile(r"=>"),
]

SEVERITY_PENALTY = {
    IssueSeverity.CRITICAL: 25,
    IssueSeverity.MAJOR: 15,
    IssueSeverity.MINOR: 5,
    IssueSeverity.INFO: 1,
}

QUESTION_OR_COMMAND_PREFIXES = ("How", "What", "Please")


def detect_content_type(content: str) -> CritiqueTarget:
    code_score = sum(1 for pattern in CODE_INDICATORS if pattern.search(content))
    if code_score >= 2:
        return CritiqueTarget.CODE
    if '"tasks"' in content or '"analysis"' in content:
        return CritiqueTarget.PLAN
    return CritiqueTarget.TEXT


def calculate_score(issues: List[CritiqueIssue]) -> int:
    score = 100
    for issue in issues:
        score -= SEVERITY_PENALTY[issue.severity]
    return max(0, score)


def recommendation_for(issues: List[CritiqueIssue], score: int) -> str:
    if not issues:
        return "No issues found. The content passes quality checks."
    if score >= 90:
        return "Minor issues found. Consider addressing them but the content is acceptable."
    if score >= 70:
        return "Several issues found. Address the major issues before proceeding."
    if score >= 50:
        return "Significant issues found. The content needs revision before approval."
    return "Critical issues detected. The content should not be used as-is. Major revision required."


def extract_claims(text: str) -> List[str]:
    """Sentences that read like factual statements, at most ten"""

    claims = []
    for sentence in re.split(r"[.!?]+", text):
        stripped = sentence.strip()
        if len(stripped) <= 20:
            continue
        if stripped.startswith(QUESTION_OR_COMMAND_PREFIXES) or "?" in sentence:
            continue
        claims.append(stripped)
    return claims[:10]


class Critic(BaseSatellite):
    """Static checks, generator review and store-backed fact checking"""

    def __init__(
        self,
        generator: TextGenerator,
        store: HybridStore,
        settings: Optional[GeneratorSettings] = None,
    ):
        super().__init__(CRITIC_CONFIG, generator, store, settings)

    async def _run(self, task: Task) -> Tuple[str, List[Artifact]]:
        content = task.context or task.input
        critique = await self.critique(content, detect_content_type(content), task.id)
        payload = critique.model_dump_json()
        artifact = Artifact(
            type=ArtifactType.ANALYSIS,
            content=payload,
            metadata={"type": "critique", "approved": critique.approved, "score": critique.score},
        )
        return payload, [artifact]

    async def critique(self, content: str, target_type: CritiqueTarget, target_id: str) -> Critique:
        logger.info("Starting critique", target_type=target_type.value, content_length=len(content))
        await self.set_status(SatelliteStatus.THINKING)

        issues: List[CritiqueIssue] = []
        if target_type == CritiqueTarget.CODE:
            issues.extend(self.static_analysis(content))

        issues.extend(await self.llm_analysis(content, target_type))

        if target_type in (CritiqueTarget.TEXT, CritiqueTarget.OUTPUT):
            issues.extend(await self.fact_check(content))

        score = calculate_score(issues)
        critique = Critique(
            target_id=target_id,
            target_type=target_type,
            issues=issues,
            score=score,
            recommendation=recommendation_for(issues, score),
            approved=score >= 70 and not any(i.severity == IssueSeverity.CRITICAL for i in issues),
        )

        await self.store_result(critique.model_dump_json(), tags=[self.id.value, "critique"])
        logger.info("Critique complete", issues=len(issues), score=score, approved=critique.approved)
        return critique

    def static_analysis(self, code: str) -> List[CritiqueIssue]:
        issues = []

        for name, pattern in SECURITY_PATTERNS:
            matches = pattern.findall(code)
            if matches:
                issues.append(CritiqueIssue(
                    type=IssueType.SECURITY,
                    severity=IssueSeverity.CRITICAL,
                    description=f"Potential security vulnerability: {name}",
                    location=f"Found {len(matches)} occurrence(s)",
                    suggestion="Review and sanitize or remove this pattern",
                ))

        for name, pattern in CODE_SMELL_PATTERNS:
            matches = pattern.findall(code)
            if matches:
                issues.append(CritiqueIssue(
                    type=IssueType.WARNING,
                    severity=IssueSeverity.MINOR,
                    description=f"Code smell detected: {name}",
                    location=f"Found {len(matches)} occurrence(s)",
                    suggestion="Consider refactoring or removing debug code",
                ))

        if "await " in code and "try" not in code and ".catch" not in code:
            issues.append(CritiqueIssue(
                type=IssueType.ERROR,
                severity=IssueSeverity.MAJOR,
                description="Async code without error handling",
                suggestion="Wrap awaited calls in try/except (or .catch) and handle failures",
            ))

        return issues

    async def llm_analysis(self, content: str, target_type: CritiqueTarget) -> List[CritiqueIssue]:
        """Ask the generator for structured issues; unparsable output means none"""

        prompt = f"""Analyze this {target_type.value} for issues:

CONTENT:
```
{content[:3000]}
```

Look for logical errors, bugs and edge cases, security vulnerabilities, performance concerns,
maintainability issues, and hallucinations or inaccuracies.

Respond in JSON:
{{"issues": [{{"type": "error|warning|suggestion|security|hallucination",
  "severity": "critical|major|minor|info", "description": "...", "location": "...", "suggestion": "..."}}]}}
If there are no issues return {{"issues": []}}"""

        response = await self.generate(prompt)
        parsed = extract_json_object(response, source="critic")
        if not isinstance(parsed, ParseOk):
            return []

        issues = []
        for raw in parsed.value.get("issues") or []:
            issue = self._coerce_issue(raw)
            if issue is not None:
                issues.append(issue)
        return issues

    @staticmethod
    def _coerce_issue(raw: Any) -> Optional[CritiqueIssue]:
        if not isinstance(raw, dict) or not raw.get("description"):
            return None
        try:
            return CritiqueIssue(
                type=IssueType(str(raw.get("type", "warning")).lower()),
                severity=IssueSeverity(str(raw.get("severity", "minor")).lower()),
                description=str(raw["description"]),
                location=raw.get("location") or None,
                suggestion=raw.get("suggestion") or None,
            )
        except ValueError:
            logger.debug("Skipping malformed issue", raw=raw)
            return None

    async def fact_check(self, content: str) -> List[CritiqueIssue]:
        """Flag claims whose closest store matches are all weak"""

        issues = []
        for claim in extract_claims(content)[:5]:
            self._count_memory_access()
            results = await self.store.search(claim, limit=3)
            if not results:
                continue

            average = sum(r.score for r in results) / len(results)
            if average < 0.3:
                issues.append(CritiqueIssue(
                    type=IssueType.HALLUCINATION,
                    severity=IssueSeverity.MAJOR,
                    description=f'Potential inaccuracy: "{claim}"',
                    suggestion=f"Verify against: {results[0].document.content[:100]}...",
                ))
        return issues

    def quick_check(self, content: str) -> Dict[str, Any]:
        critical_count = sum(1 for _, pattern in SECURITY_PATTERNS if pattern.search(content))
        return {"has_issues": critical_count > 0, "critical_count": critical_count}
