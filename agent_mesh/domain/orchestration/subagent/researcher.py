from typing import Dict, List, Optional, Tuple

import structlog

from agent_mesh.domain.context.hybrid_store import HybridStore
from agent_mesh.domain.models.agent_state import (
    Artifact,
    ArtifactType,
    ResearchFinding,
    ResearchQuery,
    SatelliteConfig,
    SatelliteId,
    SatelliteStatus,
    SearchSource,
    Task,
)
from agent_mesh.domain.models.parse_result import ParseOk, extract_json_object
from agent_mesh.domain.models.records import DocumentType, SearchMode
from agent_mesh.domain.orchestration.subagent.base_subagent import BaseSatellite
from agent_mesh.infrastructure.config.settings import GeneratorSettings
from agent_mesh.infrastructure.llm.text_generator import TextGenerator

logger = structlog.get_logger(__name__)

RESEARCHER_CONFIG = SatelliteConfig(
    id=SatelliteId.RESEARCHER,
    name="Pythagoras",
    archetype="Scholar",
    description="Answers questions from the knowledge store with cited findings",
    role="researcher",
    system_prompt=(
        "You are Pythagoras, the researcher of a multi-agent system. You search the "
        "knowledge store, extract relevant findings and combine them into accurate answers "
        "that cite their sources and say where knowledge is missing."
    ),
    capabilities=["query_expansion", "source_gathering", "finding_extraction", "synthesis"],
    max_iterations=5,
    temperature=0.3,
    priority=6,
)

RELEVANCE_WEIGHTS = {"high": 1.0, "medium": 0.6, "low": 0.3}
SOURCES_PER_QUERY = 5
MAX_SOURCES = 10
BATCH_SIZE = 3


def relevance_to_number(relevance: object) -> float:
    return RELEVANCE_WEIGHTS.get(str(relevance).lower(), 0.5)


def no_information_message(question: str) -> str:
    return (
        f'No relevant information found in the knowledge store for: "{question}". '
        "Consider adding relevant documents to the knowledge base."
    )


class Researcher(BaseSatellite):
    """Query expansion, hybrid retrieval and cited synthesis"""

    def __init__(
        self,
        generator: TextGenerator,
        store: HybridStore,
        settings: Optional[GeneratorSettings] = None,
    ):
        super().__init__(RESEARCHER_CONFIG, generator, store, settings)

    async def _run(self, task: Task) -> Tuple[str, List[Artifact]]:
        research = await self.research(task.input)
        artifact = Artifact(
            type=ArtifactType.ANALYSIS,
            content=research.model_dump_json(),
            metadata={
                "type": "research",
                "source_count": len(research.sources),
                "finding_count": len(research.findings),
            },
        )
        return research.synthesis, [artifact]

    async def research(self, question: str) -> ResearchQuery:
        logger.info("Starting research", question=question[:100])

        variations = await self.expand_query(question)
        await self.set_status(SatelliteStatus.EXECUTING, 0.2)

        sources = await self.gather_sources(variations)
        await self.set_status(SatelliteStatus.EXECUTING, 0.5)

        findings = await self.analyze_sources(question, sources)
        await self.set_status(SatelliteStatus.THINKING, 0.75)

        synthesis = await self.synthesize(question, findings)

        if findings:
            await self.store_result(
                synthesis,
                doc_type=DocumentType.SUMMARY,
                tags=["research", "synthesis"],
                title=f"Research: {question[:50]}",
            )

        logger.info("Research complete", sources=len(sources), findings=len(findings))
        return ResearchQuery(
            question=question,
            search_variations=variations,
            sources=sources,
            findings=findings,
            synthesis=synthesis,
        )

    async def expand_query(self, question: str) -> List[str]:
        """The question itself plus up to five generated rephrasings"""

        prompt = f"""Generate 5 different search queries to answer this question:

QUESTION: {question}

Use different keywords, different aspects, related concepts and synonyms.
Return just the queries, one per line, no numbering or explanations."""

        response = await self.generate(prompt)
        variations = [
            line.strip()
            for line in response.splitlines()
            if len(line.strip()) > 5 and not line.strip().startswith("#")
        ][:5]
        return [question, *variations]

    async def gather_sources(self, queries: List[str]) -> List[SearchSource]:
        sources: Dict[str, SearchSource] = {}

        for query in queries:
            self._count_memory_access()
            results = await self.store.search(query, limit=SOURCES_PER_QUERY, search_mode=SearchMode.HYBRID)
            for result in results:
                doc = result.document
                existing = sources.get(doc.id)
                if existing is None:
                    sources[doc.id] = SearchSource(
                        document_id=doc.id,
                        content=doc.content,
                        relevance=result.score,
                        title=doc.metadata.title or "Untitled",
                    )
                elif result.score > existing.relevance:
                    existing.relevance = result.score

        ranked = sorted(sources.values(), key=lambda s: s.relevance, reverse=True)
        return ranked[:MAX_SOURCES]

    async def analyze_sources(self, question: str, sources: List[SearchSource]) -> List[ResearchFinding]:
        """Extract findings batch by batch; an unparsable batch contributes nothing"""

        findings: List[ResearchFinding] = []

        for start in range(0, len(sources), BATCH_SIZE):
            batch = sources[start:start + BATCH_SIZE]
            listing = "\n\n---\n\n".join(
                f"[{start + offset + 1}] {source.title}\n{source.content[:500]}"
                for offset, source in enumerate(batch)
            )
            prompt = f"""Extract relevant findings from these sources for the question:

QUESTION: {question}

SOURCES:
{listing}

For each relevant fact give the source number, the key excerpt, its relevance (high/medium/low)
and your confidence (0-1). Respond in JSON:
{{"findings": [{{"sourceIndex": 1, "excerpt": "relevant text", "relevance": "high", "confidence": 0.9}}]}}"""

            response = await self.generate(prompt)
            parsed = extract_json_object(response, source="researcher")
            if not isinstance(parsed, ParseOk):
                continue

            for raw in parsed.value.get("findings") or []:
                if not isinstance(raw, dict) or not raw.get("excerpt"):
                    continue
                try:
                    index = int(raw.get("sourceIndex", 0))
                    confidence = float(raw.get("confidence", 0.5))
                except (TypeError, ValueError):
                    continue
                if not start < index <= start + len(batch):
                    continue
                findings.append(ResearchFinding(
                    source_index=index,
                    excerpt=str(raw["excerpt"]),
                    relevance=relevance_to_number(raw.get("relevance")),
                    confidence=min(1.0, max(0.0, confidence)),
                ))

        findings.sort(key=lambda f: f.relevance, reverse=True)
        return findings

    async def synthesize(self, question: str, findings: List[ResearchFinding]) -> str:
        if not findings:
            return no_information_message(question)

        listing = "\n".join(
            f"[{f.source_index}] (confidence: {f.confidence * 100:.0f}%) {f.excerpt}"
            for f in findings[:10]
        )
        prompt = f"""Synthesize these research findings into an answer:

QUESTION: {question}

FINDINGS:
{listing}

Combine related information, note contradictions, state confidence, identify gaps,
and cite sources by number [1], [2]. Be concise but thorough."""

        return await self.generate(prompt)

    async def quick_lookup(self, query: str) -> Optional[str]:
        results = await self.store.search(query, limit=1, search_mode=SearchMode.HYBRID)
        if results and results[0].score > 0.7:
            return results[0].document.content
        return None

    async def get_related_concepts(self, topic: str) -> List[str]:
        response = await self.generate(f"List 5 concepts closely related to: {topic}\nReturn just the concepts, one per line.")
        return [line.strip() for line in response.splitlines() if line.strip()][:5]
