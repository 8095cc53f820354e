from typing import Dict, List, Optional, Sequence
import re

import numpy as np

from agent_mesh.domain.models.llm import ToolSpec
from agent_mesh.domain.models.records import SearchMode, SearchResult


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 on length mismatch, empty input or a zero vector"""

    if not a or not b or len(a) != len(b):
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denominator = np.linalg.norm(va) * np.linalg.norm(vb)
    if denominator == 0:
        return 0.0
    return float(np.dot(va, vb) / denominator)


def distance_to_score(distance: float) -> float:
    return min(1.0, max(0.0, 1.0 - distance))


def keyword_rank_score(rank: int) -> float:
    """Keyword hits carry no native relevance, only an order"""
    return 1.0 / (rank + 1)


def fuse_results(
    semantic: List[SearchResult],
    keyword: List[SearchResult],
    semantic_weight: float,
    threshold: float = 0.0,
    limit: Optional[int] = None,
    metadata_filter: Optional[Dict[str, object]] = None,
) -> List[SearchResult]:
    """Weighted union of two result lists keyed by document id.

    A document found by both searches sums its two weighted scores; a
    single-source hit keeps only its own weighted score.
    """
    fused: Dict[str, SearchResult] = {}

    for result in semantic:
        fused[result.document.id] = SearchResult(
            document=result.document,
            score=result.score * semantic_weight,
            match_type=SearchMode.HYBRID,
        )

    for result in keyword:
        weighted = result.score * (1 - semantic_weight)
        existing = fused.get(result.document.id)
        if existing:
            existing.score += weighted
        else:
            fused[result.document.id] = SearchResult(
                document=result.document,
                score=weighted,
                match_type=SearchMode.HYBRID,
            )

    results = [r for r in fused.values() if r.score >= threshold]
    if metadata_filter:
        results = [r for r in results if matches_filter(r, metadata_filter)]
    results.sort(key=lambda r: r.score, reverse=True)
    return results[:limit] if limit is not None else results


def matches_filter(result: SearchResult, metadata_filter: Dict[str, object]) -> bool:
    metadata = result.document.metadata.model_dump(mode="json")
    return all(metadata.get(key) == value for key, value in metadata_filter.items())


class ContextRanker:
    """Ranks context elements by relevance to query"""

    def rank_tools(self, query: str, tools: List[ToolSpec]) -> Dict[str, float]:
        """Rank tools by keyword overlap with the query, name matches weighted double"""

        scores = {}
        query_words = set(re.findall(r'\w+', query.lower()))

        for tool in tools:
            desc_words = set(re.findall(r'\w+', tool.description.lower()))
            name_words = set(re.findall(r'\w+', tool.name.lower().replace("_", " ")))

            desc_overlap = len(query_words.intersection(desc_words))
            name_overlap = len(query_words.intersection(name_words))

            score = (name_overlap * 2 + desc_overlap) / len(query_words) if query_words else 0
            scores[tool.name] = min(score, 1.0)

        return scores

    def order_tools(self, query: str, tools: List[ToolSpec]) -> List[ToolSpec]:
        scores = self.rank_tools(query, tools)
        return sorted(tools, key=lambda t: scores.get(t.name, 0.0), reverse=True)
