from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Optional, Set
import re

TOKEN_PATTERN = re.compile(r"\w+")

INDEXED_FIELDS = ("content", "title", "tags")


def tokenize(text: str) -> List[str]:
    return [token.lower() for token in TOKEN_PATTERN.findall(text or "")]


class KeywordIndex:
    """Inverted index over the ``content``, ``title`` and ``tags`` fields.

    Matching is forward (prefix) based: the query token ``err`` matches the
    indexed token ``error``. A document matches a field only when every query
    token matches some token of that field.
    """

    def __init__(self, fields: Iterable[str] = INDEXED_FIELDS):
        self.fields = tuple(fields)
        self.postings: Dict[str, Dict[str, Set[str]]] = {f: defaultdict(set) for f in self.fields}
        self.term_counts: Dict[str, Dict[str, Counter]] = {f: {} for f in self.fields}
        self.insertion_order: Dict[str, int] = {}
        self._sequence = 0

    def __len__(self) -> int:
        return len(self.insertion_order)

    def __contains__(self, doc_id: str) -> bool:
        return doc_id in self.insertion_order

    def add(self, doc_id: str, content: str, title: Optional[str] = None, tags: Optional[List[str]] = None) -> None:
        if doc_id in self.insertion_order:
            self.remove(doc_id)

        values = {"content": content, "title": title or "", "tags": " ".join(tags or [])}
        for field in self.fields:
            counts = Counter(tokenize(values.get(field, "")))
            if not counts:
                continue
            self.term_counts[field][doc_id] = counts
            for token in counts:
                self.postings[field][token].add(doc_id)

        self.insertion_order[doc_id] = self._sequence
        self._sequence += 1

    def remove(self, doc_id: str) -> bool:
        if doc_id not in self.insertion_order:
            return False

        for field in self.fields:
            counts = self.term_counts[field].pop(doc_id, None)
            if not counts:
                continue
            postings = self.postings[field]
            for token in counts:
                postings[token].discard(doc_id)
                if not postings[token]:
                    del postings[token]

        del self.insertion_order[doc_id]
        return True

    def clear(self) -> None:
        self.postings = {f: defaultdict(set) for f in self.fields}
        self.term_counts = {f: {} for f in self.fields}
        self.insertion_order = {}
        self._sequence = 0

    def _match_field(self, field: str, query_tokens: List[str]) -> List[str]:
        postings = self.postings[field]
        matched: Optional[Set[str]] = None
        matched_terms: Dict[str, List[str]] = {}

        for query_token in query_tokens:
            terms = [term for term in postings if term.startswith(query_token)]
            matched_terms[query_token] = terms
            docs: Set[str] = set()
            for term in terms:
                docs |= postings[term]
            matched = docs if matched is None else matched & docs
            if not matched:
                return []

        def weight(doc_id: str) -> int:
            counts = self.term_counts[field][doc_id]
            return sum(counts[term] for terms in matched_terms.values() for term in terms)

        return sorted(matched or (), key=lambda d: (-weight(d), self.insertion_order[d]))

    def search(self, query: str, limit: int) -> List[str]:
        """Document ids ranked by field order then in-field term weight"""

        query_tokens = list(dict.fromkeys(tokenize(query)))
        if not query_tokens or limit <= 0:
            return []

        ranked: List[str] = []
        seen: Set[str] = set()
        for field in self.fields:
            for doc_id in self._match_field(field, query_tokens):
                if doc_id in seen:
                    continue
                seen.add(doc_id)
                ranked.append(doc_id)
                if len(ranked) >= limit:
                    return ranked
        return ranked
