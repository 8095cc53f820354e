"""Tests for the inverted keyword index."""

import pytest

from agent_mesh.domain.context.memory.keyword_index import KeywordIndex, tokenize


@pytest.fixture
def index():
    index = KeywordIndex()
    index.add("doc-1", "Tea was first brewed in China", tags=["history"])
    index.add("doc-2", "Coffee spread through Arabia", title="Coffee history")
    index.add("doc-3", "Error handling guide", title="Tea ceremony")
    return index


def test_tokenize_lowercases_word_characters():
    assert tokenize("XK7-error-code-9981") == ["xk7", "error", "code", "9981"]


class TestSearch:
    """Prefix matching, AND semantics and field ranking."""

    def test_prefix_match(self, index):
        assert index.search("err", limit=5) == ["doc-3"]

    def test_all_tokens_must_match(self, index):
        assert index.search("tea china", limit=5) == ["doc-1"]

    def test_content_field_ranks_before_title(self, index):
        assert index.search("tea", limit=5) == ["doc-1", "doc-3"]

    def test_tags_are_searchable(self, index):
        assert "doc-1" in index.search("history", limit=5)

    def test_limit_is_respected(self, index):
        assert len(index.search("history", limit=1)) == 1

    def test_empty_query_matches_nothing(self, index):
        assert index.search("   ", limit=5) == []


class TestMutation:
    """Removal and replacement keep postings consistent."""

    def test_remove(self, index):
        assert index.remove("doc-1") is True
        assert index.search("china", limit=5) == []
        assert "doc-1" not in index
        assert index.remove("doc-1") is False

    def test_re_adding_replaces_terms(self, index):
        index.add("doc-1", "Green tea from Japan")

        assert index.search("china", limit=5) == []
        assert index.search("japan", limit=5) == ["doc-1"]
        assert len(index) == 3

    def test_clear(self, index):
        index.clear()

        assert len(index) == 0
        assert index.search("tea", limit=5) == []
