"""Tests for text chunking."""

from agent_mesh.domain.context.chunking import chunk_text
from agent_mesh.domain.models.records import ChunkConfig


class TestChunkText:
    """Greedy packing, oversized segments and overlap."""

    def test_empty_text_has_no_chunks(self):
        assert chunk_text("") == []

    def test_small_paragraphs_are_packed_together(self):
        chunks = chunk_text("first\n\nsecond", ChunkConfig(chunk_size=100, chunk_overlap=0))

        assert chunks == ["first\n\nsecond"]

    def test_long_unbroken_text_is_cut_to_size(self):
        chunks = chunk_text("a" * 1000, ChunkConfig(chunk_size=100, chunk_overlap=0))

        assert len(chunks) == 10
        assert all(len(chunk) == 100 for chunk in chunks)

    def test_oversized_paragraph_splits_on_words(self):
        text = " ".join(["word"] * 30)
        chunks = chunk_text(text, ChunkConfig(chunk_size=20, chunk_overlap=0))

        assert all(len(chunk) <= 20 for chunk in chunks)
        assert " ".join(chunks).split() == text.split()

    def test_overlap_prefixes_tail_of_previous_chunk(self):
        chunks = chunk_text("aaaa\n\nbbbb", ChunkConfig(chunk_size=5, chunk_overlap=2))

        assert chunks == ["aaaa", "aa bbbb"]

    def test_single_chunk_gets_no_overlap(self):
        chunks = chunk_text("short", ChunkConfig(chunk_size=50, chunk_overlap=10))

        assert chunks == ["short"]
