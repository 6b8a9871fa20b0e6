"""
Tests for execution/legal_search/chunker.py

Covers: ChunkConfig validation, window/overlap arithmetic, boundary
preference, full coverage of the input, determinism and edge cases.
"""

import pytest


def _reconstruct(text, segments):
    """Rebuild the input from overlapping segments using their offsets."""
    rebuilt = ""
    for seg in segments:
        assert seg.start <= len(rebuilt), "gap between segments"
        rebuilt = rebuilt[:seg.start] + seg.content
    return rebuilt


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class TestChunkConfig:

    def test_defaults(self):
        from execution.legal_search.chunker import ChunkConfig
        cfg = ChunkConfig()
        assert cfg.chunk_size == 1000
        assert cfg.chunk_overlap == 200
        assert cfg.separators == ["\n\n", "\n", ". ", "? ", "! ", " ", ""]

    def test_overlap_equal_to_size_rejected(self):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        from execution.legal_search.errors import ChunkingConfigError
        with pytest.raises(ChunkingConfigError):
            TextChunker(ChunkConfig(chunk_size=100, chunk_overlap=100))

    def test_overlap_larger_than_size_rejected(self):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        from execution.legal_search.errors import ChunkingConfigError
        with pytest.raises(ChunkingConfigError):
            TextChunker(ChunkConfig(chunk_size=100, chunk_overlap=150))

    def test_non_positive_size_rejected(self):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        from execution.legal_search.errors import ChunkingConfigError
        with pytest.raises(ChunkingConfigError):
            TextChunker(ChunkConfig(chunk_size=0, chunk_overlap=0))

    def test_negative_overlap_rejected(self):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        from execution.legal_search.errors import ChunkingConfigError
        with pytest.raises(ChunkingConfigError):
            TextChunker(ChunkConfig(chunk_size=100, chunk_overlap=-1))

    def test_error_kind(self):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        from execution.legal_search.errors import ChunkingConfigError
        with pytest.raises(ChunkingConfigError) as exc_info:
            TextChunker(ChunkConfig(chunk_size=10, chunk_overlap=10))
        assert exc_info.value.to_dict()["kind"] == "chunking_config_error"


# ---------------------------------------------------------------------------
# Splitting
# ---------------------------------------------------------------------------

class TestTextChunker:

    def test_2500_chars_without_separators_gives_three_chunks(self):
        from execution.legal_search.chunker import TextChunker
        text = "x" * 2500
        segments = TextChunker().split_segments(text)
        assert len(segments) == 3
        assert [(s.start, s.end) for s in segments] == [(0, 1000), (800, 1800), (1600, 2500)]
        assert segments[1].start <= 800
        assert _reconstruct(text, segments) == text

    def test_2500_chars_of_sentences_gives_three_chunks(self):
        from execution.legal_search.chunker import TextChunker
        text = ("The party shall pay. " * 120)[:2500]
        segments = TextChunker().split_segments(text)
        assert len(segments) == 3
        assert segments[1].start <= 800
        assert _reconstruct(text, segments) == text

    def test_empty_text_gives_no_segments(self):
        from execution.legal_search.chunker import TextChunker
        assert TextChunker().split("") == []

    def test_short_text_is_single_segment(self):
        from execution.legal_search.chunker import TextChunker
        segments = TextChunker().split_segments("Section 1. Definitions.")
        assert len(segments) == 1
        assert segments[0].content == "Section 1. Definitions."
        assert (segments[0].start, segments[0].end) == (0, 23)

    def test_text_exactly_chunk_size_is_single_segment(self):
        from execution.legal_search.chunker import TextChunker
        assert len(TextChunker().split("y" * 1000)) == 1

    def test_segments_never_exceed_chunk_size(self, sample_document_text):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        chunker = TextChunker(ChunkConfig(chunk_size=300, chunk_overlap=50))
        for segment in chunker.split(sample_document_text * 3):
            assert 0 < len(segment) <= 300

    def test_covers_whole_input(self, sample_document_text):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        chunker = TextChunker(ChunkConfig(chunk_size=250, chunk_overlap=40))
        segments = chunker.split_segments(sample_document_text)
        assert segments[0].start == 0
        assert segments[-1].end == len(sample_document_text)
        assert _reconstruct(sample_document_text, segments) == sample_document_text

    def test_segments_match_source_offsets(self, sample_document_text):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        chunker = TextChunker(ChunkConfig(chunk_size=400, chunk_overlap=100))
        for seg in chunker.split_segments(sample_document_text):
            assert sample_document_text[seg.start:seg.end] == seg.content

    def test_consecutive_segments_overlap_by_at_most_overlap(self, sample_document_text):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        chunker = TextChunker(ChunkConfig(chunk_size=400, chunk_overlap=100))
        segments = chunker.split_segments(sample_document_text)
        for prev, cur in zip(segments, segments[1:]):
            assert cur.start > prev.start
            assert prev.end - cur.start <= 100

    def test_indexes_are_dense_and_ordered(self, sample_document_text):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        chunker = TextChunker(ChunkConfig(chunk_size=300, chunk_overlap=60))
        segments = chunker.split_segments(sample_document_text)
        assert [s.index for s in segments] == list(range(len(segments)))

    def test_prefers_paragraph_break(self):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        first = "A" * 60 + ". " + "B" * 20
        text = first + "\n\n" + "C" * 100
        chunker = TextChunker(ChunkConfig(chunk_size=100, chunk_overlap=10))
        segments = chunker.split_segments(text)
        assert segments[0].content == first + "\n\n"

    def test_falls_back_to_sentence_then_word(self):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        chunker = TextChunker(ChunkConfig(chunk_size=50, chunk_overlap=5))

        sentence_text = "word " * 5 + "end. " + "z" * 100
        assert chunker.split(sentence_text)[0] == "word " * 5 + "end. "

        word_text = "a" * 30 + " " + "b" * 100
        assert chunker.split(word_text)[0] == "a" * 30 + " "

    def test_boundary_inside_overlap_zone_is_ignored(self):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        # The only space sits within the first `overlap` characters
        text = "ab " + "c" * 200
        chunker = TextChunker(ChunkConfig(chunk_size=100, chunk_overlap=20))
        segments = chunker.split_segments(text)
        assert segments[0].end == 100
        assert _reconstruct(text, segments) == text

    def test_deterministic(self, sample_document_text):
        from execution.legal_search.chunker import TextChunker
        chunker = TextChunker()
        assert chunker.split(sample_document_text) == chunker.split(sample_document_text)

    def test_custom_separators(self):
        from execution.legal_search.chunker import TextChunker, ChunkConfig
        chunker = TextChunker(ChunkConfig(chunk_size=20, chunk_overlap=2, separators=["|"]))
        segments = chunker.split("aaaaaaaaaa|bbbbbbbbbb|cccccccccc")
        assert segments[0] == "aaaaaaaaaa|"

    def test_segment_to_dict(self):
        from execution.legal_search.chunker import TextChunker
        seg = TextChunker().split_segments("hello")[0]
        assert seg.to_dict() == {"index": 0, "content": "hello", "start": 0, "end": 5}
