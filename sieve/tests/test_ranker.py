"""Tests for sieve.src.ranker BM25 scoring and search."""

from __future__ import annotations

import math

import pytest

from sieve.src.corpus import CorpusEntry, default_corpus
from sieve.src.ranker import DEFAULT_B, DEFAULT_K1, BM25Ranker, SearchResult

LN2 = math.log(2)


def _make_ranker(corpus: list[CorpusEntry]) -> BM25Ranker:
    """Build and index a ranker with default parameters."""
    ranker = BM25Ranker()
    ranker.index(corpus)
    return ranker


# ===================================================================
# Scoring
# ===================================================================


class TestScore:
    """Tests for BM25Ranker.score."""

    def test_defaults(self) -> None:
        """Default parameters are k1=1.2, b=0.75."""
        ranker = BM25Ranker()
        assert ranker.k1 == DEFAULT_K1 == 1.2
        assert ranker.b == DEFAULT_B == 0.75

    def test_exact_question_scores_three_ln2(self, two_entry_corpus: list[CorpusEntry]) -> None:
        """Three unique tf=1 hits of average length each contribute ln(2)."""
        scores = _make_ranker(two_entry_corpus).score("How do I create a channel?")
        assert scores[0] == pytest.approx(3 * LN2)
        assert scores[1] == pytest.approx(0.0)

    def test_partial_overlap(self, two_entry_corpus: list[CorpusEntry]) -> None:
        """A single shared term contributes ln(2)."""
        scores = _make_ranker(two_entry_corpus).score("can u help me make a new channel")
        assert scores == pytest.approx([LN2, 0.0])

    def test_repeated_query_terms_count_each_time(
        self, two_entry_corpus: list[CorpusEntry]
    ) -> None:
        """Each occurrence of a query term adds its contribution."""
        scores = _make_ranker(two_entry_corpus).score("channel channel")
        assert scores[0] == pytest.approx(2 * LN2)

    def test_unknown_terms_ignored(self, two_entry_corpus: list[CorpusEntry]) -> None:
        """Terms absent from the index contribute nothing."""
        scores = _make_ranker(two_entry_corpus).score("zebra quantum")
        assert scores == [0.0, 0.0]

    def test_stop_word_query_scores_zero(self, two_entry_corpus: list[CorpusEntry]) -> None:
        """A query with no content tokens scores zero everywhere."""
        assert _make_ranker(two_entry_corpus).score("is it the") == [0.0, 0.0]

    def test_single_entry_idf(self, channel_entry: CorpusEntry) -> None:
        """With N=1 and n=1 every IDF is ln(4/3)."""
        scores = _make_ranker([channel_entry]).score("How do I create a channel?")
        assert scores[0] == pytest.approx(3 * math.log(4 / 3))

    def test_shorter_document_scores_higher(self) -> None:
        """Length normalisation favours the shorter document."""
        corpus = [
            CorpusEntry(question="channel", answer="a"),
            CorpusEntry(question="channel create room", answer="b"),
        ]
        scores = _make_ranker(corpus).score("channel")
        idf = math.log(1.2)
        assert scores[0] == pytest.approx(idf * 2.2 / (1 + 1.2 * 0.625))
        assert scores[1] == pytest.approx(idf * 2.2 / (1 + 1.2 * 1.375))
        assert scores[0] > scores[1]

    def test_set_parameters_disables_length_norm(self) -> None:
        """With b=0, documents of different length score equally."""
        corpus = [
            CorpusEntry(question="channel", answer="a"),
            CorpusEntry(question="channel create room", answer="b"),
        ]
        ranker = _make_ranker(corpus)
        ranker.set_parameters(k1=1.2, b=0.0)
        scores = ranker.score("channel")
        assert scores[0] == pytest.approx(scores[1])
        assert ranker.b == 0.0

    def test_scores_non_negative(self) -> None:
        """Scores are never negative, even for terms in every document."""
        ranker = _make_ranker(default_corpus())
        for score in ranker.score("how do i send a message to a channel"):
            assert score >= 0.0


# ===================================================================
# Search
# ===================================================================


class TestSearch:
    """Tests for BM25Ranker.search."""

    def test_best_entry_returned(self, two_entry_corpus: list[CorpusEntry]) -> None:
        """The highest scoring entry is returned with its index."""
        result = _make_ranker(two_entry_corpus).search("system requirements please", 0.99)
        assert isinstance(result, SearchResult)
        assert result.index == 1
        assert result.entry == two_entry_corpus[1]
        assert result.score == pytest.approx(2 * LN2)
        assert result.is_direct_match is True

    def test_below_threshold(self, two_entry_corpus: list[CorpusEntry]) -> None:
        """A weak match is not a direct match."""
        result = _make_ranker(two_entry_corpus).search("make a new channel", 0.99)
        assert result.index == 0
        assert result.is_direct_match is False

    def test_threshold_is_inclusive(self, two_entry_corpus: list[CorpusEntry]) -> None:
        """A score exactly at the threshold is a direct match."""
        ranker = _make_ranker(two_entry_corpus)
        score = ranker.score("channel")[0]
        assert ranker.search("channel", score).is_direct_match is True

    def test_tie_goes_to_first_entry(self) -> None:
        """Identical questions resolve to the earliest entry."""
        corpus = [
            CorpusEntry(question="How do I create a channel?", answer="first"),
            CorpusEntry(question="How do I create a channel?", answer="second"),
        ]
        result = _make_ranker(corpus).search("create channel", 0.0)
        assert result.index == 0
        assert result.entry is not None
        assert result.entry.answer == "first"

    def test_all_zero_returns_first(self, two_entry_corpus: list[CorpusEntry]) -> None:
        """With no overlap the first entry is still reported, at score 0."""
        result = _make_ranker(two_entry_corpus).search("zebra", 0.99)
        assert result.index == 0
        assert result.score == 0.0
        assert result.is_direct_match is False

    def test_empty_corpus(self) -> None:
        """An empty index returns no entry and score 0."""
        result = _make_ranker([]).search("anything at all", 0.99)
        assert result.entry is None
        assert result.index == -1
        assert result.score == 0.0
        assert result.is_direct_match is False

    def test_empty_corpus_zero_threshold(self) -> None:
        """Empty-corpus direct match is computed against 0.0."""
        assert _make_ranker([]).search("anything", 0.0).is_direct_match is True

    def test_to_dict(self, two_entry_corpus: list[CorpusEntry]) -> None:
        """SearchResult serializes its entry."""
        d = _make_ranker(two_entry_corpus).search("channel", 0.5).to_dict()
        assert d["entry"]["question"] == "How do I create a channel?"
        assert d["index"] == 0


# ===================================================================
# Re-indexing
# ===================================================================


class TestReindex:
    """Tests for rebuilding the index."""

    def test_reindex_replaces_corpus(
        self,
        channel_entry: CorpusEntry,
        requirements_entry: CorpusEntry,
    ) -> None:
        """After index() only the new corpus is searchable."""
        ranker = _make_ranker([channel_entry])
        ranker.index([requirements_entry])
        assert ranker.corpus == [requirements_entry]
        assert ranker.score("channel") == [0.0]

    def test_corpus_of_stop_words_only(self) -> None:
        """Documents with no content tokens index without error."""
        ranker = _make_ranker([CorpusEntry(question="Is it?", answer="yes")])
        assert ranker.score("is it") == [0.0]
        assert ranker.search("anything", 0.99).index == 0
