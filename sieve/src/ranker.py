"""BM25 lexical ranker over a FAQ corpus.

The index is an immutable ``_IndexSnapshot`` holding a term-frequency
matrix (documents x vocabulary) and per-document lengths. Re-indexing
builds a new snapshot and publishes it with a single assignment, so a
concurrent ``score`` call sees either the old corpus or the new one,
never a mix.

Scoring::

    IDF(t)       = ln(1 + (N - n_t + 0.5) / (n_t + 0.5))
    contrib(t,d) = IDF(t) * tf*(k1+1) / (tf + k1*(1 - b + b*len(d)/avgLen))
    score(d)     = sum of contrib over query tokens

Example::

    ranker = BM25Ranker()
    ranker.index(default_corpus())
    result = ranker.search("how do i create a channel", threshold=0.99)
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any

import numpy as np

from sieve.src.corpus import CorpusEntry
from sieve.src.tokenizer import tokenize

logger = logging.getLogger(__name__)

DEFAULT_K1 = 1.2
DEFAULT_B = 0.75


@dataclass(frozen=True)
class SearchResult:
    """The single best corpus entry for a query.

    Attributes:
        entry: Best-scoring entry, or None for an empty corpus.
        score: Raw BM25 score of that entry (>= 0, unbounded).
        index: Position of the entry in the corpus, -1 when empty.
        is_direct_match: True when score >= the threshold passed to search.
    """

    entry: CorpusEntry | None
    score: float
    index: int
    is_direct_match: bool

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "entry": self.entry.to_dict() if self.entry else None,
            "score": self.score,
            "index": self.index,
            "is_direct_match": self.is_direct_match,
        }


@dataclass(frozen=True)
class _IndexSnapshot:
    """Everything derived from one corpus, computed once."""

    entries: tuple[CorpusEntry, ...]
    vocabulary: dict[str, int]
    term_freqs: np.ndarray
    doc_lengths: np.ndarray
    avg_length: float
    idf: np.ndarray

    @property
    def size(self) -> int:
        return len(self.entries)


def _build_snapshot(corpus: list[CorpusEntry]) -> _IndexSnapshot:
    """Tokenize every question and build the frequency tables.

    Args:
        corpus: Entries to index, in order.

    Returns:
        A fully populated snapshot.
    """
    doc_tokens = [tokenize(entry.question) for entry in corpus]

    vocabulary: dict[str, int] = {}
    for tokens in doc_tokens:
        for tok in tokens:
            if tok not in vocabulary:
                vocabulary[tok] = len(vocabulary)

    n_docs = len(corpus)
    term_freqs = np.zeros((n_docs, len(vocabulary)), dtype=np.float64)
    for row, tokens in enumerate(doc_tokens):
        for tok, count in Counter(tokens).items():
            term_freqs[row, vocabulary[tok]] = count

    doc_lengths = np.array([len(t) for t in doc_tokens], dtype=np.float64)
    avg_length = float(doc_lengths.mean()) if n_docs else 0.0

    doc_freq = (term_freqs > 0).sum(axis=0).astype(np.float64)
    idf = np.log(1.0 + (n_docs - doc_freq + 0.5) / (doc_freq + 0.5))

    return _IndexSnapshot(
        entries=tuple(corpus),
        vocabulary=vocabulary,
        term_freqs=term_freqs,
        doc_lengths=doc_lengths,
        avg_length=avg_length,
        idf=idf,
    )


class BM25Ranker:
    """Okapi BM25 ranker with tunable ``k1`` and ``b``.

    Args:
        k1: Term-frequency saturation (default 1.2).
        b: Length normalisation strength (default 0.75).
    """

    def __init__(self, k1: float = DEFAULT_K1, b: float = DEFAULT_B) -> None:
        self._k1 = k1
        self._b = b
        self._snapshot = _build_snapshot([])

    @property
    def k1(self) -> float:
        return self._k1

    @property
    def b(self) -> float:
        return self._b

    @property
    def corpus(self) -> list[CorpusEntry]:
        """Entries of the currently published index."""
        return list(self._snapshot.entries)

    def set_parameters(self, k1: float, b: float) -> None:
        """Replace the BM25 tuning parameters.

        Args:
            k1: New term-frequency saturation.
            b: New length normalisation strength.
        """
        self._k1 = k1
        self._b = b

    def index(self, corpus: list[CorpusEntry]) -> None:
        """Rebuild the index from *corpus* and publish it atomically.

        Args:
            corpus: Entries to index. May be empty.
        """
        snapshot = _build_snapshot(corpus)
        self._snapshot = snapshot
        logger.debug(
            "Indexed %d entries (%d terms, avg length %.2f)",
            snapshot.size,
            len(snapshot.vocabulary),
            snapshot.avg_length,
        )

    def score(self, query: str) -> list[float]:
        """Score every indexed entry against *query*.

        Args:
            query: Raw query text.

        Returns:
            One score per entry in corpus order.
        """
        return [float(s) for s in self._score_vector(self._snapshot, query)]

    def search(self, query: str, threshold: float) -> SearchResult:
        """Return the best entry for *query*.

        Ties go to the earliest entry.

        Args:
            query: Raw query text.
            threshold: Minimum score for a direct match (inclusive).

        Returns:
            SearchResult for the best entry.
        """
        snapshot = self._snapshot
        if snapshot.size == 0:
            return SearchResult(
                entry=None,
                score=0.0,
                index=-1,
                is_direct_match=0.0 >= threshold,
            )

        scores = self._score_vector(snapshot, query)
        best = int(np.argmax(scores))
        best_score = float(scores[best])
        return SearchResult(
            entry=snapshot.entries[best],
            score=best_score,
            index=best,
            is_direct_match=best_score >= threshold,
        )

    # ------------------------------------------------------------------

    def _score_vector(self, snapshot: _IndexSnapshot, query: str) -> np.ndarray:
        """Compute the BM25 score vector for one snapshot."""
        scores = np.zeros(snapshot.size, dtype=np.float64)
        if snapshot.size == 0:
            return scores

        k1, b = self._k1, self._b
        if snapshot.avg_length > 0:
            length_norm = k1 * (1.0 - b + b * snapshot.doc_lengths / snapshot.avg_length)
        else:
            length_norm = np.full(snapshot.size, k1 * (1.0 - b))

        for tok in tokenize(query):
            col = snapshot.vocabulary.get(tok)
            if col is None:
                continue
            tf = snapshot.term_freqs[:, col]
            contrib = np.divide(
                tf * (k1 + 1.0),
                tf + length_norm,
                out=np.zeros_like(tf),
                where=tf > 0,
            )
            scores += snapshot.idf[col] * contrib
        return scores
