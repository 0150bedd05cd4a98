"""Three-way message classifier built on the BM25 ranker.

Every message is one of:

* ``alpha``     -- a corpus entry scores at or above the threshold; answer directly.
* ``beta``      -- anything else long enough to be a question; escalate.
* ``unrelated`` -- too short (or, when enabled, not shaped like a question).

The threshold is compared against the raw BM25 score, which is not a
probability and is not bounded by 1.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sieve.src.corpus import CorpusEntry
from sieve.src.ranker import DEFAULT_B, DEFAULT_K1, BM25Ranker

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.99
MIN_MESSAGE_LENGTH = 5

_INTERROGATIVE = re.compile(
    r"^(who|what|when|where|why|how|which|can|could|does|do|is|are|should|would|will)\b",
    re.IGNORECASE,
)


class MessageType(str, Enum):
    """Classification outcome for a message."""

    ALPHA = "alpha"
    BETA = "beta"
    UNRELATED = "unrelated"


@dataclass(frozen=True)
class ClassificationResult:
    """Result of classifying one message.

    Attributes:
        message_type: Which branch the message takes.
        message: The original message text.
        score: Raw BM25 score of the best entry (0.0 for unrelated).
        matched_entry: Matched corpus entry; set only for alpha.
    """

    message_type: MessageType
    message: str
    score: float = 0.0
    matched_entry: CorpusEntry | None = None

    @classmethod
    def alpha(cls, message: str, entry: CorpusEntry, score: float) -> ClassificationResult:
        return cls(MessageType.ALPHA, message, score, entry)

    @classmethod
    def beta(cls, message: str, score: float) -> ClassificationResult:
        return cls(MessageType.BETA, message, score)

    @classmethod
    def unrelated(cls, message: str) -> ClassificationResult:
        return cls(MessageType.UNRELATED, message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "message_type": self.message_type.value,
            "message": self.message,
            "score": self.score,
            "matched_entry": self.matched_entry.to_dict() if self.matched_entry else None,
        }


def looks_like_question(message: str) -> bool:
    """Return True if *message* ends with '?' or opens with an interrogative."""
    stripped = message.strip()
    return stripped.endswith("?") or bool(_INTERROGATIVE.match(stripped))


class MessageClassifier:
    """Classify messages against a corpus.

    Args:
        corpus: Entries to match against.
        threshold: Direct-match threshold on the raw BM25 score.
        min_threshold: Floor the threshold is clamped up to.
        require_question_shape: When True, messages that do not look like
            questions are unrelated rather than escalated.
        k1: BM25 term saturation.
        b: BM25 length normalisation.

    Example::

        classifier = MessageClassifier(default_corpus())
        result = classifier.classify("How do I create a channel?")
        assert result.message_type is MessageType.ALPHA
    """

    def __init__(
        self,
        corpus: list[CorpusEntry],
        threshold: float = DEFAULT_THRESHOLD,
        min_threshold: float = DEFAULT_THRESHOLD,
        require_question_shape: bool = False,
        k1: float = DEFAULT_K1,
        b: float = DEFAULT_B,
    ) -> None:
        self._min_threshold = min_threshold
        self._threshold = self._clamp(threshold)
        self._require_question_shape = require_question_shape
        self._k1 = k1
        self._b = b
        self._ranker = self._build_ranker(corpus)

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def corpus(self) -> list[CorpusEntry]:
        return self._ranker.corpus

    def classify(self, message: str) -> ClassificationResult:
        """Classify one message.

        Args:
            message: Raw message text.

        Returns:
            ClassificationResult tagged alpha, beta, or unrelated.
        """
        if len(message) < MIN_MESSAGE_LENGTH:
            return ClassificationResult.unrelated(message)
        if self._require_question_shape and not looks_like_question(message):
            return ClassificationResult.unrelated(message)

        ranker = self._ranker
        result = ranker.search(message, self._threshold)
        if result.is_direct_match and result.entry is not None:
            return ClassificationResult.alpha(message, result.entry, result.score)
        return ClassificationResult.beta(message, result.score)

    def update_threshold(self, threshold: float) -> float:
        """Set a new threshold, clamped to the configured floor.

        Args:
            threshold: Requested threshold.

        Returns:
            The threshold actually in effect.
        """
        self._threshold = self._clamp(threshold)
        return self._threshold

    def update_corpus(self, corpus: list[CorpusEntry]) -> None:
        """Replace the corpus with a freshly built ranker.

        Args:
            corpus: New entries.
        """
        self._ranker = self._build_ranker(corpus)
        logger.info("Classifier corpus replaced (%d entries)", len(corpus))

    # ------------------------------------------------------------------

    def _build_ranker(self, corpus: list[CorpusEntry]) -> BM25Ranker:
        ranker = BM25Ranker(k1=self._k1, b=self._b)
        ranker.index(corpus)
        return ranker

    def _clamp(self, threshold: float) -> float:
        if threshold < self._min_threshold:
            logger.debug(
                "Threshold %.4f below minimum, clamped to %.4f",
                threshold,
                self._min_threshold,
            )
            return self._min_threshold
        return threshold
