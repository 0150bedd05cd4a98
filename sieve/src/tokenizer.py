"""Text tokenizer shared by indexing and querying.

Both sides of the ranker must tokenize identically, so there is a single
``tokenize`` function and a frozen stop word list.
"""

from __future__ import annotations

import re

STOP_WORDS: frozenset[str] = frozenset(
    {
        "a",
        "an",
        "the",
        "and",
        "or",
        "but",
        "is",
        "are",
        "was",
        "were",
        "in",
        "on",
        "at",
        "to",
        "for",
        "with",
        "by",
        "about",
        "of",
        "do",
        "does",
        "did",
        "has",
        "have",
        "had",
        "can",
        "could",
        "will",
        "would",
        "should",
        "i",
        "you",
        "he",
        "she",
        "it",
        "we",
        "they",
        "this",
        "that",
    }
)

# Anything that is neither a word character nor whitespace
_PUNCTUATION = re.compile(r"[^\w\s]")


def tokenize(text: str) -> list[str]:
    """Split text into lowercase content tokens.

    Punctuation is replaced by whitespace (so ``"don't"`` yields ``"don"``
    and ``"t"``), then the text is split on whitespace and stop words are
    dropped. Order and duplicates are preserved.

    Args:
        text: Raw text to tokenize.

    Returns:
        List of tokens, possibly empty.
    """
    cleaned = _PUNCTUATION.sub(" ", text.lower())
    return [tok for tok in cleaned.split() if tok not in STOP_WORDS]
