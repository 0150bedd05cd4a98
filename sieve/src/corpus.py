"""Corpus entries and loaders for the FAQ matcher.

A corpus is an ordered list of ``CorpusEntry`` objects. Order matters:
ties in ranking resolve to the earliest entry.

Example::

    from sieve.src.corpus import default_corpus, load_corpus

    corpus = load_corpus("faqs.jsonl")  # or default_corpus()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from shared.hardening import InputValidator, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorpusEntry:
    """A canonical question and its answer.

    Attributes:
        question: The question text that gets indexed.
        answer: The answer delivered when the question matches.
    """

    question: str
    answer: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"question": self.question, "answer": self.answer}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CorpusEntry:
        """Deserialize from dictionary."""
        return cls(question=data["question"], answer=data["answer"])


_DEFAULT_ENTRIES: tuple[CorpusEntry, ...] = (
    CorpusEntry(
        question="How do I start using the chat workspace?",
        answer=(
            "Sign in with the account your administrator created for you, "
            "then open the channel directory to join the rooms you need."
        ),
    ),
    CorpusEntry(
        question="What are the system requirements?",
        answer=(
            "Any current desktop browser works. The desktop and mobile apps "
            "need a supported operating system release."
        ),
    ),
    CorpusEntry(
        question="How do I create a channel?",
        answer=(
            "Click the pencil icon next to the search bar, choose "
            "'Channel', give it a name, and invite members."
        ),
    ),
    CorpusEntry(
        question="How do I send a message?",
        answer="Type in the composer at the bottom of a room and press Enter.",
    ),
    CorpusEntry(
        question="How do I add emojis?",
        answer=(
            "Click the smiley icon in the composer, or type a colon followed "
            "by the emoji name, for example :smile:."
        ),
    ),
)


def default_corpus() -> list[CorpusEntry]:
    """Return the built-in FAQ corpus.

    Returns:
        A fresh list of the default entries.
    """
    return list(_DEFAULT_ENTRIES)


def corpus_from_records(records: list[dict[str, Any]]) -> list[CorpusEntry]:
    """Build corpus entries from raw records.

    Args:
        records: Dicts with ``question`` and ``answer`` keys.

    Returns:
        Entries in input order.

    Raises:
        ValidationError: If any record is missing a field or has blank text.
    """
    errors = InputValidator().validate_corpus_records(records)
    if errors:
        raise ValidationError("; ".join(errors))
    return [CorpusEntry.from_dict(r) for r in records]


def load_corpus(path: str | Path) -> list[CorpusEntry]:
    """Load a corpus from a JSON array or JSONL file.

    Args:
        path: Path to a ``.json`` or ``.jsonl`` file.

    Returns:
        Entries in file order.

    Raises:
        ValidationError: If the file or any record is invalid.
    """
    records = InputValidator().validate_corpus_file(path)
    corpus = corpus_from_records(records)
    logger.info("Loaded %d corpus entries from %s", len(corpus), path)
    return corpus
