"""Shared fixtures for Sieve tests."""

from __future__ import annotations

import pytest

from sieve.src.corpus import CorpusEntry


@pytest.fixture
def channel_entry() -> CorpusEntry:
    """The 'create a channel' FAQ."""
    return CorpusEntry(
        question="How do I create a channel?",
        answer=(
            "Click the pencil icon next to the search bar, choose "
            "'Channel', give it a name, and invite members."
        ),
    )


@pytest.fixture
def requirements_entry() -> CorpusEntry:
    """The 'system requirements' FAQ."""
    return CorpusEntry(
        question="What are the system requirements?",
        answer="Any current desktop browser works.",
    )


@pytest.fixture
def two_entry_corpus(
    channel_entry: CorpusEntry,
    requirements_entry: CorpusEntry,
) -> list[CorpusEntry]:
    """Two disjoint questions of three content tokens each.

    Every indexed term appears in exactly one document, so each has
    IDF ln(2), and with equal lengths a single tf=1 hit contributes
    exactly ln(2).
    """
    return [channel_entry, requirements_entry]
