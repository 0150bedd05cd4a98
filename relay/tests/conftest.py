"""Shared fixtures for Relay tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from docket.src.lifecycle import ReviewLifecycle
from docket.src.rotation import ReviewerRotator, StaticReviewerDirectory
from docket.src.storage import DocketStorage
from relay.src.activity import ActivityLog
from relay.src.config import RelayConfig
from relay.src.notifications import InMemoryNotifier
from relay.src.pipeline import IncomingMessage, MessagePipeline
from sieve.src.classifier import MessageClassifier
from sieve.src.corpus import CorpusEntry
from sieve.src.generator import GeneratorResult, MockGenerator

CHANNEL_QUESTION = "How do I create a channel?"
CHANNEL_ANSWER = "Click the pencil icon next to the search bar and choose 'Channel'."
PROPOSED_ANSWER = "Use the pencil icon, pick 'Channel', and name it."


def make_message(text: str, message_id: str = "msg_001", **overrides: object) -> IncomingMessage:
    """Build an inbound message from a human in #general."""
    fields: dict[str, object] = {
        "message_id": message_id,
        "room_id": "room_general",
        "room_name": "general",
        "sender_id": "user_42",
        "sender_username": "dana",
        "text": text,
    }
    fields.update(overrides)
    return IncomingMessage(**fields)  # type: ignore[arg-type]


@pytest.fixture
def corpus() -> list[CorpusEntry]:
    """Two disjoint FAQ entries of three content tokens each."""
    return [
        CorpusEntry(question=CHANNEL_QUESTION, answer=CHANNEL_ANSWER),
        CorpusEntry(
            question="What are the system requirements?",
            answer="Any current desktop browser works.",
        ),
    ]


@pytest.fixture
def config() -> RelayConfig:
    """Valid configuration with two reviewers and review mode on."""
    return RelayConfig(
        api_key="sk-test-1234567890",
        api_endpoint="https://llm.example.com/v1/chat/completions",
        reviewer_usernames=["alice", "bob"],
    )


@pytest.fixture
def notifier() -> InMemoryNotifier:
    """Notifier that records messages."""
    return InMemoryNotifier()


@pytest.fixture
def store() -> DocketStorage:
    """In-memory review store with schema initialized."""
    s = DocketStorage(":memory:")
    s.initialize_schema()
    return s


@pytest.fixture
def lifecycle(store: DocketStorage) -> ReviewLifecycle:
    """Lifecycle over the in-memory store."""
    return ReviewLifecycle(store)


@pytest.fixture
def directory() -> StaticReviewerDirectory:
    """Directory that knows alice and bob."""
    return StaticReviewerDirectory({"alice": "u_alice", "bob": "u_bob"})


@pytest.fixture
def generator() -> MockGenerator:
    """Generator that always proposes the channel answer."""
    return MockGenerator(
        default=GeneratorResult(
            matched=True,
            answer=PROPOSED_ANSWER,
            detected_question=CHANNEL_QUESTION,
        )
    )


@pytest.fixture
def classifier(corpus: list[CorpusEntry]) -> MessageClassifier:
    """Classifier with the default 0.99 threshold."""
    return MessageClassifier(corpus)


@pytest.fixture
def pipeline_factory(
    config: RelayConfig,
    classifier: MessageClassifier,
    generator: MockGenerator,
    lifecycle: ReviewLifecycle,
    store: DocketStorage,
    directory: StaticReviewerDirectory,
    notifier: InMemoryNotifier,
) -> Callable[..., MessagePipeline]:
    """Build pipelines wired to in-memory fakes, with keyword overrides."""

    def build(**overrides: Any) -> MessagePipeline:
        parts: dict[str, Any] = {
            "config": config,
            "classifier": classifier,
            "generator": generator,
            "lifecycle": lifecycle,
            "rotator": ReviewerRotator(store),
            "directory": directory,
            "notifier": notifier,
            "activity": ActivityLog(notifier),
        }
        parts.update(overrides)
        return MessagePipeline(**parts)

    return build


@pytest.fixture
def pipeline(pipeline_factory: Callable[..., MessagePipeline]) -> MessagePipeline:
    """Pipeline wired to in-memory fakes."""
    return pipeline_factory()


@pytest.fixture
def message_factory() -> Callable[..., IncomingMessage]:
    """The ``make_message`` builder."""
    return make_message
