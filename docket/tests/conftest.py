"""Shared fixtures for Docket tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import pytest

from docket.src.actions import ActionProcessor
from docket.src.lifecycle import ReviewLifecycle
from docket.src.models import ReviewRecord, ReviewStatus
from docket.src.storage import DocketStorage
from relay.src.notifications import InMemoryNotifier


def make_review(
    review_id: str = "review_test00001",
    status: ReviewStatus = ReviewStatus.PENDING,
    created_at: datetime | None = None,
    **overrides: object,
) -> ReviewRecord:
    """Build a review record with sensible defaults.

    Args:
        review_id: Record ID.
        status: Initial status.
        created_at: Creation time (defaults to now).
        **overrides: Any other ReviewRecord field.

    Returns:
        A new ReviewRecord.
    """
    created = created_at or datetime.now()
    fields: dict[str, object] = {
        "review_id": review_id,
        "source_message_id": "msg_001",
        "room_id": "room_general",
        "room_name": "general",
        "sender_id": "user_42",
        "sender_username": "dana",
        "original_message": "can u help me make a new channel",
        "detected_question": "How do I create a channel?",
        "proposed_answer": "Click the pencil icon and choose Channel.",
        "created_at": created,
        "updated_at": created,
        "status": status,
    }
    fields.update(overrides)
    return ReviewRecord(**fields)  # type: ignore[arg-type]


@pytest.fixture
def memory_store() -> DocketStorage:
    """In-memory DocketStorage with schema initialized."""
    store = DocketStorage(":memory:")
    store.initialize_schema()
    return store


@pytest.fixture
def lifecycle(memory_store: DocketStorage) -> ReviewLifecycle:
    """Lifecycle over the in-memory store."""
    return ReviewLifecycle(memory_store)


@pytest.fixture
def notifier() -> InMemoryNotifier:
    """Notifier that records messages."""
    return InMemoryNotifier()


@pytest.fixture
def processor(lifecycle: ReviewLifecycle, notifier: InMemoryNotifier) -> ActionProcessor:
    """Processor wired to the in-memory store and notifier."""
    return ActionProcessor(lifecycle, notifier)


@pytest.fixture
def pending_review(memory_store: DocketStorage) -> ReviewRecord:
    """A stored PENDING review."""
    return memory_store.create_review(make_review())


@pytest.fixture
def review_factory() -> Callable[..., ReviewRecord]:
    """The ``make_review`` builder, for tests that need custom records."""
    return make_review
