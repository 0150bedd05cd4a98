"""Tests for docket.src.storage SQLite persistence."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from docket.src.models import ReviewRecord, ReviewStatus
from docket.src.storage import DocketStorage
from shared.errors import PersistenceError

ReviewFactory = Callable[..., ReviewRecord]


class TestSchema:
    """Tests for schema setup and connection handling."""

    def test_initialize_twice(self, memory_store: DocketStorage) -> None:
        """Schema creation is idempotent."""
        memory_store.initialize_schema()
        assert memory_store.list_reviews() == []

    def test_context_manager_closes(self, tmp_path: Path, review_factory: ReviewFactory) -> None:
        """Data written inside the context survives reopening."""
        db = tmp_path / "docket.db"
        with DocketStorage(db) as store:
            store.initialize_schema()
            store.create_review(review_factory())
        with DocketStorage(db) as store:
            assert store.get_review("review_test00001") is not None

    def test_closed_store_raises_persistence_error(self) -> None:
        """Driver errors surface as PersistenceError."""
        store = DocketStorage(":memory:")
        store.initialize_schema()
        store.close()
        with pytest.raises(PersistenceError):
            store.get_review("review_x")


class TestReviews:
    """Tests for review CRUD."""

    def test_create_and_get(self, memory_store: DocketStorage, review_factory: ReviewFactory) -> None:
        """A created review reads back identically."""
        record = review_factory(created_at=datetime(2024, 5, 1, 9, 30))
        memory_store.create_review(record)
        assert memory_store.get_review(record.review_id) == record

    def test_get_missing(self, memory_store: DocketStorage) -> None:
        """Unknown IDs return None."""
        assert memory_store.get_review("review_nope") is None

    def test_duplicate_create(self, memory_store: DocketStorage, review_factory: ReviewFactory) -> None:
        """Inserting the same ID twice raises."""
        memory_store.create_review(review_factory())
        with pytest.raises(PersistenceError, match="already exists"):
            memory_store.create_review(review_factory())

    def test_list_by_status_oldest_first(
        self, memory_store: DocketStorage, review_factory: ReviewFactory
    ) -> None:
        """Listing filters by status and orders by creation time."""
        base = datetime(2024, 1, 1)
        memory_store.create_review(review_factory("review_b", created_at=base + timedelta(minutes=5)))
        memory_store.create_review(review_factory("review_a", created_at=base))
        memory_store.create_review(
            review_factory("review_c", status=ReviewStatus.APPROVED, created_at=base)
        )
        pending = memory_store.list_reviews(status=ReviewStatus.PENDING)
        assert [r.review_id for r in pending] == ["review_a", "review_b"]
        assert len(memory_store.list_reviews()) == 3
        assert len(memory_store.list_reviews(limit=1)) == 1

    def test_count_by_status(self, memory_store: DocketStorage, review_factory: ReviewFactory) -> None:
        """Counts include zeroes for unused statuses."""
        memory_store.create_review(review_factory("review_a"))
        memory_store.create_review(review_factory("review_b", status=ReviewStatus.REJECTED))
        counts = memory_store.count_by_status()
        assert counts["pending"] == 1
        assert counts["rejected"] == 1
        assert counts["expired"] == 0


class TestCompareAndSwap:
    """Tests for the optimistic update."""

    def test_swap_succeeds_when_unchanged(
        self, memory_store: DocketStorage, pending_review: ReviewRecord
    ) -> None:
        """A write against the read status and version lands."""
        updated = pending_review.evolve(status=ReviewStatus.APPROVED, acted_by="alice")
        assert memory_store.compare_and_swap(updated, ReviewStatus.PENDING, 1) is True
        stored = memory_store.get_review(pending_review.review_id)
        assert stored is not None
        assert stored.status is ReviewStatus.APPROVED
        assert stored.version == 2
        assert stored.acted_by == "alice"

    def test_stale_version_rejected(
        self, memory_store: DocketStorage, pending_review: ReviewRecord
    ) -> None:
        """A second writer holding the old version loses."""
        first = pending_review.evolve(status=ReviewStatus.APPROVED)
        second = pending_review.evolve(status=ReviewStatus.REJECTED)
        assert memory_store.compare_and_swap(first, ReviewStatus.PENDING, 1) is True
        assert memory_store.compare_and_swap(second, ReviewStatus.PENDING, 1) is False
        stored = memory_store.get_review(pending_review.review_id)
        assert stored is not None
        assert stored.status is ReviewStatus.APPROVED

    def test_wrong_status_rejected(
        self, memory_store: DocketStorage, pending_review: ReviewRecord
    ) -> None:
        """A mismatched expected status does not write."""
        updated = pending_review.evolve(status=ReviewStatus.APPROVED)
        assert memory_store.compare_and_swap(updated, ReviewStatus.EDITING, 1) is False

    def test_missing_row(self, memory_store: DocketStorage, review_factory: ReviewFactory) -> None:
        """Swapping a record that was never stored reports False."""
        ghost = review_factory("review_ghost").evolve(status=ReviewStatus.APPROVED)
        assert memory_store.compare_and_swap(ghost, ReviewStatus.PENDING, 1) is False

    def test_proposed_answer_updated(
        self, memory_store: DocketStorage, pending_review: ReviewRecord
    ) -> None:
        """The answer text is part of the write."""
        updated = pending_review.evolve(proposed_answer="New text")
        memory_store.compare_and_swap(updated, ReviewStatus.PENDING, 1)
        stored = memory_store.get_review(pending_review.review_id)
        assert stored is not None
        assert stored.proposed_answer == "New text"


class TestRotationCursor:
    """Tests for cursor persistence."""

    def test_missing_cursor(self, memory_store: DocketStorage) -> None:
        """An unwritten cursor reads as None."""
        assert memory_store.get_cursor("last_reviewer_index") is None

    def test_set_and_overwrite(self, memory_store: DocketStorage) -> None:
        """Setting a cursor twice keeps the latest value."""
        memory_store.set_cursor("last_reviewer_index", 1)
        memory_store.set_cursor("last_reviewer_index", 2)
        assert memory_store.get_cursor("last_reviewer_index") == 2

    def test_persists_across_connections(self, tmp_path: Path) -> None:
        """The cursor survives a restart."""
        db = tmp_path / "docket.db"
        with DocketStorage(db) as store:
            store.initialize_schema()
            store.set_cursor("last_reviewer_index", 3)
        with DocketStorage(db) as store:
            assert store.get_cursor("last_reviewer_index") == 3
