"""Tests for docket.src.models."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from docket.src.models import ReviewAction, Reviewer, ReviewRecord, ReviewStatus

ReviewFactory = Callable[..., ReviewRecord]


class TestReviewStatus:
    """Tests for the status enum."""

    def test_values(self) -> None:
        """Statuses serialize to lowercase strings."""
        assert [s.value for s in ReviewStatus] == [
            "pending",
            "editing",
            "approved",
            "rejected",
            "expired",
        ]

    def test_terminal(self) -> None:
        """Only approved, rejected and expired are terminal."""
        assert not ReviewStatus.PENDING.is_terminal
        assert not ReviewStatus.EDITING.is_terminal
        assert ReviewStatus.APPROVED.is_terminal
        assert ReviewStatus.REJECTED.is_terminal
        assert ReviewStatus.EXPIRED.is_terminal


class TestReviewAction:
    """Tests for the action enum."""

    def test_string_lookup(self) -> None:
        """Actions parse from their string values."""
        assert ReviewAction("submit_edit") is ReviewAction.SUBMIT_EDIT


class TestReviewRecord:
    """Tests for the review record dataclass."""

    def test_generate_id_format(self) -> None:
        """IDs are 'review_' plus twelve hex characters."""
        rid = ReviewRecord.generate_id()
        assert rid.startswith("review_")
        assert len(rid) == len("review_") + 12
        int(rid[len("review_") :], 16)

    def test_generate_id_unique(self) -> None:
        """Generated IDs do not repeat."""
        assert len({ReviewRecord.generate_id() for _ in range(100)}) == 100

    def test_defaults(self) -> None:
        """New records are pending at version 1."""
        record = ReviewRecord(
            review_id="review_x",
            source_message_id="m",
            room_id="r",
            original_message="q",
            proposed_answer="a",
        )
        assert record.status is ReviewStatus.PENDING
        assert record.version == 1
        assert record.assigned_reviewer is None

    def test_evolve_bumps_version(self, review_factory: ReviewFactory) -> None:
        """evolve copies, applies changes, and bumps the version."""
        record = review_factory()
        later = record.evolve(status=ReviewStatus.APPROVED, acted_by="alice")
        assert later.version == record.version + 1
        assert later.status is ReviewStatus.APPROVED
        assert later.acted_by == "alice"
        assert record.status is ReviewStatus.PENDING
        assert later.updated_at >= record.updated_at

    def test_dict_round_trip(self, review_factory: ReviewFactory) -> None:
        """to_dict and from_dict are inverses."""
        record = review_factory(
            created_at=datetime(2024, 1, 1, 12, 0, 0),
            assigned_reviewer="alice",
        )
        assert ReviewRecord.from_dict(record.to_dict()) == record

    def test_to_dict_status_value(self, review_factory: ReviewFactory) -> None:
        """Status serializes as its string value."""
        assert review_factory(status=ReviewStatus.EDITING).to_dict()["status"] == "editing"


class TestReviewer:
    """Tests for the reviewer identity."""

    def test_round_trip(self) -> None:
        """to_dict and from_dict are inverses."""
        reviewer = Reviewer(user_id="u1", username="alice")
        assert Reviewer.from_dict(reviewer.to_dict()) == reviewer
