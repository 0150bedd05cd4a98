"""Tests for docket.src.actions reviewer action processing."""

from __future__ import annotations

import pytest

from docket.src.actions import (
    BOT_PREFIX,
    CANCEL_EDIT_CONFIRMATION,
    ActionProcessor,
    parse_action_id,
)
from docket.src.lifecycle import ReviewLifecycle
from docket.src.models import ReviewAction, ReviewRecord, ReviewStatus
from docket.src.rotation import StaticReviewerDirectory
from relay.src.notifications import InMemoryNotifier
from shared.errors import InvalidTransitionError, ReviewNotFoundError


class TestParseActionId:
    """Tests for composite action id parsing."""

    @pytest.mark.parametrize(
        ("action_id", "action", "review_id"),
        [
            ("approve_review_abc123", ReviewAction.APPROVE, "review_abc123"),
            ("reject_review_abc123", ReviewAction.REJECT, "review_abc123"),
            ("edit_review_abc123", ReviewAction.EDIT, "review_abc123"),
            ("submit_edit_review_abc123", ReviewAction.SUBMIT_EDIT, "review_abc123"),
            ("cancel_edit_review_abc123", ReviewAction.CANCEL_EDIT, "review_abc123"),
        ],
    )
    def test_known_prefixes(self, action_id: str, action: ReviewAction, review_id: str) -> None:
        """Each prefix maps to its action and the remainder is the id."""
        assert parse_action_id(action_id) == (action, review_id)

    def test_unknown_prefix(self) -> None:
        """Unknown prefixes raise ValueError."""
        with pytest.raises(ValueError, match="Unknown action id"):
            parse_action_id("publish_review_abc")

    def test_missing_review_id(self) -> None:
        """A bare prefix raises ValueError."""
        with pytest.raises(ValueError, match="no review id"):
            parse_action_id("approve_")


class TestApprove:
    """Tests for the approve path."""

    def test_delivers_prefixed_answer(
        self,
        processor: ActionProcessor,
        notifier: InMemoryNotifier,
        pending_review: ReviewRecord,
    ) -> None:
        """Approval delivers the answer to the source room with the bot prefix."""
        outcome = processor.process(pending_review.review_id, ReviewAction.APPROVE, "alice")

        assert outcome.review.status is ReviewStatus.APPROVED
        assert outcome.delivered is True
        room = notifier.messages(kind="room")
        assert len(room) == 1
        assert room[0].target == "room_general"
        assert room[0].text == (
            f"{BOT_PREFIX}Here's an answer to your question: {pending_review.proposed_answer}"
        )
        assert room[0].text.startswith("🤖 FAQ Bot: ")

    def test_confirms_to_reviewer(
        self,
        processor: ActionProcessor,
        notifier: InMemoryNotifier,
        pending_review: ReviewRecord,
    ) -> None:
        """The acting reviewer is told what was sent."""
        processor.process(pending_review.review_id, ReviewAction.APPROVE, "alice")
        direct = notifier.messages(kind="direct", target="alice")
        assert len(direct) == 1
        assert direct[0].text.startswith(
            f'✅ You approved the response to: "{pending_review.original_message}"'
        )
        assert pending_review.proposed_answer in direct[0].text

    def test_second_approve_delivers_nothing(
        self,
        processor: ActionProcessor,
        notifier: InMemoryNotifier,
        pending_review: ReviewRecord,
    ) -> None:
        """A repeated approve fails and sends no second answer."""
        processor.process(pending_review.review_id, ReviewAction.APPROVE, "alice")
        with pytest.raises(InvalidTransitionError):
            processor.process(pending_review.review_id, ReviewAction.APPROVE, "bob")
        assert len(notifier.messages(kind="room")) == 1
        assert notifier.messages(target="bob") == []


class TestReject:
    """Tests for the reject path."""

    def test_nothing_delivered(
        self,
        processor: ActionProcessor,
        notifier: InMemoryNotifier,
        pending_review: ReviewRecord,
    ) -> None:
        """Rejection sends no room message and confirms to the reviewer."""
        outcome = processor.process(pending_review.review_id, "reject", "alice")
        assert outcome.review.status is ReviewStatus.REJECTED
        assert outcome.delivered is False
        assert notifier.messages(kind="room") == []
        direct = notifier.messages(kind="direct", target="alice")
        assert direct[0].text == (
            f'❌ You rejected the response to: "{pending_review.original_message}"\n\n'
            "No response has been sent to the channel."
        )


class TestEditFlow:
    """Tests for edit, submit-edit, and cancel-edit."""

    def test_edit_sends_prompt(
        self,
        processor: ActionProcessor,
        notifier: InMemoryNotifier,
        pending_review: ReviewRecord,
    ) -> None:
        """Opening an edit sends the current answer to the reviewer."""
        outcome = processor.process(pending_review.review_id, ReviewAction.EDIT, "alice")
        assert outcome.review.status is ReviewStatus.EDITING
        assert notifier.messages(kind="room") == []
        prompt = notifier.messages(kind="direct", target="alice")[0].text
        assert "*Edit FAQ Response*" in prompt
        assert pending_review.proposed_answer in prompt
        assert pending_review.detected_question in prompt

    def test_submit_edit_delivers_edited_text(
        self,
        processor: ActionProcessor,
        notifier: InMemoryNotifier,
        pending_review: ReviewRecord,
    ) -> None:
        """Submitted text replaces the answer and is delivered as-is."""
        processor.process(pending_review.review_id, ReviewAction.EDIT, "alice")
        outcome = processor.process(
            pending_review.review_id,
            ReviewAction.SUBMIT_EDIT,
            "alice",
            text="Use the + button, then pick Channel.",
        )
        assert outcome.review.status is ReviewStatus.APPROVED
        assert outcome.review.proposed_answer == "Use the + button, then pick Channel."
        room = notifier.messages(kind="room")
        assert [m.text for m in room] == [f"{BOT_PREFIX}Use the + button, then pick Channel."]
        confirmation = notifier.messages(kind="direct", target="alice")[-1].text
        assert "Use the + button, then pick Channel." in confirmation

    def test_cancel_edit(
        self,
        processor: ActionProcessor,
        notifier: InMemoryNotifier,
        pending_review: ReviewRecord,
    ) -> None:
        """Cancelling returns to pending and says so."""
        processor.process(pending_review.review_id, ReviewAction.EDIT, "alice")
        outcome = processor.process(pending_review.review_id, ReviewAction.CANCEL_EDIT, "alice")
        assert outcome.review.status is ReviewStatus.PENDING
        assert notifier.messages(kind="room") == []
        assert notifier.messages(kind="direct")[-1].text == CANCEL_EDIT_CONFIRMATION

    def test_process_action_id(
        self,
        processor: ActionProcessor,
        notifier: InMemoryNotifier,
        pending_review: ReviewRecord,
    ) -> None:
        """Composite ids route to the same processing."""
        outcome = processor.process_action_id(f"reject_{pending_review.review_id}", "alice")
        assert outcome.action is ReviewAction.REJECT
        assert outcome.review.status is ReviewStatus.REJECTED


class TestFailures:
    """Tests for error reporting."""

    def test_unknown_review(self, processor: ActionProcessor, notifier: InMemoryNotifier) -> None:
        """Unknown ids raise and send nothing."""
        with pytest.raises(ReviewNotFoundError):
            processor.process("review_missing", ReviewAction.APPROVE, "alice")
        assert notifier.outbox == []

    def test_delivery_failure_reported_not_rolled_back(
        self,
        lifecycle: ReviewLifecycle,
        pending_review: ReviewRecord,
    ) -> None:
        """A failed room delivery is reported while the approval stands."""
        notifier = InMemoryNotifier(failing_targets={"room_general"})
        processor = ActionProcessor(lifecycle, notifier)

        outcome = processor.process(pending_review.review_id, ReviewAction.APPROVE, "alice")

        assert outcome.delivered is False
        assert outcome.delivery_error is not None
        assert "room_general" in outcome.delivery_error
        assert lifecycle.get(pending_review.review_id).status is ReviewStatus.APPROVED
        assert len(notifier.messages(kind="direct", target="alice")) == 1

    def test_confirmation_failure_reported(
        self,
        lifecycle: ReviewLifecycle,
        pending_review: ReviewRecord,
    ) -> None:
        """A failed confirmation is reported on the outcome."""
        notifier = InMemoryNotifier(failing_targets={"alice"})
        processor = ActionProcessor(lifecycle, notifier)
        outcome = processor.process(pending_review.review_id, ReviewAction.REJECT, "alice")
        assert outcome.confirmation_error is not None
        assert outcome.review.status is ReviewStatus.REJECTED

    def test_directory_resolves_actor(
        self,
        lifecycle: ReviewLifecycle,
        notifier: InMemoryNotifier,
        pending_review: ReviewRecord,
    ) -> None:
        """A directory supplies the reviewer identity for confirmations."""
        processor = ActionProcessor(
            lifecycle,
            notifier,
            directory=StaticReviewerDirectory({"alice": "u_alice"}),
        )
        processor.process(pending_review.review_id, ReviewAction.REJECT, "alice")
        assert notifier.messages(kind="direct", target="alice")

    def test_outcome_to_dict(self, processor: ActionProcessor, pending_review: ReviewRecord) -> None:
        """Outcomes serialize with the review and delivery flags."""
        data = processor.process(pending_review.review_id, ReviewAction.APPROVE, "alice").to_dict()
        assert data["action"] == "approve"
        assert data["delivered"] is True
        assert data["review"]["status"] == "approved"
        assert data["delivery_error"] is None
