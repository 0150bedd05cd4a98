"""Reviewer action processing.

``ActionProcessor`` applies a reviewer's action through the lifecycle,
then performs the side effects: delivering the final answer to the
source room and confirming the outcome to the reviewer. Side effects run
only after the state write has landed. A failed delivery or confirmation
is logged and reported on the returned ``ActionOutcome``; the state
change is not rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from docket.src.lifecycle import ReviewLifecycle
from docket.src.models import ReviewAction, Reviewer, ReviewRecord, ReviewStatus
from docket.src.rotation import ReviewerDirectory
from relay.src.notifications import NotificationPort
from shared.errors import NotificationError

logger = logging.getLogger(__name__)

BOT_PREFIX = "🤖 FAQ Bot: "

# Composite action-id prefixes, longest first so "submit_edit_" wins over "edit_"
_ACTION_PREFIXES: tuple[tuple[str, ReviewAction], ...] = (
    ("submit_edit_", ReviewAction.SUBMIT_EDIT),
    ("cancel_edit_", ReviewAction.CANCEL_EDIT),
    ("approve_", ReviewAction.APPROVE),
    ("reject_", ReviewAction.REJECT),
    ("edit_", ReviewAction.EDIT),
)


def parse_action_id(action_id: str) -> tuple[ReviewAction, str]:
    """Split a composite action id such as ``approve_review_ab12`` in two.

    Args:
        action_id: ``<action>_<review_id>``.

    Returns:
        Tuple of (action, review_id).

    Raises:
        ValueError: If the prefix is unknown or the review id is empty.
    """
    for prefix, action in _ACTION_PREFIXES:
        if action_id.startswith(prefix):
            review_id = action_id[len(prefix) :]
            if not review_id:
                raise ValueError(f"Action id has no review id: {action_id!r}")
            return action, review_id
    raise ValueError(f"Unknown action id: {action_id!r}")


# ---------------------------------------------------------------------------
# Message texts
# ---------------------------------------------------------------------------


def approved_delivery(answer: str) -> str:
    return f"Here's an answer to your question: {answer}"


def approved_confirmation(review: ReviewRecord) -> str:
    return (
        f'✅ You approved the response to: "{review.original_message}"\n\n'
        "The following response has been sent to the channel:\n\n"
        f"{review.proposed_answer}"
    )


def rejected_confirmation(review: ReviewRecord) -> str:
    return (
        f'❌ You rejected the response to: "{review.original_message}"\n\n'
        "No response has been sent to the channel."
    )


def edit_prompt(review: ReviewRecord) -> str:
    """Text sent to a reviewer who opened a review for editing."""
    lines = [
        "*Edit FAQ Response*",
        f"*Original Question:*\n{review.original_message}",
    ]
    if review.detected_question:
        lines.append(f"*Detected FAQ:*\n{review.detected_question}")
    lines.append(f"*Current Response:*\n```\n{review.proposed_answer}\n```")
    lines.append(
        "Reply with your edited response and submit it to send it to the "
        "original channel, or cancel to leave the review pending."
    )
    return "\n\n".join(lines)


CANCEL_EDIT_CONFIRMATION = "Edit canceled. No changes were made to the FAQ response."


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------


@dataclass
class ActionOutcome:
    """Result of processing one reviewer action.

    Attributes:
        review: The record as written.
        action: The action applied.
        delivered_text: Text sent to the source room, if any.
        confirmation_text: Text sent to the acting reviewer.
        delivery_error: Why delivery to the room failed, if it did.
        confirmation_error: Why the reviewer confirmation failed, if it did.
    """

    review: ReviewRecord
    action: ReviewAction
    delivered_text: str | None = None
    confirmation_text: str | None = None
    delivery_error: str | None = None
    confirmation_error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.delivered_text is not None and self.delivery_error is None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "review": self.review.to_dict(),
            "action": self.action.value,
            "delivered": self.delivered,
            "delivered_text": self.delivered_text,
            "confirmation_text": self.confirmation_text,
            "delivery_error": self.delivery_error,
            "confirmation_error": self.confirmation_error,
        }


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------


class ActionProcessor:
    """Validate and dispatch reviewer actions.

    Args:
        lifecycle: Lifecycle that owns state transitions.
        notifier: Port used for room delivery and reviewer confirmations.
        bot_prefix: Prefix tagging every delivered answer.
        directory: Resolver for the acting reviewer's identity. Without
            one, the actor name doubles as the user ID.
    """

    def __init__(
        self,
        lifecycle: ReviewLifecycle,
        notifier: NotificationPort,
        bot_prefix: str = BOT_PREFIX,
        directory: ReviewerDirectory | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._notifier = notifier
        self._bot_prefix = bot_prefix
        self._directory = directory

    def process(
        self,
        review_id: str,
        action: ReviewAction | str,
        actor: str,
        text: str | None = None,
    ) -> ActionOutcome:
        """Apply *action* to a review and run its side effects.

        Args:
            review_id: Target review.
            action: Action to apply.
            actor: Username of the acting reviewer.
            text: Edited answer for submit_edit.

        Returns:
            ActionOutcome describing what was written and sent.

        Raises:
            ReviewNotFoundError: If the review does not exist.
            InvalidTransitionError: If the action is not valid now (including
                a lost race); nothing is delivered.
            ValueError: On an unknown action or blank edit text.
            PersistenceError: If the state write fails.
        """
        action = ReviewAction(action)
        review = self._lifecycle.apply(review_id, action, actor, text=text)
        outcome = ActionOutcome(review=review, action=action)

        if review.status is ReviewStatus.APPROVED:
            body = (
                approved_delivery(review.proposed_answer)
                if action is ReviewAction.APPROVE
                else review.proposed_answer
            )
            self._deliver(outcome, self._bot_prefix + body)

        confirmation = self._confirmation_for(action, review)
        if confirmation is not None:
            self._confirm(outcome, actor, confirmation)
        return outcome

    def process_action_id(
        self,
        action_id: str,
        actor: str,
        text: str | None = None,
    ) -> ActionOutcome:
        """Parse a composite action id and process it."""
        action, review_id = parse_action_id(action_id)
        return self.process(review_id, action, actor, text=text)

    # ------------------------------------------------------------------

    @staticmethod
    def _confirmation_for(action: ReviewAction, review: ReviewRecord) -> str | None:
        if action in (ReviewAction.APPROVE, ReviewAction.SUBMIT_EDIT):
            return approved_confirmation(review)
        if action is ReviewAction.REJECT:
            return rejected_confirmation(review)
        if action is ReviewAction.EDIT:
            return edit_prompt(review)
        if action is ReviewAction.CANCEL_EDIT:
            return CANCEL_EDIT_CONFIRMATION
        return None

    def _resolve_actor(self, actor: str) -> Reviewer:
        if self._directory is not None:
            resolved = self._directory.resolve(actor)
            if resolved is not None:
                return resolved
        return Reviewer(user_id=actor, username=actor)

    def _deliver(self, outcome: ActionOutcome, text: str) -> None:
        outcome.delivered_text = text
        try:
            self._notifier.deliver(outcome.review.room_id, text)
        except NotificationError as exc:
            logger.error(
                "Review %s approved but delivery to room %s failed: %s",
                outcome.review.review_id,
                outcome.review.room_id,
                exc,
            )
            outcome.delivery_error = str(exc)

    def _confirm(self, outcome: ActionOutcome, actor: str, text: str) -> None:
        outcome.confirmation_text = text
        reviewer = self._resolve_actor(actor)
        try:
            self._notifier.send_direct(reviewer, text)
        except NotificationError as exc:
            logger.warning(
                "Confirmation to %s for review %s failed: %s",
                actor,
                outcome.review.review_id,
                exc,
            )
            outcome.confirmation_error = str(exc)
