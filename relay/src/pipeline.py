"""Inbound message pipeline.

Each message runs through the filters, then the classifier:

* **Alpha**: the matched corpus answer is delivered to the room.
* **Beta**: the answer generator is asked for a proposal. With review
  mode on, a reviewer is chosen by rotation, then a review record is
  created, assigned and sent to that reviewer. No resolvable reviewer
  fails the message without storing anything. With review mode off, the
  proposal is delivered directly.
* **Unrelated**: dropped.

Processing is serialised per room with a ``KeyedLock``; rooms never block
each other.

Example::

    pipeline = MessagePipeline(config, classifier, generator, lifecycle,
                               rotator, directory, notifier)
    result = pipeline.handle(IncomingMessage(message_id="m1", room_id="r1",
                                             text="How do I create a channel?"))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from docket.src.actions import BOT_PREFIX
from docket.src.lifecycle import ReviewLifecycle
from docket.src.models import Reviewer, ReviewRecord
from docket.src.rotation import ReviewerDirectory, ReviewerRotator
from relay.src.activity import ActivityLog, ActivityLogEntry
from relay.src.config import RelayConfig
from relay.src.notifications import NotificationPort
from shared.errors import (
    ConfigurationError,
    NotificationError,
    PersistenceError,
    ReviewerNotFoundError,
    SiftError,
)
from shared.hardening import InputValidator, KeyedLock, ValidationError
from sieve.src.classifier import ClassificationResult, MessageClassifier, MessageType
from sieve.src.generator import AnswerGenerator

logger = logging.getLogger(__name__)

FAILURE_NOTICE = (
    "Sorry, I couldn't process your question right now. "
    "A team member will follow up if needed."
)


class PipelineOutcome(str, Enum):
    """What happened to one inbound message."""

    ANSWERED = "answered"
    ESCALATED = "escalated"
    DROPPED = "dropped"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class IncomingMessage:
    """A chat message handed to the pipeline.

    Attributes:
        message_id: Platform message ID.
        room_id: Room the message was posted in.
        text: Message body.
        room_name: Human-readable room name.
        sender_id: Platform user ID of the sender.
        sender_username: Username of the sender.
        sender_is_bot: True for bot or app senders.
    """

    message_id: str
    room_id: str
    text: str
    room_name: str = ""
    sender_id: str = ""
    sender_username: str = ""
    sender_is_bot: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "message_id": self.message_id,
            "room_id": self.room_id,
            "text": self.text,
            "room_name": self.room_name,
            "sender_id": self.sender_id,
            "sender_username": self.sender_username,
            "sender_is_bot": self.sender_is_bot,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IncomingMessage:
        """Deserialize from dictionary."""
        return cls(
            message_id=data["message_id"],
            room_id=data["room_id"],
            text=data.get("text", ""),
            room_name=data.get("room_name", ""),
            sender_id=data.get("sender_id", ""),
            sender_username=data.get("sender_username", ""),
            sender_is_bot=data.get("sender_is_bot", False),
        )


@dataclass
class PipelineResult:
    """Result of handling one message.

    Attributes:
        outcome: Terminal outcome.
        message_id: ID of the handled message.
        reason: Short machine-readable reason for skips, drops and failures.
        classification: Classifier result, when the message got that far.
        review: Review record created for an escalation.
        reviewer: Reviewer notified for an escalation.
        delivered_text: Text posted to the room, if any.
        error: Failure description.
    """

    outcome: PipelineOutcome
    message_id: str
    reason: str = ""
    classification: ClassificationResult | None = None
    review: ReviewRecord | None = None
    reviewer: Reviewer | None = None
    delivered_text: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "outcome": self.outcome.value,
            "message_id": self.message_id,
            "reason": self.reason,
            "classification": self.classification.to_dict() if self.classification else None,
            "review": self.review.to_dict() if self.review else None,
            "reviewer": self.reviewer.to_dict() if self.reviewer else None,
            "delivered_text": self.delivered_text,
            "error": self.error,
        }


class MessagePipeline:
    """Route inbound messages to an answer, a review, or nowhere.

    Args:
        config: Relay settings; read on every message so updates apply
            to the next one.
        classifier: Alpha/Beta/Unrelated classifier.
        generator: Answer generator for Beta messages.
        lifecycle: Review lifecycle (and its store).
        rotator: Round-robin reviewer selector.
        directory: Resolves reviewer usernames to identities.
        notifier: Outbound delivery port.
        activity: Activity log; a silent one is used when omitted.
        bot_prefix: Prefix on every message this service posts.
    """

    def __init__(
        self,
        config: RelayConfig,
        classifier: MessageClassifier,
        generator: AnswerGenerator,
        lifecycle: ReviewLifecycle,
        rotator: ReviewerRotator,
        directory: ReviewerDirectory,
        notifier: NotificationPort,
        activity: ActivityLog | None = None,
        bot_prefix: str = BOT_PREFIX,
    ) -> None:
        self._config = config
        self._classifier = classifier
        self._generator = generator
        self._lifecycle = lifecycle
        self._rotator = rotator
        self._directory = directory
        self._notifier = notifier
        self._activity = activity or ActivityLog()
        self._bot_prefix = bot_prefix
        self._locks = KeyedLock()
        self._validator = InputValidator()

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def classifier(self) -> MessageClassifier:
        return self._classifier

    @property
    def activity(self) -> ActivityLog:
        return self._activity

    def handle(self, message: IncomingMessage) -> PipelineResult:
        """Process one inbound message.

        Args:
            message: The message to handle.

        Returns:
            PipelineResult with the outcome. Expected failures (missing
            configuration, storage, delivery) are reported, not raised.
        """
        skip = self._skip_reason(message)
        if skip is not None:
            logger.debug("Skipping message %s: %s", message.message_id, skip)
            return PipelineResult(PipelineOutcome.SKIPPED, message.message_id, reason=skip)

        try:
            text = self._validator.validate_message_text(message.text)
        except ValidationError as exc:
            logger.warning("Dropping message %s: %s", message.message_id, exc)
            return PipelineResult(
                PipelineOutcome.DROPPED, message.message_id, reason="invalid", error=str(exc)
            )

        try:
            self._config.validate()
        except ConfigurationError as exc:
            logger.error("Cannot process message %s: %s", message.message_id, exc)
            return PipelineResult(
                PipelineOutcome.FAILED, message.message_id, reason="configuration", error=str(exc)
            )

        with self._locks.hold(message.room_id):
            return self._process(message, text)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _skip_reason(self, message: IncomingMessage) -> str | None:
        if message.sender_is_bot:
            return "bot_sender"
        if not message.text or not message.text.strip():
            return "empty"
        if message.text.startswith(self._bot_prefix.rstrip()):
            return "bot_prefix"
        return None

    def _process(self, message: IncomingMessage, text: str) -> PipelineResult:
        classification = self._classifier.classify(text)
        logger.debug(
            "Message %s classified as %s (score %.3f)",
            message.message_id,
            classification.message_type.value,
            classification.score,
        )

        if classification.message_type is MessageType.ALPHA:
            return self._answer_directly(message, classification)
        if classification.message_type is MessageType.BETA:
            return self._escalate(message, text, classification)
        return PipelineResult(
            PipelineOutcome.DROPPED,
            message.message_id,
            reason="unrelated",
            classification=classification,
        )

    def _answer_directly(
        self,
        message: IncomingMessage,
        classification: ClassificationResult,
    ) -> PipelineResult:
        entry = classification.matched_entry
        if entry is None:
            logger.error("Alpha result for %s carries no entry", message.message_id)
            return PipelineResult(
                PipelineOutcome.FAILED,
                message.message_id,
                reason="no_entry",
                classification=classification,
            )

        result = self._deliver(message, entry.answer, classification)
        if result.outcome is not PipelineOutcome.ANSWERED:
            return result
        self._activity.record(
            ActivityLogEntry(
                type=MessageType.ALPHA,
                score=classification.score,
                original_message=classification.message,
                sender=_sender_label(message),
                room=message.room_name or message.room_id,
                matched_question=entry.question,
                proposed_answer=entry.answer,
            )
        )
        return result

    def _escalate(
        self,
        message: IncomingMessage,
        text: str,
        classification: ClassificationResult,
    ) -> PipelineResult:
        proposal = self._generator.check(text, self._classifier.corpus)
        if not proposal.matched or not proposal.answer:
            if proposal.error:
                logger.error("Generator failed for %s: %s", message.message_id, proposal.error)
            else:
                logger.debug("Generator found no match for %s", message.message_id)
            return PipelineResult(
                PipelineOutcome.DROPPED,
                message.message_id,
                reason="generator_error" if proposal.error else "no_match",
                classification=classification,
                error=proposal.error,
            )

        config = self._config
        if not config.enable_review_mode:
            logger.debug("Review mode off, delivering proposal for %s", message.message_id)
            result = self._deliver(message, proposal.answer, classification)
            if result.outcome is PipelineOutcome.ANSWERED:
                self._record_beta(
                    message, classification, proposal.detected_question, proposal.answer
                )
            return result

        try:
            reviewer = self._rotator.select_reviewer(config.reviewer_usernames, self._directory)
        except ReviewerNotFoundError as exc:
            logger.error("No reviewer for message %s: %s", message.message_id, exc)
            return self._fail(message, classification, "no_reviewer", exc)
        except PersistenceError as exc:
            logger.exception("Rotation cursor unavailable for message %s", message.message_id)
            return self._fail(message, classification, "persistence", exc)

        record = ReviewRecord(
            review_id=ReviewRecord.generate_id(),
            source_message_id=message.message_id,
            room_id=message.room_id,
            room_name=message.room_name,
            sender_id=message.sender_id,
            sender_username=message.sender_username,
            original_message=text,
            detected_question=proposal.detected_question,
            proposed_answer=proposal.answer,
        )
        try:
            record = self._lifecycle.store.create_review(record)
        except PersistenceError as exc:
            logger.exception("Could not store review for message %s", message.message_id)
            return self._fail(message, classification, "persistence", exc)

        try:
            record = self._lifecycle.assign(record.review_id, reviewer.username)
        except SiftError as exc:
            logger.exception("Could not assign review %s", record.review_id)
            return self._fail(message, classification, "assignment", exc, record)

        try:
            self._notifier.notify_reviewer(record, reviewer)
        except NotificationError as exc:
            logger.error(
                "Review %s created but %s was not notified: %s",
                record.review_id,
                reviewer.username,
                exc,
            )
            return self._fail(message, classification, "notification", exc, record)

        logger.info("Review %s assigned to %s", record.review_id, reviewer.username)
        self._record_beta(
            message,
            classification,
            proposal.detected_question,
            proposal.answer,
            review_id=record.review_id,
            reviewer=reviewer.username,
        )
        return PipelineResult(
            PipelineOutcome.ESCALATED,
            message.message_id,
            classification=classification,
            review=record,
            reviewer=reviewer,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _deliver(
        self,
        message: IncomingMessage,
        answer: str,
        classification: ClassificationResult,
    ) -> PipelineResult:
        text = self._bot_prefix + answer
        try:
            self._notifier.deliver(message.room_id, text)
        except NotificationError as exc:
            logger.error("Delivery to room %s failed: %s", message.room_id, exc)
            return PipelineResult(
                PipelineOutcome.FAILED,
                message.message_id,
                reason="delivery",
                classification=classification,
                error=str(exc),
            )
        return PipelineResult(
            PipelineOutcome.ANSWERED,
            message.message_id,
            classification=classification,
            delivered_text=text,
        )

    def _fail(
        self,
        message: IncomingMessage,
        classification: ClassificationResult,
        reason: str,
        exc: Exception,
        review: ReviewRecord | None = None,
    ) -> PipelineResult:
        if self._config.notify_sender_on_failure:
            try:
                self._notifier.deliver(message.room_id, self._bot_prefix + FAILURE_NOTICE)
            except NotificationError as notice_exc:
                logger.warning("Failure notice to %s not sent: %s", message.room_id, notice_exc)
        return PipelineResult(
            PipelineOutcome.FAILED,
            message.message_id,
            reason=reason,
            classification=classification,
            review=review,
            error=str(exc),
        )

    def _record_beta(
        self,
        message: IncomingMessage,
        classification: ClassificationResult,
        detected_question: str | None,
        answer: str,
        review_id: str | None = None,
        reviewer: str | None = None,
    ) -> None:
        self._activity.record(
            ActivityLogEntry(
                type=MessageType.BETA,
                score=classification.score,
                original_message=classification.message,
                sender=_sender_label(message),
                room=message.room_name or message.room_id,
                matched_question=detected_question,
                proposed_answer=answer,
                review_id=review_id,
                reviewer_id=reviewer,
            )
        )


def _sender_label(message: IncomingMessage) -> str:
    return message.sender_username or message.sender_id or "unknown"
