"""Sift demonstration script.

Exercises all three tools in sequence:
  Sieve -> Relay -> Docket

Run: python scripts/demo_sift.py

No model endpoint or chat platform required. Uses the mock generator,
the in-memory notifier, and a temporary review database.
"""

from __future__ import annotations

import sys
import tempfile
from pathlib import Path

from docket.src.actions import ActionProcessor
from docket.src.lifecycle import ReviewLifecycle
from docket.src.models import ReviewAction, ReviewRecord
from docket.src.rotation import ReviewerRotator, StaticReviewerDirectory
from docket.src.storage import DocketStorage
from relay.src.activity import ActivityLog
from relay.src.config import RelayConfig
from relay.src.notifications import InMemoryNotifier
from relay.src.pipeline import IncomingMessage, MessagePipeline, PipelineOutcome
from shared.errors import InvalidTransitionError
from sieve.src.classifier import ClassificationResult, MessageClassifier
from sieve.src.corpus import CorpusEntry
from sieve.src.generator import GeneratorResult, MockGenerator

# ===================================================================
# Helpers
# ===================================================================

_SEPARATOR = "-" * 60
_HEADER = "=" * 60

_DEMO_CORPUS = [
    CorpusEntry(
        question="How do I create a channel?",
        answer="Click the pencil icon next to the search bar and choose 'Channel'.",
    ),
    CorpusEntry(
        question="What are the system requirements?",
        answer="Any current desktop browser works.",
    ),
]

_DEMO_MESSAGES = [
    "How do I create a channel?",
    "can u help me make a new channel",
    "How do I make a channel",
    "Is there a way to get a new room",
    "ok",
]

_PROPOSED_ANSWER = "Click the pencil icon and pick 'Channel' to create one."


def _banner(title: str) -> None:
    """Print a section banner."""
    print(f"\n{_HEADER}")
    print(f"  {title}")
    print(f"{_HEADER}\n")


def _step(label: str) -> None:
    """Print a step label."""
    print(f"  >> {label}")


def _result(label: str, value: str) -> None:
    """Print a result line."""
    print(f"     {label}: {value}")


# ===================================================================
# Step 1: Sieve
# ===================================================================


def demo_sieve() -> list[ClassificationResult]:
    """Step 1: Classify sample messages against the FAQ corpus.

    Returns:
        One classification per sample message.
    """
    _banner("STEP 1: SIEVE -- Matching")

    classifier = MessageClassifier(_DEMO_CORPUS)
    _result("Corpus entries", str(len(classifier.corpus)))
    _result("Threshold", f"{classifier.threshold:.2f}")

    results = []
    for message in _DEMO_MESSAGES:
        _step(f"Classify: {message!r}")
        result = classifier.classify(message)
        _result("Type", result.message_type.value)
        _result("Score", f"{result.score:.3f}")
        results.append(result)

    print(f"\n  {_SEPARATOR}")
    print("  Sieve demonstrates: BM25 ranking, threshold classification,")
    print("  and the short-message filter.")
    return results


# ===================================================================
# Step 2: Relay
# ===================================================================


def _build_pipeline(
    storage: DocketStorage,
    notifier: InMemoryNotifier,
) -> MessagePipeline:
    """Wire a pipeline over *storage* with two demo reviewers."""
    config = RelayConfig(
        api_key="demo-key-not-used",
        api_endpoint="https://llm.invalid/v1/chat/completions",
        reviewer_usernames=["alice", "bob"],
        log_channel_name="faq-log",
    )
    generator = MockGenerator(
        default=GeneratorResult(
            matched=True,
            answer=_PROPOSED_ANSWER,
            detected_question="How do I create a channel?",
        )
    )
    return MessagePipeline(
        config=config,
        classifier=MessageClassifier(_DEMO_CORPUS),
        generator=generator,
        lifecycle=ReviewLifecycle(storage),
        rotator=ReviewerRotator(storage),
        directory=StaticReviewerDirectory.identity(config.reviewer_usernames),
        notifier=notifier,
        activity=ActivityLog(notifier, channel=config.log_channel_name),
    )


def demo_relay(
    storage: DocketStorage,
    notifier: InMemoryNotifier,
) -> list[ReviewRecord]:
    """Step 2: Route messages through the pipeline.

    Direct matches are answered; paraphrases become pending reviews
    assigned in rotation.

    Args:
        storage: Review database to write escalations to.
        notifier: Outbox that captures every outbound message.

    Returns:
        Reviews created for escalated messages.
    """
    _banner("STEP 2: RELAY -- Routing")

    pipeline = _build_pipeline(storage, notifier)
    reviews = []
    for index, text in enumerate(_DEMO_MESSAGES):
        message = IncomingMessage(
            message_id=f"demo_{index:03d}",
            room_id="room_general",
            room_name="general",
            sender_id="user_42",
            sender_username="dana",
            text=text,
        )
        _step(f"Message: {text!r}")
        result = pipeline.handle(message)
        _result("Outcome", result.outcome.value)
        if result.outcome is PipelineOutcome.ESCALATED:
            _result("Review", result.review.review_id)
            _result("Reviewer", result.reviewer.username)
            reviews.append(result.review)
        elif result.reason:
            _result("Reason", result.reason)

    _result("Room messages", str(len(notifier.messages(kind="room", target="room_general"))))
    _result("Review requests", str(len(notifier.messages(kind="review_request"))))

    print(f"\n  {_SEPARATOR}")
    print("  Relay demonstrates: direct answers, escalation to a reviewer,")
    print("  round-robin assignment, and the activity log channel.")
    return reviews


# ===================================================================
# Step 3: Docket
# ===================================================================


def demo_docket(
    storage: DocketStorage,
    notifier: InMemoryNotifier,
    reviews: list[ReviewRecord],
) -> list[ReviewRecord]:
    """Step 3: Act on the pending reviews.

    The first review is approved, the second is edited and submitted,
    and a repeat approval of the first is refused.

    Args:
        storage: Review database holding *reviews*.
        notifier: Outbox shared with the relay step.
        reviews: Pending reviews from step 2.

    Returns:
        Final state of each acted-on review.
    """
    _banner("STEP 3: DOCKET -- Review")

    processor = ActionProcessor(ReviewLifecycle(storage), notifier)
    final = []

    if reviews:
        first = reviews[0]
        _step(f"{first.assigned_reviewer} approves {first.review_id}")
        outcome = processor.process(first.review_id, ReviewAction.APPROVE, first.assigned_reviewer)
        _result("Status", outcome.review.status.value)
        _result("Delivered", outcome.delivered_text or "-")
        final.append(outcome.review)

        _step("Second approval of the same review")
        try:
            processor.process(first.review_id, ReviewAction.APPROVE, "bob")
        except InvalidTransitionError as exc:
            _result("Refused", str(exc))

    if len(reviews) > 1:
        second = reviews[1]
        reviewer = second.assigned_reviewer
        _step(f"{reviewer} edits {second.review_id}")
        processor.process(second.review_id, ReviewAction.EDIT, reviewer)
        outcome = processor.process(
            second.review_id,
            ReviewAction.SUBMIT_EDIT,
            reviewer,
            text="Use the + button next to Channels in the sidebar.",
        )
        _result("Status", outcome.review.status.value)
        _result("Delivered", outcome.delivered_text or "-")
        final.append(outcome.review)

    print(f"\n  {_SEPARATOR}")
    print("  Docket demonstrates: approve, edit-and-submit, and")
    print("  exactly-once delivery under repeated actions.")
    return final


# ===================================================================
# Main
# ===================================================================


def main() -> int:
    """Run the full Sift demonstration.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    print(_HEADER)
    print("  SIFT DEMONSTRATION")
    print("  FAQ matching with human review")
    print(_HEADER)

    try:
        demo_sieve()
        with tempfile.TemporaryDirectory() as tmp:
            notifier = InMemoryNotifier()
            with DocketStorage(Path(tmp) / "docket.db") as storage:
                storage.initialize_schema()
                reviews = demo_relay(storage, notifier)
                demo_docket(storage, notifier, reviews)
    except Exception as exc:
        print(f"\n  ERROR: {exc}")
        return 1

    _print_summary()
    return 0


def _print_summary() -> None:
    """Print the final summary of the demonstration."""
    print(f"\n{_HEADER}")
    print("  DEMONSTRATION COMPLETE")
    print(_HEADER)
    print()
    print("  All three Sift tools demonstrated successfully:")
    print("    1. Sieve  - BM25 matching and classification")
    print("    2. Relay  - Message routing and reviewer rotation")
    print("    3. Docket - Review actions and delivery")


if __name__ == "__main__":
    sys.exit(main())
