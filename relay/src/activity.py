"""Activity log for matching decisions.

Every Alpha and Beta decision is written to the ``relay.activity`` logger.
When a log channel is configured, a formatted summary is also delivered
there. A failed delivery is logged and never propagates into the message
path.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any

from relay.src.notifications import NotificationPort
from shared.errors import NotificationError
from sieve.src.classifier import MessageType

logger = logging.getLogger(__name__)
activity_logger = logging.getLogger("relay.activity")


@dataclass(frozen=True)
class ActivityLogEntry:
    """One matching decision.

    Attributes:
        type: ALPHA for direct matches, BETA for escalations.
        score: BM25 score of the best corpus entry.
        original_message: The user's message text.
        sender: Username of the sender.
        room: Room name (or ID) the message came from.
        matched_question: Corpus question answered or detected.
        proposed_answer: Answer sent or proposed.
        review_id: Review created for a Beta decision.
        reviewer_id: Username of the reviewer notified.
    """

    type: MessageType
    score: float
    original_message: str
    sender: str
    room: str
    matched_question: str | None = None
    proposed_answer: str | None = None
    review_id: str | None = None
    reviewer_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "type": self.type.value,
            "score": self.score,
            "original_message": self.original_message,
            "sender": self.sender,
            "room": self.room,
            "matched_question": self.matched_question,
            "proposed_answer": self.proposed_answer,
            "review_id": self.review_id,
            "reviewer_id": self.reviewer_id,
        }


def format_entry(entry: ActivityLogEntry) -> str:
    """Render the log-channel summary for *entry*."""
    if entry.type is MessageType.ALPHA:
        lines = [
            "🟢 *[Direct Match]*",
            f"*From:* @{entry.sender} | *Room:* #{entry.room} | *Score:* {entry.score:.2f}",
            f"*User Message:*\n>{entry.original_message}",
        ]
        if entry.proposed_answer:
            lines.append(f"*Response Given:*\n{entry.proposed_answer}")
        return "\n\n".join(lines)

    lines = [
        "🟡 *[Review Needed]*",
        f"*From:* @{entry.sender} | *Room:* #{entry.room} | *Score:* {entry.score:.2f}",
        f"*User Message:*\n>{entry.original_message}",
    ]
    if entry.matched_question:
        lines.append(f"*Detected FAQ:* {entry.matched_question}")
    if entry.proposed_answer:
        lines.append(f"*Proposed Response:*\n{entry.proposed_answer}")
    if entry.reviewer_id:
        lines.append(f"*Assigned Reviewer:* @{entry.reviewer_id}")
    if entry.review_id:
        lines.append(f"*Review ID:* {entry.review_id}")
    return "\n\n".join(lines)


class ActivityLog:
    """Record matching decisions.

    Args:
        notifier: Port used to reach the log channel.
        channel: Log channel room; empty disables channel delivery.
        history: Number of recent entries kept in memory.
    """

    def __init__(
        self,
        notifier: NotificationPort | None = None,
        channel: str = "",
        history: int = 500,
    ) -> None:
        self._notifier = notifier
        self._channel = channel
        self._entries: deque[ActivityLogEntry] = deque(maxlen=history)

    @property
    def entries(self) -> list[ActivityLogEntry]:
        return list(self._entries)

    def record(self, entry: ActivityLogEntry) -> None:
        """Log *entry* and mirror it to the log channel."""
        self._entries.append(entry)
        activity_logger.info(
            "%s score=%.3f room=%s sender=%s review=%s reviewer=%s",
            entry.type.value,
            entry.score,
            entry.room,
            entry.sender,
            entry.review_id or "-",
            entry.reviewer_id or "-",
        )
        if not self._channel or self._notifier is None:
            return
        try:
            self._notifier.deliver(self._channel, format_entry(entry))
        except NotificationError as exc:
            logger.error("Could not write to log channel %s: %s", self._channel, exc)
