"""Outbound message delivery.

``NotificationPort`` is the boundary to the chat platform: answers go to
rooms, review requests and confirmations go to reviewers. Failures raise
``NotificationError`` and are never retried here.

``InMemoryNotifier`` keeps an outbox for tests and local runs;
``WebhookNotifier`` POSTs JSON events to a single URL.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

import requests

from docket.src.models import Reviewer, ReviewRecord
from shared.errors import NotificationError

logger = logging.getLogger(__name__)


def format_review_request(review: ReviewRecord) -> str:
    """Render the message a reviewer receives for a new review."""
    lines = [
        "📝 *FAQ response needs review*",
        f"*From:* @{review.sender_username or review.sender_id}",
        f"*Room:* {review.room_name or review.room_id}",
        f"*Message:* {review.original_message}",
    ]
    if review.detected_question:
        lines.append(f"*Detected FAQ:* {review.detected_question}")
    lines.append(f"*Proposed answer:*\n{review.proposed_answer}")
    lines.append(f"*Review ID:* {review.review_id}")
    return "\n".join(lines)


@runtime_checkable
class NotificationPort(Protocol):
    """Protocol for outbound delivery."""

    def deliver(self, room_id: str, text: str) -> None:
        """Post *text* to a room.

        Raises:
            NotificationError: If delivery fails.
        """
        ...

    def notify_reviewer(self, review: ReviewRecord, reviewer: Reviewer) -> None:
        """Ask *reviewer* to act on *review*.

        Raises:
            NotificationError: If delivery fails.
        """
        ...

    def send_direct(self, reviewer: Reviewer, text: str) -> None:
        """Send *text* privately to *reviewer*.

        Raises:
            NotificationError: If delivery fails.
        """
        ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


@dataclass
class OutboxMessage:
    """One message captured by ``InMemoryNotifier``.

    Attributes:
        kind: "room", "review_request", or "direct".
        target: Room ID or reviewer username.
        text: Message body.
        review_id: Set for review requests.
        sent_at: Capture timestamp.
    """

    kind: str
    target: str
    text: str
    review_id: str | None = None
    sent_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "kind": self.kind,
            "target": self.target,
            "text": self.text,
            "review_id": self.review_id,
            "sent_at": self.sent_at.isoformat(),
        }


class InMemoryNotifier:
    """Notifier that records every message in an outbox.

    Args:
        failing_targets: Room IDs or reviewer usernames whose deliveries
            raise ``NotificationError``.
    """

    def __init__(self, failing_targets: set[str] | None = None) -> None:
        self._failing = set(failing_targets or ())
        self._lock = threading.Lock()
        self.outbox: list[OutboxMessage] = []

    def fail_for(self, target: str) -> None:
        """Make future deliveries to *target* fail."""
        self._failing.add(target)

    def deliver(self, room_id: str, text: str) -> None:
        """Record a room message."""
        self._record(OutboxMessage(kind="room", target=room_id, text=text))

    def notify_reviewer(self, review: ReviewRecord, reviewer: Reviewer) -> None:
        """Record a review request."""
        self._record(
            OutboxMessage(
                kind="review_request",
                target=reviewer.username,
                text=format_review_request(review),
                review_id=review.review_id,
            )
        )

    def send_direct(self, reviewer: Reviewer, text: str) -> None:
        """Record a direct message."""
        self._record(OutboxMessage(kind="direct", target=reviewer.username, text=text))

    def messages(self, kind: str | None = None, target: str | None = None) -> list[OutboxMessage]:
        """Return recorded messages, optionally filtered."""
        with self._lock:
            return [
                m
                for m in self.outbox
                if (kind is None or m.kind == kind) and (target is None or m.target == target)
            ]

    def _record(self, message: OutboxMessage) -> None:
        if message.target in self._failing:
            raise NotificationError(f"Delivery to {message.target} failed")
        with self._lock:
            self.outbox.append(message)


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


class WebhookNotifier:
    """Notifier that POSTs each message as a JSON event.

    Event body::

        {"type": "room" | "review_request" | "direct",
         "target": "...", "text": "...", "review": {...} | null}

    Args:
        url: Webhook URL.
        timeout_seconds: Request timeout.
    """

    def __init__(self, url: str, timeout_seconds: float = 10.0) -> None:
        self._url = url
        self._timeout = timeout_seconds

    def deliver(self, room_id: str, text: str) -> None:
        """POST a room message event."""
        self._post({"type": "room", "target": room_id, "text": text, "review": None})

    def notify_reviewer(self, review: ReviewRecord, reviewer: Reviewer) -> None:
        """POST a review request event."""
        self._post(
            {
                "type": "review_request",
                "target": reviewer.username,
                "text": format_review_request(review),
                "review": review.to_dict(),
            }
        )

    def send_direct(self, reviewer: Reviewer, text: str) -> None:
        """POST a direct message event."""
        self._post({"type": "direct", "target": reviewer.username, "text": text, "review": None})

    def _post(self, event: dict[str, Any]) -> None:
        try:
            response = requests.post(self._url, json=event, timeout=self._timeout)
        except requests.RequestException as exc:
            raise NotificationError(f"Webhook request failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise NotificationError(f"Webhook returned status {response.status_code}")
        logger.debug("Delivered %s event to %s", event["type"], event["target"])
