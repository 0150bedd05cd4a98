"""Docket data models for human review of proposed answers.

Defines the review record, its closed status and action enums, and the
reviewer identity. All models use dataclasses with serialization support
and UUID-based ID generation.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class ReviewStatus(str, Enum):
    """Lifecycle status of a review record."""

    PENDING = "pending"
    EDITING = "editing"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        """True for statuses no action can leave."""
        return self in _TERMINAL


_TERMINAL = frozenset({ReviewStatus.APPROVED, ReviewStatus.REJECTED, ReviewStatus.EXPIRED})


class ReviewAction(str, Enum):
    """Actions a reviewer (or the expiry sweep) can take on a review."""

    APPROVE = "approve"
    REJECT = "reject"
    EDIT = "edit"
    SUBMIT_EDIT = "submit_edit"
    CANCEL_EDIT = "cancel_edit"
    EXPIRE = "expire"


@dataclass(frozen=True)
class Reviewer:
    """A resolved reviewer identity.

    Attributes:
        user_id: Stable platform user ID.
        username: Display / lookup name.
    """

    user_id: str
    username: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"user_id": self.user_id, "username": self.username}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Reviewer:
        """Deserialize from dictionary."""
        return cls(user_id=data["user_id"], username=data["username"])


@dataclass
class ReviewRecord:
    """A proposed answer awaiting (or having received) human review.

    Attributes:
        review_id: Unique identifier (prefixed with 'review_').
        source_message_id: ID of the chat message that triggered the review.
        room_id: Room the answer is delivered to on approval.
        room_name: Human-readable room name.
        sender_id: ID of the user who asked.
        sender_username: Username of the user who asked.
        original_message: The user's message text.
        detected_question: Corpus question the proposal was drawn from, if known.
        proposed_answer: Answer text; replaced on submit-edit.
        created_at: Creation timestamp (drives expiry).
        updated_at: Last modification timestamp.
        status: Current lifecycle status.
        version: Incremented on every write; guards concurrent updates.
        assigned_reviewer: Username of the reviewer notified.
        acted_by: Username of the last reviewer to act.
    """

    review_id: str
    source_message_id: str
    room_id: str
    original_message: str
    proposed_answer: str
    room_name: str = ""
    sender_id: str = ""
    sender_username: str = ""
    detected_question: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    status: ReviewStatus = ReviewStatus.PENDING
    version: int = 1
    assigned_reviewer: str | None = None
    acted_by: str | None = None

    @staticmethod
    def generate_id() -> str:
        """Generate a unique review ID."""
        return f"review_{uuid.uuid4().hex[:12]}"

    def evolve(self, **changes: Any) -> ReviewRecord:
        """Return a copy with *changes* applied and the version bumped."""
        changes.setdefault("updated_at", datetime.now())
        return replace(self, version=self.version + 1, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "review_id": self.review_id,
            "source_message_id": self.source_message_id,
            "room_id": self.room_id,
            "room_name": self.room_name,
            "sender_id": self.sender_id,
            "sender_username": self.sender_username,
            "original_message": self.original_message,
            "detected_question": self.detected_question,
            "proposed_answer": self.proposed_answer,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "status": self.status.value,
            "version": self.version,
            "assigned_reviewer": self.assigned_reviewer,
            "acted_by": self.acted_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReviewRecord:
        """Deserialize from dictionary."""
        return cls(
            review_id=data["review_id"],
            source_message_id=data["source_message_id"],
            room_id=data["room_id"],
            room_name=data.get("room_name", ""),
            sender_id=data.get("sender_id", ""),
            sender_username=data.get("sender_username", ""),
            original_message=data["original_message"],
            detected_question=data.get("detected_question"),
            proposed_answer=data["proposed_answer"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            status=ReviewStatus(data.get("status", "pending")),
            version=data.get("version", 1),
            assigned_reviewer=data.get("assigned_reviewer"),
            acted_by=data.get("acted_by"),
        )
