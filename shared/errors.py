"""Error taxonomy shared by the Sift tools.

Every tool raises subclasses of ``SiftError`` so that routers and the
message pipeline can map failures to HTTP status codes and log levels
without inspecting message text.

Hierarchy::

    SiftError
    ├── ConfigurationError        missing API key / endpoint, bad values
    ├── NotFoundError
    │   ├── ReviewNotFoundError    unknown review id
    │   └── ReviewerNotFoundError  no reviewer resolvable
    ├── InvalidTransitionError     edge not in the review transition table
    │   └── ReviewConflictError    record changed between read and write
    ├── ExternalServiceError
    │   └── NotificationError      delivery to a room or reviewer failed
    └── PersistenceError           storage backend failure
"""

from __future__ import annotations


class SiftError(Exception):
    """Base exception for all Sift errors."""


class ConfigurationError(SiftError):
    """Raised when required configuration is missing or invalid."""


class NotFoundError(SiftError):
    """Raised when a referenced entity does not exist."""


class ReviewNotFoundError(NotFoundError):
    """Raised when a review id is unknown."""

    def __init__(self, review_id: str) -> None:
        self.review_id = review_id
        super().__init__(f"Review not found: {review_id}")


class ReviewerNotFoundError(NotFoundError):
    """Raised when no reviewer can be resolved for an escalation."""


class InvalidTransitionError(SiftError):
    """Raised when a review action is not allowed from the current status.

    Attributes:
        review_id: The review the action targeted.
        status: Status the record was in when the action was attempted.
        action: The rejected action value.
    """

    def __init__(self, review_id: str, status: str, action: str) -> None:
        self.review_id = review_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} review {review_id} in state {status}")


class ReviewConflictError(InvalidTransitionError):
    """Raised when a review was modified concurrently before the write landed."""


class ExternalServiceError(SiftError):
    """Raised when an external collaborator call fails."""


class NotificationError(ExternalServiceError):
    """Raised when a message could not be delivered."""


class PersistenceError(SiftError):
    """Raised for storage-level failures."""
