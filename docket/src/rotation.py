"""Round-robin reviewer allocation with a persisted cursor.

The cursor is a bare index into whatever reviewer list the caller passes.
It is not tied to reviewer identities, so reordering or editing the list
shifts the rotation; an out-of-range cursor simply restarts at the first
reviewer.

Example::

    rotator = ReviewerRotator(store)
    directory = StaticReviewerDirectory({"alice": "u1", "bob": "u2"})
    reviewer = rotator.select_reviewer(["alice", "bob"], directory)
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol, runtime_checkable

from docket.src.models import Reviewer
from docket.src.storage import DocketStorage
from shared.errors import ReviewerNotFoundError

logger = logging.getLogger(__name__)

CURSOR_KEY = "last_reviewer_index"


@runtime_checkable
class ReviewerDirectory(Protocol):
    """Protocol for resolving usernames to reviewer identities."""

    def resolve(self, username: str) -> Reviewer | None:
        """Look up a reviewer by username.

        Args:
            username: Username to resolve.

        Returns:
            The reviewer, or None if no such user exists.
        """
        ...


class StaticReviewerDirectory:
    """Directory backed by a fixed username -> user ID mapping.

    Args:
        users: Mapping of username to user ID.
    """

    def __init__(self, users: dict[str, str] | None = None) -> None:
        self._users = dict(users or {})

    def resolve(self, username: str) -> Reviewer | None:
        """Return the reviewer for *username*, or None."""
        user_id = self._users.get(username)
        if user_id is None:
            return None
        return Reviewer(user_id=user_id, username=username)

    @classmethod
    def identity(cls, usernames: list[str]) -> StaticReviewerDirectory:
        """Build a directory where each username is its own user ID."""
        return cls({name: name for name in usernames})


class ReviewerRotator:
    """Select reviewers in round-robin order across calls and restarts.

    Args:
        store: Storage holding the rotation cursor.
        cursor_key: Key the cursor is stored under.
    """

    def __init__(self, store: DocketStorage, cursor_key: str = CURSOR_KEY) -> None:
        self._store = store
        self._cursor_key = cursor_key
        self._lock = threading.Lock()

    def select_next(self, reviewers: list[Reviewer]) -> Reviewer:
        """Pick the reviewer after the persisted cursor.

        A single-reviewer list is returned without reading or writing the
        cursor.

        Args:
            reviewers: Resolved reviewers in rotation order.

        Returns:
            The selected reviewer.

        Raises:
            ReviewerNotFoundError: If the list is empty.
        """
        if not reviewers:
            raise ReviewerNotFoundError("No reviewers available")
        if len(reviewers) == 1:
            return reviewers[0]

        with self._lock:
            last = self._store.get_cursor(self._cursor_key)
            if last is None or last < 0 or last >= len(reviewers):
                last = -1
            nxt = (last + 1) % len(reviewers)
            self._store.set_cursor(self._cursor_key, nxt)

        logger.debug("Rotation cursor %d -> %d", last, nxt)
        return reviewers[nxt]

    def select_reviewer(
        self,
        usernames: list[str],
        directory: ReviewerDirectory,
    ) -> Reviewer:
        """Resolve *usernames* and pick the next reviewer among them.

        Unresolvable usernames are logged and skipped before rotation.

        Args:
            usernames: Configured reviewer usernames, in order.
            directory: Username resolver.

        Returns:
            The selected reviewer.

        Raises:
            ReviewerNotFoundError: If no username resolves.
        """
        resolved: list[Reviewer] = []
        for name in usernames:
            reviewer = directory.resolve(name)
            if reviewer is None:
                logger.warning("Reviewer %r could not be resolved, skipping", name)
                continue
            resolved.append(reviewer)

        if not resolved:
            raise ReviewerNotFoundError(
                f"None of the configured reviewers could be resolved: {usernames}"
            )
        return self.select_next(resolved)
