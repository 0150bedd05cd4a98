"""Review lifecycle state machine.

Transitions are an explicit table keyed by (current status, action).
Anything not in the table is rejected with ``InvalidTransitionError`` and
leaves the record untouched. Writes go through the storage layer's
compare-and-swap, so two reviewers acting on the same record at once
produce exactly one winner; the loser gets ``ReviewConflictError``.

    PENDING --approve-----> APPROVED
    PENDING --reject------> REJECTED
    PENDING --edit--------> EDITING
    EDITING --submit_edit-> APPROVED   (proposed_answer replaced)
    EDITING --cancel_edit-> PENDING
    PENDING --expire------> EXPIRED
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from docket.src.models import ReviewAction, ReviewRecord, ReviewStatus
from docket.src.storage import DocketStorage
from shared.errors import (
    InvalidTransitionError,
    ReviewConflictError,
    ReviewNotFoundError,
    SiftError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MINUTES = 60

TRANSITIONS: dict[tuple[ReviewStatus, ReviewAction], ReviewStatus] = {
    (ReviewStatus.PENDING, ReviewAction.APPROVE): ReviewStatus.APPROVED,
    (ReviewStatus.PENDING, ReviewAction.REJECT): ReviewStatus.REJECTED,
    (ReviewStatus.PENDING, ReviewAction.EDIT): ReviewStatus.EDITING,
    (ReviewStatus.EDITING, ReviewAction.SUBMIT_EDIT): ReviewStatus.APPROVED,
    (ReviewStatus.EDITING, ReviewAction.CANCEL_EDIT): ReviewStatus.PENDING,
    (ReviewStatus.PENDING, ReviewAction.EXPIRE): ReviewStatus.EXPIRED,
}


def allowed_actions(status: ReviewStatus) -> list[ReviewAction]:
    """Return the actions that are valid from *status*."""
    return [action for (src, action) in TRANSITIONS if src is status]


class ReviewLifecycle:
    """Apply actions to stored review records.

    Args:
        store: Storage holding the records.

    Example::

        lifecycle = ReviewLifecycle(store)
        record = lifecycle.apply("review_abc", ReviewAction.APPROVE, actor="alice")
    """

    def __init__(self, store: DocketStorage) -> None:
        self._store = store

    @property
    def store(self) -> DocketStorage:
        return self._store

    def get(self, review_id: str) -> ReviewRecord:
        """Fetch a review or raise.

        Raises:
            ReviewNotFoundError: If the ID is unknown.
        """
        record = self._store.get_review(review_id)
        if record is None:
            raise ReviewNotFoundError(review_id)
        return record

    def apply(
        self,
        review_id: str,
        action: ReviewAction | str,
        actor: str | None,
        text: str | None = None,
    ) -> ReviewRecord:
        """Move a review along one edge of the transition table.

        Args:
            review_id: Target review.
            action: Action to apply.
            actor: Username of the reviewer acting (None for the system).
            text: Replacement answer; required for submit_edit.

        Returns:
            The record as written.

        Raises:
            ValueError: If the action is unknown, or submit_edit has blank text.
            ReviewNotFoundError: If the review does not exist.
            InvalidTransitionError: If the edge is not in the table.
            ReviewConflictError: If another writer changed the record first.
            PersistenceError: If the write fails.
        """
        action = ReviewAction(action)
        if action is ReviewAction.SUBMIT_EDIT and not (text or "").strip():
            raise ValueError("Edited answer must not be empty")

        current = self.get(review_id)
        target = TRANSITIONS.get((current.status, action))
        if target is None:
            raise InvalidTransitionError(review_id, current.status.value, action.value)

        changes: dict[str, object] = {"status": target, "acted_by": actor}
        if action is ReviewAction.SUBMIT_EDIT:
            changes["proposed_answer"] = text
        updated = current.evolve(**changes)
        self._write(current, updated, action)

        logger.info(
            "Review %s: %s -> %s by %s",
            review_id,
            current.status.value,
            target.value,
            actor or "system",
        )
        return updated

    def assign(self, review_id: str, reviewer_username: str) -> ReviewRecord:
        """Record which reviewer was notified, without changing status.

        Raises:
            ReviewNotFoundError: If the review does not exist.
            ReviewConflictError: If another writer changed the record first.
        """
        current = self.get(review_id)
        updated = current.evolve(assigned_reviewer=reviewer_username)
        self._write(current, updated, "assign")
        return updated

    def sweep_expired(
        self,
        timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES,
        now: datetime | None = None,
    ) -> list[ReviewRecord]:
        """Expire every PENDING review older than the timeout.

        A record exactly ``timeout_minutes`` old is not yet expired.
        Records that change concurrently are skipped.

        Args:
            timeout_minutes: Age after which a pending review expires.
            now: Reference time (defaults to the current time).

        Returns:
            Records that were expired by this sweep.
        """
        now = now or datetime.now()
        cutoff = timedelta(minutes=timeout_minutes)
        expired: list[ReviewRecord] = []
        for record in self._store.list_reviews(status=ReviewStatus.PENDING):
            if now - record.created_at <= cutoff:
                continue
            try:
                expired.append(self.apply(record.review_id, ReviewAction.EXPIRE, actor=None))
            except InvalidTransitionError:
                logger.debug("Review %s changed during sweep, skipping", record.review_id)
        if expired:
            logger.info("Expired %d pending review(s)", len(expired))
        return expired

    # ------------------------------------------------------------------

    def _write(self, current: ReviewRecord, updated: ReviewRecord, action: object) -> None:
        ok = self._store.compare_and_swap(updated, current.status, current.version)
        if not ok:
            latest = self._store.get_review(current.review_id)
            status = latest.status.value if latest else current.status.value
            label = action.value if isinstance(action, ReviewAction) else str(action)
            raise ReviewConflictError(current.review_id, status, label)


class ExpirySweeper:
    """Run ``sweep_expired`` periodically on a daemon thread.

    A failing sweep is logged and the loop continues.

    Args:
        lifecycle: Lifecycle to sweep.
        interval_seconds: Seconds between sweeps. Zero disables the sweeper.
        timeout_minutes: Age after which pending reviews expire.
        on_expired: Optional callback invoked with each sweep's expired records.
    """

    def __init__(
        self,
        lifecycle: ReviewLifecycle,
        interval_seconds: float,
        timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES,
        on_expired: Callable[[list[ReviewRecord]], None] | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._interval = interval_seconds
        self._timeout = timeout_minutes
        self._on_expired = on_expired
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def enabled(self) -> bool:
        return self._interval > 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Start the background thread.

        Returns:
            True if a thread was started, False if disabled or already running.
        """
        if not self.enabled or self.running:
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="docket-expiry-sweeper", daemon=True
        )
        self._thread.start()
        logger.info("Expiry sweeper started (every %.0fs)", self._interval)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the thread to stop and wait for it."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
            logger.info("Expiry sweeper stopped")

    def run_once(self) -> list[ReviewRecord]:
        """Run a single sweep in the calling thread."""
        expired = self._lifecycle.sweep_expired(timeout_minutes=self._timeout)
        if expired and self._on_expired is not None:
            self._on_expired(expired)
        return expired

    def _loop(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self.run_once()
            except SiftError:
                logger.exception("Expiry sweep failed")
