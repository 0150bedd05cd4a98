"""SQLite-backed storage for Docket review records and rotation state.

Review updates are compare-and-swap: a write lands only if the row still
has the status and version the caller read. The rotation cursor lives in
a small key/value table so it survives restarts.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from docket.src.models import ReviewRecord, ReviewStatus
from shared.errors import PersistenceError

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS reviews (
    review_id TEXT PRIMARY KEY,
    source_message_id TEXT NOT NULL,
    room_id TEXT NOT NULL,
    room_name TEXT DEFAULT '',
    sender_id TEXT DEFAULT '',
    sender_username TEXT DEFAULT '',
    original_message TEXT NOT NULL,
    detected_question TEXT,
    proposed_answer TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    version INTEGER NOT NULL DEFAULT 1,
    assigned_reviewer TEXT,
    acted_by TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS rotation_cursor (
    key TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_reviews_status
    ON reviews(status);
CREATE INDEX IF NOT EXISTS idx_reviews_created
    ON reviews(created_at);
"""

_REVIEW_COLUMNS = (
    "review_id",
    "source_message_id",
    "room_id",
    "room_name",
    "sender_id",
    "sender_username",
    "original_message",
    "detected_question",
    "proposed_answer",
    "status",
    "version",
    "assigned_reviewer",
    "acted_by",
    "created_at",
    "updated_at",
)


class DocketStorage:
    """SQLite-backed storage for review records and the rotation cursor.

    Safe to share across threads: the connection is opened with
    ``check_same_thread=False`` and every statement runs under one lock.

    Args:
        db_path: Path to SQLite database file, or ':memory:' for in-memory.

    Example::

        with DocketStorage("docket.db") as store:
            store.initialize_schema()
            store.create_review(record)
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open review database: {exc}") from exc
        self._conn.row_factory = sqlite3.Row

    def __enter__(self) -> DocketStorage:
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Close the database connection."""
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    def initialize_schema(self) -> None:
        """Create all tables and indexes if they don't exist."""
        with self._guard():
            self._conn.executescript(_SCHEMA_SQL)
            self._conn.commit()

    @contextmanager
    def _guard(self) -> Iterator[None]:
        """Serialise access and translate driver errors."""
        with self._lock:
            try:
                yield
            except sqlite3.Error as exc:
                self._rollback()
                raise PersistenceError(f"Review storage failure: {exc}") from exc

    def _rollback(self) -> None:
        """Roll back the open transaction; a closed connection has none."""
        try:
            self._conn.rollback()
        except sqlite3.ProgrammingError:
            logger.debug("Rollback skipped on closed connection")

    # ---------------------------------------------------------------
    # Reviews
    # ---------------------------------------------------------------

    def create_review(self, record: ReviewRecord) -> ReviewRecord:
        """Insert a new review record.

        Args:
            record: Record to insert.

        Returns:
            The inserted record.

        Raises:
            PersistenceError: If a review with the same ID exists or the
                write fails.
        """
        placeholders = ", ".join("?" for _ in _REVIEW_COLUMNS)
        with self._lock:
            try:
                self._conn.execute(
                    f"INSERT INTO reviews ({', '.join(_REVIEW_COLUMNS)}) "
                    f"VALUES ({placeholders})",
                    _record_values(record),
                )
                self._conn.commit()
            except sqlite3.IntegrityError as exc:
                self._rollback()
                raise PersistenceError(f"Review already exists: {record.review_id}") from exc
            except sqlite3.Error as exc:
                self._rollback()
                raise PersistenceError(f"Review storage failure: {exc}") from exc
        return record

    def get_review(self, review_id: str) -> ReviewRecord | None:
        """Fetch a review by ID.

        Args:
            review_id: The review's unique ID.

        Returns:
            The record, or None if not found.
        """
        with self._guard():
            row = self._conn.execute(
                "SELECT * FROM reviews WHERE review_id = ?", (review_id,)
            ).fetchone()
        return _row_to_record(row) if row else None

    def compare_and_swap(
        self,
        record: ReviewRecord,
        expected_status: ReviewStatus,
        expected_version: int,
    ) -> bool:
        """Write *record* only if the stored row is unchanged.

        Args:
            record: The new state of the review (already version-bumped).
            expected_status: Status the caller read.
            expected_version: Version the caller read.

        Returns:
            True if the row was updated, False if it had moved on.

        Raises:
            PersistenceError: If the write fails.
        """
        with self._guard():
            cursor = self._conn.execute(
                "UPDATE reviews SET proposed_answer = ?, status = ?, version = ?, "
                "assigned_reviewer = ?, acted_by = ?, updated_at = ? "
                "WHERE review_id = ? AND status = ? AND version = ?",
                (
                    record.proposed_answer,
                    record.status.value,
                    record.version,
                    record.assigned_reviewer,
                    record.acted_by,
                    record.updated_at.isoformat(),
                    record.review_id,
                    expected_status.value,
                    expected_version,
                ),
            )
            self._conn.commit()
        return cursor.rowcount == 1

    def list_reviews(
        self,
        status: ReviewStatus | None = None,
        limit: int | None = None,
    ) -> list[ReviewRecord]:
        """List reviews, oldest first.

        Args:
            status: Optional status filter.
            limit: Optional maximum number of rows.

        Returns:
            Matching review records.
        """
        sql = "SELECT * FROM reviews"
        params: list[Any] = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(status.value)
        sql += " ORDER BY created_at, review_id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        with self._guard():
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_record(r) for r in rows]

    def count_by_status(self) -> dict[str, int]:
        """Count reviews per status.

        Returns:
            Mapping of every status value to its count (zero included).
        """
        counts = {s.value: 0 for s in ReviewStatus}
        with self._guard():
            rows = self._conn.execute(
                "SELECT status, COUNT(*) AS n FROM reviews GROUP BY status"
            ).fetchall()
        for row in rows:
            counts[row["status"]] = row["n"]
        return counts

    # ---------------------------------------------------------------
    # Rotation cursor
    # ---------------------------------------------------------------

    def get_cursor(self, key: str) -> int | None:
        """Read a persisted cursor value.

        Args:
            key: Cursor name.

        Returns:
            The stored integer, or None if never written.
        """
        with self._guard():
            row = self._conn.execute(
                "SELECT value FROM rotation_cursor WHERE key = ?", (key,)
            ).fetchone()
        return int(row["value"]) if row else None

    def set_cursor(self, key: str, value: int) -> None:
        """Persist a cursor value, replacing any previous one.

        Args:
            key: Cursor name.
            value: New value.
        """
        with self._guard():
            self._conn.execute(
                "INSERT INTO rotation_cursor (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )
            self._conn.commit()


def _record_values(record: ReviewRecord) -> tuple[Any, ...]:
    """Flatten a record into column order for INSERT."""
    return (
        record.review_id,
        record.source_message_id,
        record.room_id,
        record.room_name,
        record.sender_id,
        record.sender_username,
        record.original_message,
        record.detected_question,
        record.proposed_answer,
        record.status.value,
        record.version,
        record.assigned_reviewer,
        record.acted_by,
        record.created_at.isoformat(),
        record.updated_at.isoformat(),
    )


def _row_to_record(row: sqlite3.Row) -> ReviewRecord:
    """Convert a database row to a ReviewRecord."""
    return ReviewRecord(
        review_id=row["review_id"],
        source_message_id=row["source_message_id"],
        room_id=row["room_id"],
        room_name=row["room_name"] or "",
        sender_id=row["sender_id"] or "",
        sender_username=row["sender_username"] or "",
        original_message=row["original_message"],
        detected_question=row["detected_question"],
        proposed_answer=row["proposed_answer"],
        status=ReviewStatus(row["status"]),
        version=row["version"],
        assigned_reviewer=row["assigned_reviewer"],
        acted_by=row["acted_by"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )
