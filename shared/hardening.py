"""Production hardening utilities for the Sift pipeline.

Provides per-key locking for message processing, user-friendly error
formatting, and input validation at system boundaries (message text and
corpus files). All utilities are synchronous and thread-safe so they can
be used from FastAPI's threadpool handlers.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from shared.errors import (
    ConfigurationError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# 1. Keyed Locks
# ---------------------------------------------------------------------------


class KeyedLock:
    """A mutex per key, so unrelated keys never block each other.

    Locks are reference counted and discarded once no thread holds or
    waits on them, which keeps the table bounded by the number of keys
    in flight.

    Example::

        locks = KeyedLock()
        with locks.hold(room_id):
            process(message)
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._refcounts: dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Acquire the lock for *key* for the duration of the block.

        Args:
            key: Lock key (room id, thread id, ...).

        Yields:
            None while the lock is held.
        """
        lock = self._acquire_ref(key)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            self._release_ref(key)

    def active_keys(self) -> list[str]:
        """Return keys that currently have a holder or waiter."""
        with self._guard:
            return sorted(self._locks)

    def _acquire_ref(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
                self._refcounts[key] = 0
            self._refcounts[key] += 1
            return lock

    def _release_ref(self, key: str) -> None:
        with self._guard:
            self._refcounts[key] -= 1
            if self._refcounts[key] == 0:
                del self._refcounts[key]
                del self._locks[key]


# ---------------------------------------------------------------------------
# 2. Error Formatting
# ---------------------------------------------------------------------------


@dataclass
class UserFriendlyError:
    """A structured error designed for end-user consumption.

    Attributes:
        message: Clear description for the user.
        suggestion: Actionable guidance.
        component: Originating subsystem (sieve, docket, relay).
        error_code: Machine-readable identifier (e.g. "REVW_404").
        technical_detail: Debugging info for logs only -- never shown to users.
    """

    message: str
    suggestion: str
    component: str
    error_code: str
    technical_detail: str = ""

    def to_dict(self) -> dict[str, str]:
        """Serialize for API responses (excludes technical_detail).

        Returns:
            Dictionary safe for sending to end users.
        """
        return {
            "message": self.message,
            "suggestion": self.suggestion,
            "component": self.component,
            "error_code": self.error_code,
        }


class ErrorFormatter:
    """Convert internal exceptions to user-friendly messages.

    All methods return a ``UserFriendlyError`` and never expose internal
    paths, stack traces, or implementation details to the end user.
    """

    def format_pipeline_error(self, error: Exception) -> UserFriendlyError:
        """Format an error raised while processing an inbound message.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="relay", code_prefix="MSG")

    def format_review_error(self, error: Exception) -> UserFriendlyError:
        """Format an error raised while applying a reviewer action.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="docket", code_prefix="REVW")

    def format_matching_error(self, error: Exception) -> UserFriendlyError:
        """Format an error raised by corpus loading or ranking.

        Args:
            error: The caught exception.

        Returns:
            User-friendly error with actionable suggestion.
        """
        return self._format(error, component="sieve", code_prefix="MATCH")

    # ------------------------------------------------------------------

    def _format(
        self,
        error: Exception,
        *,
        component: str,
        code_prefix: str,
    ) -> UserFriendlyError:
        """Shared formatting logic.

        Args:
            error: The caught exception.
            component: Subsystem name.
            code_prefix: Short prefix for error code.

        Returns:
            Structured error with safe user message.
        """
        message, suggestion, code_suffix = _classify_error(error)
        return UserFriendlyError(
            message=message,
            suggestion=suggestion,
            component=component,
            error_code=f"{code_prefix}_{code_suffix}",
            technical_detail=repr(error),
        )


def _classify_error(error: Exception) -> tuple[str, str, str]:
    """Map an exception to (message, suggestion, code_suffix).

    Args:
        error: The caught exception.

    Returns:
        Tuple of user message, suggestion text, and error code suffix.
    """
    if isinstance(error, NotFoundError):
        return (
            "The requested item could not be found.",
            "It may have been removed or never existed. Check the identifier.",
            "404",
        )
    if isinstance(error, InvalidTransitionError):
        return (
            "This action is no longer available for the item.",
            "Someone may already have handled it. Refresh and try again.",
            "409",
        )
    if isinstance(error, ConfigurationError):
        return (
            "The service is not fully configured.",
            "Ask an administrator to set the API key and endpoint.",
            "503",
        )
    if isinstance(error, (ExternalServiceError, TimeoutError, ConnectionError)):
        return (
            "An external service did not respond as expected.",
            "Try again later. If the problem persists, check the service status.",
            "502",
        )
    if isinstance(error, PersistenceError):
        return (
            "The change could not be saved.",
            "Do not assume the action succeeded. Try again shortly.",
            "500",
        )
    if isinstance(error, json.JSONDecodeError):
        return (
            "A data file contains invalid JSON.",
            "Verify the file format is valid JSON or JSONL.",
            "422",
        )
    if isinstance(error, ValueError):
        return (
            "Invalid input was provided.",
            "Check the input values and try again.",
            "400",
        )
    return (
        "An unexpected error occurred.",
        "If this keeps happening, please report the issue.",
        "999",
    )


# ---------------------------------------------------------------------------
# 3. Input Validation
# ---------------------------------------------------------------------------

# Null bytes in paths
_NULL_BYTE = re.compile(r"\x00")

_CORPUS_EXTENSIONS = (".json", ".jsonl")


class ValidationError(ValueError):
    """Raised when input validation fails."""


class InputValidator:
    """Validate inputs at system boundaries.

    All methods raise ``ValidationError`` on failure unless
    documented otherwise.
    """

    def validate_message_text(self, text: str, *, max_length: int = 10_000) -> str:
        """Normalize an inbound chat message.

        Strips control characters and surrounding whitespace.

        Args:
            text: Raw message text.
            max_length: Maximum allowed length after cleaning.

        Returns:
            Cleaned message text (may be empty).

        Raises:
            ValidationError: If the message exceeds max_length.
        """
        cleaned = _strip_control_chars(text or "").strip()
        if len(cleaned) > max_length:
            raise ValidationError(f"Message exceeds the maximum of {max_length} characters.")
        return cleaned

    def validate_corpus_file(
        self,
        path: str | Path,
        *,
        max_records: int = 10_000,
    ) -> list[dict[str, Any]]:
        """Read a corpus file (JSON array or JSONL) into raw records.

        Args:
            path: Path to a ``.json`` or ``.jsonl`` file.
            max_records: Safety cap on number of records.

        Returns:
            List of parsed JSON objects.

        Raises:
            ValidationError: On path, format, or size errors.
        """
        raw = str(path)
        if _NULL_BYTE.search(raw):
            raise ValidationError("Path contains null bytes.")
        resolved = Path(raw).resolve()
        if resolved.suffix.lower() not in _CORPUS_EXTENSIONS:
            allowed = ", ".join(_CORPUS_EXTENSIONS)
            raise ValidationError(f"File type not allowed. Accepted types: {allowed}")
        if not resolved.is_file():
            raise ValidationError("File does not exist.")

        try:
            text = resolved.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationError("File is not valid UTF-8 text.") from exc

        if resolved.suffix.lower() == ".json":
            records = self._parse_json_array(text)
        else:
            records = self._parse_jsonl(text)

        if len(records) > max_records:
            raise ValidationError(f"File exceeds the maximum of {max_records} records.")
        return records

    def validate_corpus_records(self, records: list[dict[str, Any]]) -> list[str]:
        """Check that corpus records have a non-empty question and answer.

        Args:
            records: List of parsed JSON objects.

        Returns:
            List of error strings. Empty list means valid.
        """
        errors: list[str] = []
        for idx, record in enumerate(records):
            for fld in ("question", "answer"):
                val = record.get(fld)
                if not isinstance(val, str):
                    errors.append(f"Record {idx + 1}: missing field '{fld}'.")
                elif not val.strip():
                    errors.append(f"Record {idx + 1}: '{fld}' is empty.")
        return errors

    # ------------------------------------------------------------------

    @staticmethod
    def _parse_json_array(text: str) -> list[dict[str, Any]]:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError("File is not valid JSON.") from exc
        if not isinstance(data, list):
            raise ValidationError("Top-level JSON value must be an array.")
        for idx, obj in enumerate(data, start=1):
            if not isinstance(obj, dict):
                raise ValidationError(f"Item {idx} is not a JSON object.")
        return data

    @staticmethod
    def _parse_jsonl(text: str) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        for line_num, line in enumerate(text.splitlines(), start=1):
            stripped = line.strip()
            if not stripped:
                continue
            try:
                obj = json.loads(stripped)
            except json.JSONDecodeError as exc:
                raise ValidationError(f"Invalid JSON on line {line_num}.") from exc
            if not isinstance(obj, dict):
                raise ValidationError(f"Line {line_num} is not a JSON object.")
            records.append(obj)
        return records


def _strip_control_chars(text: str) -> str:
    """Remove ASCII control characters except common whitespace.

    Args:
        text: Input string.

    Returns:
        Cleaned string.
    """
    return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)
