"""Relay configuration.

``RelayConfig`` holds every setting the message pipeline and the unified
server read: generator credentials, reviewer list, review mode, matching
threshold, log channel, expiry timing, storage location, and BM25
parameters. It loads from a dictionary or from ``SIFT_``-prefixed
environment variables.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from docket.src.lifecycle import DEFAULT_TIMEOUT_MINUTES
from shared.errors import ConfigurationError
from sieve.src.classifier import DEFAULT_THRESHOLD
from sieve.src.generator import DEFAULT_MODEL, DEFAULT_TIMEOUT_SECONDS
from sieve.src.ranker import DEFAULT_B, DEFAULT_K1

ENV_PREFIX = "SIFT_"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


def parse_usernames(value: str | list[str] | None) -> list[str]:
    """Split a comma-separated reviewer list, dropping blanks and '@'.

    Args:
        value: Comma-separated string, list of names, or None.

    Returns:
        Usernames in configured order.
    """
    if value is None:
        return []
    parts = value.split(",") if isinstance(value, str) else list(value)
    names = []
    for part in parts:
        name = str(part).strip().lstrip("@")
        if name:
            names.append(name)
    return names


def _parse_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{key} must be a boolean, got {value!r}")


def _parse_number(value: Any, key: str, kind: type = float) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from exc


@dataclass
class RelayConfig:
    """Settings for the FAQ relay.

    Attributes:
        api_key: Bearer token for the chat-completion endpoint.
        api_endpoint: URL of the chat-completion endpoint.
        model_type: Model name sent with every completion request.
        reviewer_usernames: Reviewers, in rotation order.
        enable_review_mode: When False, generated answers are delivered
            directly instead of going to a reviewer.
        similarity_threshold: Direct-match threshold on the BM25 score.
        log_channel_name: Room that receives activity summaries, if any.
        review_timeout_minutes: Age after which pending reviews expire.
        sweep_interval_seconds: Expiry sweeper period; 0 disables it.
        generator_timeout_seconds: Timeout for each completion request.
        db_path: SQLite file for reviews and the rotation cursor.
        corpus_path: JSON or JSONL FAQ file; the built-in corpus when unset.
        require_question_shape: Only escalate messages that look like
            questions.
        bm25_k1: BM25 term saturation.
        bm25_b: BM25 length normalisation.
        webhook_url: Outbound webhook for deliveries; in-memory when unset.
        notify_sender_on_failure: Post a generic notice to the source room
            when escalation fails.
    """

    api_key: str = ""
    api_endpoint: str = ""
    model_type: str = DEFAULT_MODEL
    reviewer_usernames: list[str] = field(default_factory=list)
    enable_review_mode: bool = True
    similarity_threshold: float = DEFAULT_THRESHOLD
    log_channel_name: str = ""
    review_timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES
    sweep_interval_seconds: float = 60.0
    generator_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    db_path: str = "data/sift/docket.db"
    corpus_path: str = ""
    require_question_shape: bool = False
    bm25_k1: float = DEFAULT_K1
    bm25_b: float = DEFAULT_B
    webhook_url: str = ""
    notify_sender_on_failure: bool = False

    def validate(self) -> None:
        """Check the settings the pipeline cannot run without.

        Raises:
            ConfigurationError: If the API key or endpoint is missing, or a
                numeric setting is out of range.
        """
        missing = [
            name for name in ("api_key", "api_endpoint") if not getattr(self, name).strip()
        ]
        if missing:
            raise ConfigurationError(
                f"API configuration is missing: {', '.join(missing)}"
            )
        if self.review_timeout_minutes <= 0:
            raise ConfigurationError("review_timeout_minutes must be positive")
        if self.sweep_interval_seconds < 0:
            raise ConfigurationError("sweep_interval_seconds must not be negative")
        if self.generator_timeout_seconds <= 0:
            raise ConfigurationError("generator_timeout_seconds must be positive")
        if self.bm25_k1 < 0 or not 0 <= self.bm25_b <= 1:
            raise ConfigurationError("bm25_k1 must be >= 0 and bm25_b within [0, 1]")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary with the API key masked."""
        return {
            "api_key": _mask(self.api_key),
            "api_endpoint": self.api_endpoint,
            "model_type": self.model_type,
            "reviewer_usernames": list(self.reviewer_usernames),
            "enable_review_mode": self.enable_review_mode,
            "similarity_threshold": self.similarity_threshold,
            "log_channel_name": self.log_channel_name,
            "review_timeout_minutes": self.review_timeout_minutes,
            "sweep_interval_seconds": self.sweep_interval_seconds,
            "generator_timeout_seconds": self.generator_timeout_seconds,
            "db_path": self.db_path,
            "corpus_path": self.corpus_path,
            "require_question_shape": self.require_question_shape,
            "bm25_k1": self.bm25_k1,
            "bm25_b": self.bm25_b,
            "webhook_url": self.webhook_url,
            "notify_sender_on_failure": self.notify_sender_on_failure,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RelayConfig:
        """Deserialize from dictionary.

        Missing keys take their defaults. String values are coerced, so
        the same path serves JSON files and environment variables.

        Args:
            data: Configuration values.

        Returns:
            RelayConfig instance.

        Raises:
            ConfigurationError: If a value cannot be coerced.
        """
        defaults = cls()
        return cls(
            api_key=str(data.get("api_key", defaults.api_key)),
            api_endpoint=str(data.get("api_endpoint", defaults.api_endpoint)),
            model_type=str(data.get("model_type") or defaults.model_type),
            reviewer_usernames=parse_usernames(data.get("reviewer_usernames")),
            enable_review_mode=_parse_bool(
                data.get("enable_review_mode", defaults.enable_review_mode),
                "enable_review_mode",
            ),
            similarity_threshold=_parse_number(
                data.get("similarity_threshold", defaults.similarity_threshold),
                "similarity_threshold",
            ),
            log_channel_name=str(data.get("log_channel_name", defaults.log_channel_name)),
            review_timeout_minutes=_parse_number(
                data.get("review_timeout_minutes", defaults.review_timeout_minutes),
                "review_timeout_minutes",
            ),
            sweep_interval_seconds=_parse_number(
                data.get("sweep_interval_seconds", defaults.sweep_interval_seconds),
                "sweep_interval_seconds",
            ),
            generator_timeout_seconds=_parse_number(
                data.get("generator_timeout_seconds", defaults.generator_timeout_seconds),
                "generator_timeout_seconds",
            ),
            db_path=str(data.get("db_path", defaults.db_path)),
            corpus_path=str(data.get("corpus_path", defaults.corpus_path)),
            require_question_shape=_parse_bool(
                data.get("require_question_shape", defaults.require_question_shape),
                "require_question_shape",
            ),
            bm25_k1=_parse_number(data.get("bm25_k1", defaults.bm25_k1), "bm25_k1"),
            bm25_b=_parse_number(data.get("bm25_b", defaults.bm25_b), "bm25_b"),
            webhook_url=str(data.get("webhook_url", defaults.webhook_url)),
            notify_sender_on_failure=_parse_bool(
                data.get("notify_sender_on_failure", defaults.notify_sender_on_failure),
                "notify_sender_on_failure",
            ),
        )

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        prefix: str = ENV_PREFIX,
    ) -> RelayConfig:
        """Load from environment variables such as ``SIFT_API_KEY``.

        Args:
            environ: Mapping to read (defaults to ``os.environ``).
            prefix: Variable name prefix.

        Returns:
            RelayConfig instance.
        """
        source = os.environ if environ is None else environ
        data = {
            key[len(prefix) :].lower(): value
            for key, value in source.items()
            if key.startswith(prefix)
        }
        return cls.from_dict(data)


def _mask(secret: str) -> str:
    if not secret:
        return ""
    if len(secret) <= 8:
        return "****"
    return f"{secret[:4]}...{secret[-4:]}"
