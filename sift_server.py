"""Sift unified backend server.

Mounts the Relay (message pipeline) and Docket (review queue) routers
under a single FastAPI application. Services are built from
``SIFT_``-prefixed environment variables when the application starts.
A tool whose services fail to initialise stays mounted, its endpoints
return 503, and the unified health endpoint reports the error.

Usage::

    # Development (auto-reload)
    uvicorn sift_server:app --reload --port 8430

    # Production
    uvicorn sift_server:app --host 0.0.0.0 --port 8430

    # Or run directly
    python sift_server.py
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from docket.src import server as docket_server
from docket.src.actions import ActionProcessor
from docket.src.lifecycle import ExpirySweeper, ReviewLifecycle
from docket.src.models import ReviewRecord
from docket.src.rotation import ReviewerRotator, StaticReviewerDirectory
from docket.src.storage import DocketStorage
from relay.src import server as relay_server
from relay.src.activity import ActivityLog
from relay.src.config import RelayConfig
from relay.src.notifications import InMemoryNotifier, NotificationPort, WebhookNotifier
from relay.src.pipeline import MessagePipeline
from shared.hardening import ErrorFormatter
from sieve.src.classifier import MessageClassifier
from sieve.src.corpus import CorpusEntry, default_corpus, load_corpus
from sieve.src.generator import AnswerGenerator, ChatCompletionGenerator

logger = logging.getLogger("sift")

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# CORS -- allow local dashboard origins
# ---------------------------------------------------------------------------

_ALLOWED_ORIGINS = [
    "http://localhost:5173",   # Vite dev server
    "http://localhost:8430",   # Self (for Swagger UI)
    "http://127.0.0.1:5173",
    "http://127.0.0.1:8430",
]


# ---------------------------------------------------------------------------
# Service container
# ---------------------------------------------------------------------------


@dataclass
class SiftServices:
    """Everything the routers and the sweeper share.

    Attributes:
        config: Settings the services were built from.
        notifier: Outbound message port.
        store: Review database, or None if it failed to open.
        lifecycle: Review state machine over ``store``.
        processor: Reviewer action handler.
        sweeper: Background expiry sweeper.
        pipeline: Inbound message pipeline.
        tool_status: Per-tool load state reported by ``/api/health``.
    """

    config: RelayConfig
    notifier: NotificationPort
    store: DocketStorage | None = None
    lifecycle: ReviewLifecycle | None = None
    processor: ActionProcessor | None = None
    sweeper: ExpirySweeper | None = None
    pipeline: MessagePipeline | None = None
    tool_status: dict[str, dict[str, Any]] = field(
        default_factory=lambda: {
            "docket": {"loaded": False, "error": None},
            "relay": {"loaded": False, "error": None},
        }
    )

    def close(self) -> None:
        """Stop the sweeper, clear router state, and close the database."""
        if self.sweeper is not None:
            self.sweeper.stop()
        relay_server._state["pipeline"] = None
        docket_server._state["lifecycle"] = None
        docket_server._state["processor"] = None
        if self.store is not None:
            self.store.close()


def _build_notifier(config: RelayConfig) -> NotificationPort:
    if config.webhook_url:
        return WebhookNotifier(config.webhook_url)
    logger.warning("No webhook configured; outbound messages are kept in memory")
    return InMemoryNotifier()


def _load_configured_corpus(config: RelayConfig) -> list[CorpusEntry]:
    """Load the configured corpus file, falling back to the built-in one."""
    if not config.corpus_path:
        return default_corpus()
    try:
        return load_corpus(config.corpus_path)
    except Exception as exc:
        error = ErrorFormatter().format_matching_error(exc)
        logger.warning(
            "Corpus %s failed to load (%s): %s; using built-in corpus",
            config.corpus_path,
            error.error_code,
            exc,
        )
        return default_corpus()


def _log_expired(records: list[ReviewRecord]) -> None:
    for record in records:
        logger.info(
            "Review %s expired (reviewer=%s)",
            record.review_id,
            record.assigned_reviewer or "-",
        )


# ---------------------------------------------------------------------------
# Docket (review queue)
# ---------------------------------------------------------------------------


def _mount_docket(services: SiftServices) -> None:
    """Open the review database and configure the Docket router.

    File-backed databases get their parent directory created first.
    """
    config = services.config
    try:
        if config.db_path != ":memory:":
            Path(config.db_path).parent.mkdir(parents=True, exist_ok=True)
        store = DocketStorage(config.db_path)
        store.initialize_schema()
        services.store = store

        lifecycle = ReviewLifecycle(store)
        directory = StaticReviewerDirectory.identity(config.reviewer_usernames)
        processor = ActionProcessor(lifecycle, services.notifier, directory=directory)
        docket_server.configure(
            lifecycle=lifecycle,
            processor=processor,
            review_timeout_minutes=config.review_timeout_minutes,
        )
        services.lifecycle = lifecycle
        services.processor = processor
        services.sweeper = ExpirySweeper(
            lifecycle,
            interval_seconds=config.sweep_interval_seconds,
            timeout_minutes=config.review_timeout_minutes,
            on_expired=_log_expired,
        )
        services.tool_status["docket"]["loaded"] = True
        logger.info("Docket configured with database %s", config.db_path)
    except Exception as exc:
        services.tool_status["docket"]["error"] = str(exc)
        logger.warning("Docket failed to load: %s", exc)


# ---------------------------------------------------------------------------
# Relay (message pipeline)
# ---------------------------------------------------------------------------


def _mount_relay(
    services: SiftServices,
    generator: AnswerGenerator | None = None,
) -> None:
    """Build the classifier and message pipeline and configure the Relay router.

    Relay needs Docket's lifecycle and review store for escalations.
    """
    config = services.config
    try:
        if services.lifecycle is None or services.store is None:
            raise RuntimeError("review store unavailable")

        classifier = MessageClassifier(
            _load_configured_corpus(config),
            threshold=config.similarity_threshold,
            require_question_shape=config.require_question_shape,
            k1=config.bm25_k1,
            b=config.bm25_b,
        )
        if generator is None:
            generator = ChatCompletionGenerator(
                api_key=config.api_key,
                api_endpoint=config.api_endpoint,
                model_type=config.model_type,
                timeout_seconds=config.generator_timeout_seconds,
            )
        pipeline = MessagePipeline(
            config=config,
            classifier=classifier,
            generator=generator,
            lifecycle=services.lifecycle,
            rotator=ReviewerRotator(services.store),
            directory=StaticReviewerDirectory.identity(config.reviewer_usernames),
            notifier=services.notifier,
            activity=ActivityLog(services.notifier, channel=config.log_channel_name),
        )
        relay_server.configure(pipeline=pipeline)
        services.pipeline = pipeline
        services.tool_status["relay"]["loaded"] = True
        logger.info(
            "Relay configured: %d corpus entries, threshold %.2f, %d reviewer(s)",
            len(classifier.corpus),
            classifier.threshold,
            len(config.reviewer_usernames),
        )
    except Exception as exc:
        services.tool_status["relay"]["error"] = str(exc)
        logger.warning("Relay failed to load: %s", exc)


def build_services(
    config: RelayConfig,
    generator: AnswerGenerator | None = None,
    notifier: NotificationPort | None = None,
) -> SiftServices:
    """Build and wire every service, configuring both routers.

    Failures are recorded in ``tool_status`` rather than raised.

    Args:
        config: Settings to build from.
        generator: Answer generator override (defaults to the
            chat-completion client built from ``config``).
        notifier: Notifier override (defaults to the webhook notifier, or
            an in-memory outbox when no webhook is configured).

    Returns:
        SiftServices with whatever loaded.
    """
    services = SiftServices(
        config=config,
        notifier=notifier if notifier is not None else _build_notifier(config),
    )
    _mount_docket(services)
    _mount_relay(services, generator=generator)
    return services


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(
    config: RelayConfig | None = None,
    generator: AnswerGenerator | None = None,
    notifier: NotificationPort | None = None,
) -> FastAPI:
    """Create the Sift application.

    Services are built on startup and torn down on shutdown, so the
    database is only opened while the application is running.

    Args:
        config: Settings; read from the environment at startup when None.
        generator: Optional answer generator override.
        notifier: Optional notifier override.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        services = build_services(
            config if config is not None else RelayConfig.from_env(),
            generator=generator,
            notifier=notifier,
        )
        app.state.services = services
        if services.sweeper is not None:
            services.sweeper.start()
        try:
            yield
        finally:
            services.close()
            app.state.services = None

    app = FastAPI(
        title="Sift API",
        description=(
            "Unified backend for the Sift FAQ relay: "
            "Relay (message matching and routing), Docket (answer review)."
        ),
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def unified_health(request: Request) -> dict[str, Any]:
        """Return health status for both Sift tools.

        Returns:
            Dictionary with overall status and per-tool breakdown.
        """
        services: SiftServices | None = request.app.state.services
        if services is None:
            return {"status": "error", "version": VERSION, "tools": {}}

        statuses = services.tool_status.values()
        if all(t["loaded"] for t in statuses):
            status = "ok"
        elif any(t["loaded"] for t in statuses):
            status = "degraded"
        else:
            status = "error"

        return {
            "status": status,
            "version": VERSION,
            "tools": services.tool_status,
            "sweeper_running": services.sweeper is not None and services.sweeper.running,
        }

    app.include_router(relay_server.router, prefix="/api/relay", tags=["relay"])
    app.include_router(docket_server.router, prefix="/api/docket", tags=["docket"])
    return app


app = create_app()


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def run_server(host: str = "127.0.0.1", port: int = 8430) -> None:
    """Start the Sift unified server via uvicorn.

    Args:
        host: Bind address. Defaults to localhost.
        port: Port number. Defaults to 8430.
    """
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    run_server()
